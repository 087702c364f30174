"""
Seed aggregation.

A fan-out round queries every configured node for one metric (height or
difficulty), then reduces the answers into an ``AggregateResult``:

    fetch_all (parallel queries) -> reduce_samples (pure) -> caller caches

``reduce_samples`` and ``vote`` are pure functions over plain values so the
statistics can be tested without any network at all.
"""
import asyncio
import math
import statistics
from collections import Counter
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar

import structlog

from .constants import DEFAULT_TIMEOUT
from .metrics import AGGREGATE_CONFIDENCE, AGGREGATE_SAMPLES
from .models import AggregateResult, NodeEndpoint, Number

logger = structlog.get_logger()

E = TypeVar('E')
Query = Callable[[E], Awaitable[Any]]


@dataclass(frozen=True)
class Sample:
    """
    One node's contribution to a fan-out round.

    ``responded`` is False when the call failed or timed out. A node that
    responded without a usable number has ``responded=True, value=None``.
    """
    node: str
    responded: bool
    value: Optional[Number] = None
    error: Optional[str] = None

    @property
    def usable(self) -> bool:
        return self.responded and self.value is not None


def usable_number(value: Any) -> Optional[Number]:
    """Return ``value`` if it is a finite int or float (booleans excluded), else None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def _normalize(value: Number) -> Number:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def vote(values: Sequence[Number]) -> Tuple[Optional[Number], float]:
    """
    Plurality vote over identical values.

    Ties between equally common values go to the greatest value.

    Returns:
        (winning value, winner's tally / number of values); (None, 0.0) when empty
    """
    if not values:
        return None, 0.0

    tallies = Counter(values)
    winner, tally = max(tallies.items(), key=lambda item: (item[1], item[0]))
    return winner, tally / len(values)


def reduce_samples(samples: Iterable[Sample], node: Optional[NodeEndpoint] = None) -> AggregateResult:
    """
    Reduce one round of samples into an aggregate.

    Args:
        samples: Every node's sample, in any order
        node: Pseudo-node the aggregate is reported against

    Returns:
        The aggregate; error-bearing with ``sample_count == 0`` when no
        sample carried a usable value
    """
    samples = list(samples)
    values = [sample.value for sample in samples if sample.usable]
    responded = sum(1 for sample in samples if sample.responded)

    if not values:
        return AggregateResult(
            node=node,
            responded_count=responded,
            sample_count=0,
            confidence=0.0,
            error=f"No usable value from {len(samples)} node(s)"
        )

    winner, confidence = vote(values)
    return AggregateResult(
        node=node,
        max=max(values),
        min=min(values),
        average=round_half_up(sum(values) / len(values)),
        median=_normalize(statistics.median(values)),
        sample_count=len(values),
        responded_count=responded,
        winning_value=winner,
        confidence=confidence
    )


class SeedAggregator:
    """Fan a metric query out to many nodes and reduce the answers."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        """
        Args:
            timeout: Time allowed for each node's query, in seconds
        """
        self.timeout = timeout

    async def _query_node(self, endpoint: E, query: Query) -> Sample:
        try:
            raw = await asyncio.wait_for(query(endpoint), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.debug("seed_query_timeout", node=str(endpoint), timeout=self.timeout)
            return Sample(node=str(endpoint), responded=False, error="timeout")
        except Exception as e:
            logger.debug("seed_query_failed", node=str(endpoint), error=str(e))
            return Sample(node=str(endpoint), responded=False, error=str(e) or type(e).__name__)

        return Sample(node=str(endpoint), responded=True, value=usable_number(raw))

    async def fetch_all(self, endpoints: Sequence[E], query: Query) -> List[Sample]:
        """
        Query every endpoint at once and wait for all of them to settle.

        Args:
            endpoints: Nodes to query
            query: Coroutine function returning the metric for one node, None
                if the node answered without it, or raising on failure

        Returns:
            One sample per endpoint, in endpoint order
        """
        return list(await asyncio.gather(*(self._query_node(endpoint, query) for endpoint in endpoints)))

    async def aggregate(self, endpoints: Sequence[E], query: Query, metric: str,
                        node: Optional[NodeEndpoint] = None) -> AggregateResult:
        """
        Run one fan-out round and reduce it.

        Args:
            endpoints: Nodes to query
            query: Per-node metric query, see ``fetch_all``
            metric: Metric name used for logging and Prometheus labels
            node: Pseudo-node the aggregate is reported against

        Returns:
            The aggregate; never raises for per-node failures
        """
        samples = await self.fetch_all(endpoints, query)
        result = reduce_samples(samples, node=node)

        AGGREGATE_SAMPLES.labels(metric=metric).set(result.sample_count)
        AGGREGATE_CONFIDENCE.labels(metric=metric).set(result.confidence)

        if result.ok:
            logger.info("aggregate_computed",
                        metric=metric,
                        nodes=len(samples),
                        responded=result.responded_count,
                        samples=result.sample_count,
                        winner=result.winning_value,
                        confidence=result.confidence)
        else:
            logger.warning("aggregate_empty",
                           metric=metric,
                           nodes=len(samples),
                           responded=result.responded_count)
        return result
