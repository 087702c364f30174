import asyncio
import time

import pytest

from proxy.aggregator import Sample, SeedAggregator, reduce_samples, round_half_up, usable_number, vote
from proxy.errors import UpstreamError
from proxy.models import NodeEndpoint


def samples_of(*values):
    return [Sample(node=f"seed{i}", responded=True, value=value) for i, value in enumerate(values)]


def test_reduce_samples_statistics():
    result = reduce_samples(samples_of(100, 100, 101, 99), node=NodeEndpoint(host="network"))

    assert result.max == 101
    assert result.min == 99
    assert result.average == 100
    assert result.median == 100
    assert result.winning_value == 100
    assert result.confidence == 0.5
    assert result.sample_count == 4
    assert result.responded_count == 4
    assert result.error is None
    assert result.node.host == "network"
    assert result.ok


def test_vote_tie_goes_to_greatest_value():
    assert vote([5, 5, 7, 7]) == (7, 0.5)
    assert vote([3]) == (3, 1.0)
    assert vote([]) == (None, 0.0)


def test_zero_is_a_real_sample():
    result = reduce_samples(samples_of(0, 0, 5))

    assert result.sample_count == 3
    assert result.min == 0
    assert result.winning_value == 0
    assert result.confidence == pytest.approx(2 / 3)


def test_reduce_without_usable_samples():
    """Test an all-failed round yields a defined, error-bearing aggregate."""
    samples = [
        Sample(node="seed0", responded=False, error="timeout"),
        Sample(node="seed1", responded=True, value=None),
    ]
    result = reduce_samples(samples)

    assert not result.ok
    assert result.sample_count == 0
    assert result.responded_count == 1
    assert result.confidence == 0.0
    assert result.winning_value is None
    assert result.max is None
    assert result.average is None
    assert "2 node(s)" in result.error


def test_reduce_with_no_samples_at_all():
    result = reduce_samples([])
    assert result.sample_count == 0
    assert result.confidence == 0.0


def test_average_and_median_rounding():
    result = reduce_samples(samples_of(1, 2))
    assert result.average == 2
    assert result.median == 1.5

    assert round_half_up(2.5) == 3
    assert round_half_up(2.4) == 2


def test_usable_number():
    assert usable_number(0) == 0
    assert usable_number(12.5) == 12.5
    assert usable_number(True) is None
    assert usable_number("100") is None
    assert usable_number(None) is None
    assert usable_number(float("nan")) is None


def test_aggregate_excludes_failed_and_slow_nodes():
    """Test failures and timeouts drop out without delaying the round."""
    heights = {"fast0": 100, "fast1": 100, "empty": None}

    async def query(endpoint):
        if endpoint == "slow":
            await asyncio.sleep(10)
        if endpoint == "broken":
            raise UpstreamError("connection refused")
        return {"height": heights.get(endpoint)}["height"]

    aggregator = SeedAggregator(timeout=0.05)
    started = time.monotonic()
    result = asyncio.run(aggregator.aggregate(
        ["fast0", "fast1", "slow", "broken", "empty"], query, metric="test_height"
    ))

    assert time.monotonic() - started < 2
    assert result.sample_count == 2
    assert result.responded_count == 3
    assert result.winning_value == 100
    assert result.confidence == 1.0


def test_fetch_all_keeps_endpoint_order():
    async def query(endpoint):
        return endpoint * 10

    samples = asyncio.run(SeedAggregator(timeout=1).fetch_all([3, 1, 2], query))

    assert [sample.value for sample in samples] == [30, 10, 20]
    assert all(sample.usable for sample in samples)


def test_fetch_all_queries_every_node_at_once():
    """Test every query is in flight before any of them completes."""
    in_flight = 0
    peak = 0

    async def query(endpoint):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.2)
        in_flight -= 1
        return 100

    started = time.monotonic()
    samples = asyncio.run(SeedAggregator(timeout=5).fetch_all(list(range(5)), query))
    elapsed = time.monotonic() - started

    assert len(samples) == 5
    assert peak == 5
    assert elapsed < 0.8
