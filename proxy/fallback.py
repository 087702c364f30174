"""
Fallback between the local replicated store and the live upstream.

The local store is cheap and rich, the upstream is authoritative. The
resolver prefers the first and defers to the second whenever the local tier
fails or, for operations that expose a comparable scalar, has drifted more
than ``max_deviance`` away from the network.
"""
import asyncio
from typing import Awaitable, Callable, Optional, Tuple, TypeVar

import structlog

from config.logging import log_error
from .constants import MAX_DEVIANCE
from .errors import FallbackExhaustedError
from .metrics import FALLBACKS
from .models import Number

logger = structlog.get_logger()

T = TypeVar('T')


class FallbackResolver:
    """Two-tier resolution: local store first, live upstream second."""

    def __init__(self, max_deviance: int = MAX_DEVIANCE):
        self.max_deviance = max_deviance

    async def _live(self, operation: str, reason: str, live: Callable[[], Awaitable[T]]) -> T:
        FALLBACKS.labels(operation=operation, reason=reason).inc()
        logger.debug("fallback_to_upstream", operation=operation, reason=reason)
        try:
            return await live()
        except Exception as e:
            log_error(logger, e, {"operation": operation}, event="fallback_exhausted")
            raise FallbackExhaustedError(operation, cause=e) from e

    async def resolve(self, operation: str,
                      local: Optional[Callable[[], Awaitable[T]]],
                      live: Callable[[], Awaitable[T]]) -> T:
        """
        Try the local tier, then the live tier.

        Args:
            operation: Name used in logs and metrics
            local: Local store read, or None when no store is configured
            live: Upstream read

        Returns:
            The first tier's answer that succeeded

        Raises:
            FallbackExhaustedError: Both tiers failed
        """
        if local is None:
            return await self._live(operation, "no_local_store", live)

        try:
            return await local()
        except Exception as e:
            logger.info("local_store_miss", operation=operation, error=str(e))
            return await self._live(operation, "local_failed", live)

    async def resolve_checked(self, operation: str,
                              live_scalar: Callable[[], Awaitable[Number]],
                              local: Optional[Callable[[], Awaitable[Tuple[Number, T]]]],
                              live: Callable[[], Awaitable[T]]) -> T:
        """
        Serve the local payload only while it tracks the network.

        The live scalar and the local (scalar, payload) pair are fetched
        concurrently. The local payload is returned when both succeed and the
        scalars differ by at most ``max_deviance``; otherwise the full payload
        is fetched from the live upstream.

        Args:
            operation: Name used in logs and metrics
            live_scalar: Authoritative scalar from the upstream (e.g. height)
            local: Local read returning (scalar, payload), or None
            live: Upstream read of the full payload

        Returns:
            The local or the live payload

        Raises:
            FallbackExhaustedError: The local tier was unusable and the live
                payload could not be fetched
        """
        if local is None:
            return await self._live(operation, "no_local_store", live)

        network, stored = await asyncio.gather(live_scalar(), local(), return_exceptions=True)

        if isinstance(stored, BaseException):
            logger.info("local_store_miss", operation=operation, error=str(stored))
            return await self._live(operation, "local_failed", live)

        if isinstance(network, BaseException):
            logger.info("network_scalar_unavailable", operation=operation, error=str(network))
            return await self._live(operation, "network_unverified", live)

        local_scalar, payload = stored
        deviance = abs(network - local_scalar)
        if deviance > self.max_deviance:
            logger.warning("local_store_deviates",
                           operation=operation,
                           network=network,
                           local=local_scalar,
                           max_deviance=self.max_deviance)
            return await self._live(operation, "deviance", live)

        return payload
