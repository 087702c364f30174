"""
Proxy service.

``ProxyService`` owns everything that lives for the whole process: the
request cache, the upstream HTTP session, the local store, the seed and pool
lists, and the periodic refresh jobs. It is built once at startup, started
and stopped explicitly, and handed to the HTTP layer.
"""
import asyncio
from typing import Any, Awaitable, Callable, List, Optional, Type

import aiohttp
import structlog
from pydantic import ValidationError

from cache import RequestCache, fingerprint
from config.logging import log_error
from config.settings import ProxySettings
from .aggregator import SeedAggregator, round_half_up, usable_number
from .client import DaemonClient
from .constants import NETWORK_HOST, POOL_HOST
from .dispatcher import ClientFactory, JsonRpcDispatcher
from .errors import UpstreamError
from .fallback import FallbackResolver
from .local_store import LocalBlockStore, SqlBlockStore
from .models import (
    AggregateResult,
    ErrorResult,
    FeeResult,
    HeightResult,
    InfoResult,
    NodeEndpoint,
    PeersResult,
    PoolEndpoint,
    ProxyResult,
)
from .pools import PoolDirectory
from .scheduler import PeriodicJob

logger = structlog.get_logger()

NETWORK_NODE = NodeEndpoint(host=NETWORK_HOST)
POOL_NODE = NodeEndpoint(host=POOL_HOST)


class ProxyService:
    """Caching, aggregating front for one or more blockchain daemons."""

    def __init__(self, settings: ProxySettings,
                 cache: Optional[RequestCache] = None,
                 store: Optional[LocalBlockStore] = None,
                 session: Optional[aiohttp.ClientSession] = None,
                 client_factory: Optional[ClientFactory] = None,
                 pool_directory: Optional[PoolDirectory] = None):
        """
        Args:
            settings: Proxy configuration
            cache: Request cache; one with ``settings.cache_ttl`` is built when None
            store: Local replicated store; built from ``settings.local_store_url``
                when None and a URL is configured
            session: aiohttp session to share; the service opens and closes its
                own when None
            client_factory: Builds daemon clients; ``DaemonClient`` over the
                service session when None
            pool_directory: Pool list / stats reader; built over the service
                session when None
        """
        self.settings = settings
        self.cache = cache if cache is not None else RequestCache(default_ttl=settings.cache_ttl)

        if store is None and settings.local_store_url:
            store = SqlBlockStore(settings.local_store_url, timeout=settings.local_store_timeout)
        self.store = store

        self._session = session
        self._owns_session = session is None
        self._client_factory = client_factory
        self._pool_directory = pool_directory

        self.seeds: List[NodeEndpoint] = list(settings.seeds)
        self.pools: List[PoolEndpoint] = list(settings.pools)

        self.aggregator = SeedAggregator(timeout=settings.timeout)
        self.resolver = FallbackResolver(max_deviance=settings.max_deviance)
        self.dispatcher = JsonRpcDispatcher(self.cache, self.client_for, self.resolver, self.store)

        self._jobs: List[PeriodicJob] = []

    # Collaborators

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    @property
    def pool_directory(self) -> PoolDirectory:
        if self._pool_directory is None:
            self._pool_directory = PoolDirectory(self.session,
                                                 list_url=self.settings.pool_list_url,
                                                 timeout=self.settings.timeout)
        return self._pool_directory

    def client_for(self, host: str, port: int) -> DaemonClient:
        if self._client_factory is not None:
            return self._client_factory(host, port)
        return DaemonClient(host, port, self.session, timeout=self.settings.timeout)

    def resolve_node(self, host: Optional[str] = None, port: Optional[int] = None) -> NodeEndpoint:
        return NodeEndpoint(host=host or self.settings.default_host,
                            port=port or self.settings.default_port)

    # Lifecycle

    @property
    def jobs(self) -> List[PeriodicJob]:
        return list(self._jobs)

    async def start(self) -> None:
        """Start the periodic refresh jobs."""
        if self._jobs:
            return

        settings = self.settings
        if not settings.pools:
            self._jobs.append(PeriodicJob("pool_list", settings.pool_refresh_interval, self.refresh_pools))
        self._jobs.extend([
            PeriodicJob("seed_aggregates", settings.global_refresh_interval, self.refresh_seed_aggregates),
            PeriodicJob("pool_aggregates", settings.global_refresh_interval, self.refresh_pool_aggregates),
            PeriodicJob("cache_sweep", max(1, settings.cache_ttl / 2), self._sweep_cache,
                        run_immediately=False),
        ])
        for job in self._jobs:
            job.start()

        logger.info("proxy_service_started",
                    default_node=str(self.resolve_node()),
                    seeds=len(self.seeds),
                    local_store=self.store is not None)

    async def stop(self) -> None:
        """Stop the jobs and release the session and the local store."""
        for job in self._jobs:
            await job.stop()
        self._jobs = []

        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        if self.store is not None:
            await self.store.close()

        logger.info("proxy_service_stopped")

    async def _sweep_cache(self) -> None:
        self.cache.sweep()

    # Cache plumbing

    async def _through_cache(self, key: str, compute: Callable[[], Awaitable[ProxyResult]],
                             ttl: Optional[float] = None, refresh: bool = False) -> ProxyResult:
        if not refresh:
            hit = self.cache.get(key)
            if hit is not None:
                return hit.as_cached()

        result = await compute()
        if isinstance(result, ErrorResult):
            return result
        if isinstance(result, AggregateResult) and not result.ok:
            return result

        self.cache.set(key, result, ttl)
        return result

    async def _single(self, method: str, host: Optional[str], port: Optional[int],
                      fetch: Callable[[DaemonClient], Awaitable[Any]],
                      result_cls: Type[ProxyResult]) -> ProxyResult:
        node = self.resolve_node(host, port)

        async def compute() -> ProxyResult:
            client = self.client_for(node.host, node.port)
            try:
                payload = await fetch(client)
                return self._build(result_cls, payload, node)
            except (UpstreamError, ValidationError) as e:
                log_error(logger, e, {"method": method, "node": str(node)}, event="upstream_call_failed")
                return ErrorResult(error=str(e), node=node)

        return await self._through_cache(fingerprint(node.host, node.port, method), compute)

    def _build(self, result_cls: Type[ProxyResult], payload: Any, node: NodeEndpoint) -> ProxyResult:
        if result_cls is InfoResult:
            difficulty = usable_number(payload.get("difficulty"))
            hash_rate = None
            if difficulty is not None:
                hash_rate = round_half_up(difficulty / self.settings.target_block_time)
            return InfoResult.from_payload(payload, node, global_hash_rate=hash_rate)
        return result_cls.from_payload(payload, node)

    # Single-node queries

    async def get_info(self, host: Optional[str] = None, port: Optional[int] = None) -> ProxyResult:
        return await self._single("info", host, port, lambda client: client.get_info(), InfoResult)

    async def get_height(self, host: Optional[str] = None, port: Optional[int] = None) -> ProxyResult:
        return await self._single("height", host, port, lambda client: client.get_height(), HeightResult)

    async def get_fee(self, host: Optional[str] = None, port: Optional[int] = None) -> ProxyResult:
        return await self._single("fee", host, port, lambda client: client.get_fee(), FeeResult)

    async def get_peers(self, host: Optional[str] = None, port: Optional[int] = None) -> ProxyResult:
        return await self._single("peers", host, port, lambda client: client.get_peers(), PeersResult)

    async def json_rpc(self, method: Any, params: Any = None,
                       host: Optional[str] = None, port: Optional[int] = None) -> Any:
        node = self.resolve_node(host, port)
        return await self.dispatcher.dispatch(node.host, node.port, method, params)

    # Network-wide aggregates

    async def _seed_height(self, seed: NodeEndpoint) -> Any:
        payload = await self.client_for(seed.host, seed.port).get_height()
        return payload.get("height")

    async def _seed_difficulty(self, seed: NodeEndpoint) -> Any:
        payload = await self.client_for(seed.host, seed.port).get_info()
        return payload.get("difficulty")

    async def _pool_metric(self, pool: PoolEndpoint, metric: str) -> Any:
        network = await self.pool_directory.fetch_network_stats(pool)
        if network is None:
            return None
        return network.get(metric)

    async def _pool_height(self, pool: PoolEndpoint) -> Any:
        return await self._pool_metric(pool, "height")

    async def _pool_difficulty(self, pool: PoolEndpoint) -> Any:
        return await self._pool_metric(pool, "difficulty")

    async def _aggregate(self, tag: str, node: NodeEndpoint, endpoints: List[Any],
                         query: Callable[[Any], Awaitable[Any]], refresh: bool) -> AggregateResult:
        async def compute() -> AggregateResult:
            return await self.aggregator.aggregate(endpoints, query, metric=tag, node=node)

        key = fingerprint(node.host, node.host, tag)
        return await self._through_cache(key, compute, ttl=self.settings.global_cache_ttl, refresh=refresh)

    async def get_global_height(self, refresh: bool = False) -> AggregateResult:
        return await self._aggregate("globalheight", NETWORK_NODE, self.seeds, self._seed_height, refresh)

    async def get_global_difficulty(self, refresh: bool = False) -> AggregateResult:
        return await self._aggregate("globaldifficulty", NETWORK_NODE, self.seeds, self._seed_difficulty, refresh)

    async def get_global_pool_height(self, refresh: bool = False) -> AggregateResult:
        return await self._aggregate("globalpoolheight", POOL_NODE, self.pools, self._pool_height, refresh)

    async def get_global_pool_difficulty(self, refresh: bool = False) -> AggregateResult:
        return await self._aggregate("globalpooldifficulty", POOL_NODE, self.pools, self._pool_difficulty, refresh)

    # Refresh jobs

    async def refresh_seed_aggregates(self) -> None:
        await asyncio.gather(
            self.get_global_height(refresh=True),
            self.get_global_difficulty(refresh=True)
        )

    async def refresh_pool_aggregates(self) -> None:
        await asyncio.gather(
            self.get_global_pool_height(refresh=True),
            self.get_global_pool_difficulty(refresh=True)
        )

    async def refresh_pools(self) -> None:
        self.pools = await self.pool_directory.fetch_pool_list()
        logger.info("pool_list_refreshed", pools=len(self.pools))
