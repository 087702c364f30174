import asyncio
from unittest.mock import AsyncMock

import pytest

from cache import RequestCache
from proxy.errors import UpstreamError
from proxy.models import AggregateResult, ErrorResult, InfoResult, PoolEndpoint
from proxy.service import ProxyService

from conftest import make_client


def seed_calls(clients, method="get_height"):
    return sum(getattr(client, method).await_count
               for host, client in clients.items() if host.startswith("seed"))


def test_global_height_is_cached_until_expiry(service, clients, clock, settings):
    first = asyncio.run(service.get_global_height())
    second = asyncio.run(service.get_global_height())

    assert isinstance(first, AggregateResult)
    assert first.winning_value == 100
    assert first.confidence == 0.5
    assert first.node.host == "network"
    assert first.cached is False
    assert second.cached is True
    assert second.model_dump(exclude={"cached"}) == first.model_dump(exclude={"cached"})
    assert seed_calls(clients) == 4
    assert len(service.cache) == 1

    clock.advance(settings.global_cache_ttl)
    third = asyncio.run(service.get_global_height())

    assert third.cached is False
    assert seed_calls(clients) == 8


def test_refresh_bypasses_the_cache(service, clients):
    asyncio.run(service.get_global_height())
    refreshed = asyncio.run(service.get_global_height(refresh=True))

    assert refreshed.cached is False
    assert seed_calls(clients) == 8


def test_global_difficulty(service, clients):
    result = asyncio.run(service.get_global_difficulty())

    assert result.winning_value == 3000
    assert result.max == 3030
    assert seed_calls(clients, "get_info") == 4


def test_empty_aggregate_is_not_cached(settings, cache, seeds):
    clients = {seed.host: make_client(seed.host, fail=True) for seed in seeds}
    service = ProxyService(settings, cache=cache, client_factory=lambda host, port: clients[host])

    first = asyncio.run(service.get_global_height())
    second = asyncio.run(service.get_global_height())

    assert first.sample_count == 0
    assert first.error
    assert second.cached is False
    assert len(cache) == 0


def test_pool_aggregates(service, pool_directory):
    service.pools = [PoolEndpoint(name=f"pool{i}", url=f"https://pool{i}.test/stats") for i in range(3)]

    height = asyncio.run(service.get_global_pool_height())
    difficulty = asyncio.run(service.get_global_pool_difficulty())

    assert height.node.host == "pool"
    assert height.winning_value == 100
    assert height.sample_count == 3
    assert difficulty.winning_value == 3000
    assert pool_directory.fetch_network_stats.await_count == 6


def test_refresh_pools(service, pool_directory):
    pools = [PoolEndpoint(name="TurtlePool", url="https://pool.test/stats")]
    pool_directory.fetch_pool_list = AsyncMock(return_value=pools)

    asyncio.run(service.refresh_pools())

    assert service.pools == pools


def test_info_adds_global_hash_rate(service):
    result = asyncio.run(service.get_info())

    assert isinstance(result, InfoResult)
    assert result.global_hash_rate == 100
    assert result.node.host == "daemon.test"
    assert result.node.port == 11898
    assert result.to_response()["globalHashRate"] == 100


def test_single_node_results_are_cached_per_node(service, clients):
    asyncio.run(service.get_height())
    cached = asyncio.run(service.get_height())
    other = asyncio.run(service.get_height("other.test", 11898))

    assert cached.cached is True
    assert other.cached is False
    assert other.node.host == "other.test"
    assert clients["daemon.test"].get_height.await_count == 1


def test_upstream_failure_is_an_uncached_error(service, clients):
    clients["daemon.test"].get_fee = AsyncMock(side_effect=UpstreamError("refused"))

    first = asyncio.run(service.get_fee())
    asyncio.run(service.get_fee())

    assert isinstance(first, ErrorResult)
    assert "refused" in first.error
    assert clients["daemon.test"].get_fee.await_count == 2


def test_json_rpc_uses_the_default_node(service, clients):
    result = asyncio.run(service.json_rpc("getblockcount"))

    assert result.node.host == "daemon.test"
    assert result.to_response()["count"] == 1000
    clients["daemon.test"].get_block_count.assert_awaited()


def test_start_and_stop_manage_jobs(service):
    async def scenario():
        await service.start()
        names = [job.name for job in service.jobs]
        await asyncio.sleep(0)
        await service.stop()
        return names

    names = asyncio.run(scenario())

    assert names == ["pool_list", "seed_aggregates", "pool_aggregates", "cache_sweep"]
    assert service.jobs == []


def test_static_pools_skip_the_pool_list_job(settings, cache, client_factory, pool_directory):
    settings = settings.model_copy(update={"pools": [PoolEndpoint(name="p", url="https://p.test/stats")]})
    service = ProxyService(settings, cache=cache, client_factory=client_factory,
                           pool_directory=pool_directory)

    async def scenario():
        await service.start()
        names = [job.name for job in service.jobs]
        await service.stop()
        return names

    assert "pool_list" not in asyncio.run(scenario())


def test_derived_global_timings(settings):
    assert settings.global_cache_ttl == 10
    assert settings.global_refresh_interval == 5


def test_refresh_interval_must_be_shorter_than_ttl(seeds):
    from config.settings import ProxySettings

    with pytest.raises(ValueError):
        ProxySettings(_env_file=None, seeds=seeds, global_cache_ttl=10, global_refresh_interval=10)


def test_injected_empty_cache_is_used(settings, clock):
    cache = RequestCache(default_ttl=30, clock=clock)
    service = ProxyService(settings, cache=cache)

    assert len(cache) == 0
    assert service.cache is cache
    assert service.dispatcher.cache is cache
