"""Shared fixtures for the proxy tests."""
import sys
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

# Repo root on sys.path so the top-level packages import under every pytest import mode
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from cache import RequestCache
from config.settings import ProxySettings
from proxy.errors import UpstreamError
from proxy.models import NodeEndpoint
from proxy.service import ProxyService


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_client(host: str, port: int = 11898, height=None, difficulty=None, fail: bool = False) -> Mock:
    """A daemon client double answering the plain HTTP endpoints."""
    client = Mock()
    client.host = host
    client.port = port
    client.endpoint = NodeEndpoint(host=host, port=port)

    if fail:
        error = UpstreamError(f"{host}: connection refused", endpoint=host)
        client.get_height = AsyncMock(side_effect=error)
        client.get_info = AsyncMock(side_effect=error)
    else:
        client.get_height = AsyncMock(return_value={"height": height, "network_height": height, "status": "OK"})
        client.get_info = AsyncMock(return_value={"difficulty": difficulty, "height": height, "status": "OK"})

    client.get_fee = AsyncMock(return_value={"address": "TRTLaddress", "amount": 10, "status": "OK"})
    client.get_peers = AsyncMock(return_value={"peers": ["10.0.0.1:11897"], "status": "OK"})
    client.json_rpc = AsyncMock(return_value={"status": "OK"})
    client.get_block_count = AsyncMock(return_value=1000)
    return client


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return RequestCache(default_ttl=30, clock=clock)


@pytest.fixture
def seeds():
    return [NodeEndpoint(host=f"seed{i}.test", port=11898) for i in range(4)]


@pytest.fixture
def settings(seeds):
    return ProxySettings(
        _env_file=None,
        default_host="daemon.test",
        default_port=11898,
        seeds=seeds,
        cache_ttl=30,
        target_block_time=30,
        timeout=0.5
    )


@pytest.fixture
def clients(seeds):
    """Daemon doubles by host; seeds agree on height 100 except one at 101 and one at 99."""
    heights = [100, 100, 101, 99]
    registry = {
        seed.host: make_client(seed.host, seed.port, height=height, difficulty=height * 30)
        for seed, height in zip(seeds, heights)
    }
    registry["daemon.test"] = make_client("daemon.test", height=100, difficulty=3000)
    return registry


@pytest.fixture
def client_factory(clients):
    def factory(host, port):
        if host not in clients:
            clients[host] = make_client(host, port, height=100, difficulty=3000)
        return clients[host]
    return factory


@pytest.fixture
def pool_directory():
    directory = Mock()
    directory.fetch_pool_list = AsyncMock(return_value=[])
    directory.fetch_network_stats = AsyncMock(return_value={"height": 100, "difficulty": 3000})
    return directory


@pytest.fixture
def service(settings, cache, client_factory, pool_directory):
    return ProxyService(settings, cache=cache, client_factory=client_factory,
                        pool_directory=pool_directory)
