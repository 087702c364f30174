"""Mining pool directory and per-pool network stats."""
from typing import Any, Dict, List, Optional

import aiohttp
import structlog

from .client import fetch_json
from .constants import DEFAULT_TIMEOUT, POOL_LIST_URL
from .errors import UpstreamError
from .models import PoolEndpoint

logger = structlog.get_logger()


def parse_pool_list(data: Any) -> List[PoolEndpoint]:
    """
    Map the published pools document onto stats endpoints.

    The document is an object keyed by pool name whose values carry the
    pool's API base ``url``; the stats endpoint lives at ``<url>stats``.
    Entries without a url are skipped.
    """
    if not isinstance(data, dict):
        raise UpstreamError("Pool list is not an object")

    pools = []
    for name, entry in data.items():
        url = entry.get("url") if isinstance(entry, dict) else None
        if not url:
            logger.debug("pool_entry_skipped", pool=name)
            continue
        pools.append(PoolEndpoint(name=name, url=f"{url}stats"))
    return pools


class PoolDirectory:
    """Downloads the pool list and reads pool stats."""

    def __init__(self, session: aiohttp.ClientSession, list_url: str = POOL_LIST_URL,
                 timeout: float = DEFAULT_TIMEOUT):
        self.session = session
        self.list_url = list_url
        self.timeout = timeout

    async def fetch_pool_list(self) -> List[PoolEndpoint]:
        data = await fetch_json(self.session, self.list_url, self.timeout, label="pool_list")
        pools = parse_pool_list(data)
        logger.info("pool_list_fetched", url=self.list_url, pools=len(pools))
        return pools

    async def fetch_network_stats(self, pool: PoolEndpoint) -> Optional[Dict[str, Any]]:
        """
        Read the ``network`` section of a pool's stats.

        Returns:
            The network stats, or None when the pool answered without them
        """
        data = await fetch_json(self.session, pool.url, self.timeout, label="pool_stats")
        if not isinstance(data, dict) or not isinstance(data.get("network"), dict):
            logger.debug("pool_stats_without_network", pool=pool.name)
            return None
        return data["network"]
