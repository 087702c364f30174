"""Runtime settings for the daemon API proxy."""
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from proxy.constants import (
    BACKUP_SEEDS,
    CACHE_TTL,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_TIMEOUT,
    LOCAL_STORE_TIMEOUT,
    MAX_DEVIANCE,
    POOL_LIST_URL,
    POOL_REFRESH_INTERVAL,
    TARGET_BLOCK_TIME,
)
from proxy.models import NodeEndpoint, PoolEndpoint


class ProxySettings(BaseSettings):
    """
    Proxy configuration, read from ``PROXY_*`` environment variables or a
    ``.env`` file. List settings (``PROXY_SEEDS``, ``PROXY_POOLS``) are JSON.
    """
    model_config = SettingsConfigDict(env_prefix="PROXY_", env_file=".env", extra="ignore")

    # HTTP listener
    bind_host: str = Field(default="0.0.0.0")
    bind_port: int = Field(default=80)

    # Daemon addressed by host-less routes
    default_host: str = Field(default=DEFAULT_HOST)
    default_port: int = Field(default=DEFAULT_PORT)

    # Caching
    cache_ttl: int = Field(default=CACHE_TTL, gt=0, description="Default cache TTL in seconds")
    target_block_time: int = Field(default=TARGET_BLOCK_TIME, gt=0)
    global_cache_ttl: Optional[int] = Field(
        default=None,
        description="TTL of the network aggregates; a third of the block time when unset"
    )
    global_refresh_interval: Optional[float] = Field(
        default=None,
        description="Background refresh period of the aggregates; half their TTL when unset"
    )

    # Upstream calls
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0, description="Per upstream call, seconds")
    seeds: List[NodeEndpoint] = Field(
        default_factory=lambda: [NodeEndpoint(**seed) for seed in BACKUP_SEEDS]
    )

    # Mining pools
    pools: List[PoolEndpoint] = Field(default_factory=list)
    pool_list_url: str = Field(default=POOL_LIST_URL)
    pool_refresh_interval: float = Field(default=POOL_REFRESH_INTERVAL, gt=0)

    # Local replicated store
    local_store_url: Optional[str] = Field(default=None)
    local_store_timeout: float = Field(default=LOCAL_STORE_TIMEOUT, gt=0)
    max_deviance: int = Field(default=MAX_DEVIANCE, ge=0)

    # Logging
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=True)

    @model_validator(mode="after")
    def _derive_global_timings(self) -> "ProxySettings":
        if self.global_cache_ttl is None:
            self.global_cache_ttl = max(1, round(self.target_block_time / 3))
        if self.global_refresh_interval is None:
            self.global_refresh_interval = self.global_cache_ttl / 2
        if self.global_refresh_interval >= self.global_cache_ttl:
            raise ValueError("global_refresh_interval must be shorter than global_cache_ttl")
        return self


@lru_cache()
def get_settings() -> ProxySettings:
    return ProxySettings()
