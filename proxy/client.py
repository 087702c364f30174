"""
Upstream daemon client.

One ``DaemonClient`` addresses one daemon (host, port) and issues single
HTTP or JSON-RPC calls over a shared aiohttp session. Every failure mode
(connection refused, timeout, non-200 status, undecodable body, JSON-RPC
error object) surfaces as an ``UpstreamError``.
"""
import asyncio
import itertools
from typing import Any, Dict, List, Optional

import aiohttp
import structlog

from .constants import DEFAULT_TIMEOUT
from .errors import UpstreamError, UpstreamRPCError
from .metrics import UPSTREAM_CALLS
from .models import NodeEndpoint

logger = structlog.get_logger()

_request_ids = itertools.count(1)


async def fetch_json(session: aiohttp.ClientSession, url: str, timeout: float,
                     label: str, method: str = "GET", payload: Any = None) -> Any:
    """
    Issue one HTTP request and decode the JSON body.

    Args:
        session: Shared client session
        url: Absolute URL
        timeout: Total time allowed for the call, in seconds
        label: Metrics label for the call
        method: HTTP method
        payload: JSON body for POST requests

    Returns:
        The decoded JSON document

    Raises:
        UpstreamError: On any transport, status or decoding failure
    """
    try:
        async with session.request(
            method,
            url,
            json=payload,
            timeout=aiohttp.ClientTimeout(total=timeout)
        ) as response:
            if response.status != 200:
                raise UpstreamError(f"{url} returned status {response.status}", endpoint=url)
            data = await response.json(content_type=None)
    except UpstreamError:
        UPSTREAM_CALLS.labels(method=label, outcome="error").inc()
        raise
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        UPSTREAM_CALLS.labels(method=label, outcome="error").inc()
        raise UpstreamError(f"{url}: {str(e) or type(e).__name__}", endpoint=url) from e

    UPSTREAM_CALLS.labels(method=label, outcome="ok").inc()
    return data


class DaemonClient:
    """Client for a single blockchain daemon."""

    def __init__(self, host: str, port: int, session: aiohttp.ClientSession,
                 timeout: float = DEFAULT_TIMEOUT):
        """
        Args:
            host: Daemon host name or address
            port: Daemon RPC port
            session: Shared aiohttp session, owned by the caller
            timeout: Total time allowed per call, in seconds
        """
        self.host = host
        self.port = port
        self.session = session
        self.timeout = timeout

    @property
    def endpoint(self) -> NodeEndpoint:
        return NodeEndpoint(host=self.host, port=self.port)

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    async def _get(self, path: str) -> Dict[str, Any]:
        data = await fetch_json(self.session, f"{self.base_url}/{path}", self.timeout, label=path)
        if not isinstance(data, dict):
            raise UpstreamError(f"{self.endpoint} /{path} returned a non-object body",
                                endpoint=str(self.endpoint))
        return data

    async def json_rpc(self, method: str, params: Any = None) -> Any:
        """
        Call a JSON-RPC method and return its ``result`` member verbatim.

        Raises:
            UpstreamRPCError: The daemon answered with an ``error`` member
            UpstreamError: Transport or decoding failure
        """
        body = {
            "jsonrpc": "2.0",
            "id": next(_request_ids),
            "method": method,
            "params": params if params is not None else {},
        }
        data = await fetch_json(self.session, f"{self.base_url}/json_rpc", self.timeout,
                                label=method, method="POST", payload=body)
        if not isinstance(data, dict):
            raise UpstreamError(f"{self.endpoint} {method} returned a non-object body",
                                endpoint=str(self.endpoint))

        error = data.get("error")
        if error:
            if isinstance(error, dict):
                raise UpstreamRPCError(error.get("message", "JSON-RPC error"),
                                       code=error.get("code"),
                                       endpoint=str(self.endpoint),
                                       data=error.get("data"))
            raise UpstreamRPCError(str(error), endpoint=str(self.endpoint))

        if "result" not in data:
            raise UpstreamError(f"{self.endpoint} {method} returned no result",
                                endpoint=str(self.endpoint))
        return data["result"]

    # Plain HTTP endpoints

    async def get_info(self) -> Dict[str, Any]:
        return await self._get("getinfo")

    async def get_height(self) -> Dict[str, Any]:
        return await self._get("getheight")

    async def get_fee(self) -> Dict[str, Any]:
        return await self._get("feeinfo")

    async def get_peers(self) -> Dict[str, Any]:
        return await self._get("getpeers")

    # JSON-RPC methods

    async def get_block_count(self) -> int:
        result = await self.json_rpc("getblockcount")
        try:
            return int(result["count"])
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamError(f"{self.endpoint} getblockcount returned no count",
                                endpoint=str(self.endpoint)) from e

    async def get_blocks(self, height: int) -> Any:
        return await self.json_rpc("f_blocks_list_json", {"height": height})

    async def get_block(self, block_hash: str) -> Any:
        return await self.json_rpc("f_block_json", {"hash": block_hash})

    async def get_transaction(self, tx_hash: str) -> Any:
        return await self.json_rpc("f_transaction_json", {"hash": tx_hash})

    async def get_block_hash(self, height: int) -> Any:
        return await self.json_rpc("on_getblockhash", [height])

    async def get_last_block_header(self) -> Any:
        return await self.json_rpc("getlastblockheader")

    async def get_block_header_by_hash(self, block_hash: str) -> Any:
        return await self.json_rpc("getblockheaderbyhash", {"hash": block_hash})

    async def get_block_header_by_height(self, height: int) -> Any:
        return await self.json_rpc("getblockheaderbyheight", {"height": height})

    async def get_transaction_pool(self) -> List[Any]:
        result = await self.json_rpc("f_on_transactions_pool_json")
        if isinstance(result, dict):
            return result.get("transactions", [])
        return result

    async def get_block_template(self, reserve_size: int, wallet_address: str) -> Any:
        return await self.json_rpc("getblocktemplate", {
            "reserve_size": reserve_size,
            "wallet_address": wallet_address
        })

    async def submit_block(self, block_blob: str) -> Any:
        return await self.json_rpc("submitblock", [block_blob])

    async def get_currency_id(self) -> Optional[str]:
        result = await self.json_rpc("getcurrencyid")
        if isinstance(result, dict):
            return result.get("currency_id_blob")
        return result
