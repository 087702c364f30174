"""
JSON-RPC method dispatch.

A fixed set of daemon methods is answered by dedicated handlers, most of
which go through the local store fallback. Every other method is forwarded
verbatim to the upstream daemon. Both recognized and forwarded methods are
cached per (host, port, method, params).
"""
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from cache import RequestCache, fingerprint
from .client import DaemonClient
from .errors import InvalidParamsError, InvalidRequestError
from .fallback import FallbackResolver
from .local_store import LocalBlockStore
from .models import NodeEndpoint, ProxyResult, RpcResult

logger = structlog.get_logger()

ClientFactory = Callable[[str, int], DaemonClient]
Handler = Callable[[DaemonClient, Any], Awaitable[Any]]

# Writes are never answered from cache
UNCACHED_METHODS = frozenset({"submitblock"})


def _named_param(params: Any, name: str) -> Any:
    if isinstance(params, dict) and params.get(name) is not None:
        return params[name]
    raise InvalidParamsError(f"Missing parameter: {name}")


def _positional_param(params: Any, index: int = 0) -> Any:
    if isinstance(params, (list, tuple)) and len(params) > index:
        return params[index]
    raise InvalidParamsError(f"Missing positional parameter {index}")


def annotate(result: Any, node: NodeEndpoint) -> Any:
    """Wrap object results so they carry ``node`` and ``cached``; leave scalars alone."""
    if isinstance(result, dict):
        return RpcResult.from_payload(result, node)
    return result


def mark_cached(result: Any) -> Any:
    if isinstance(result, ProxyResult):
        return result.as_cached()
    return result


class JsonRpcDispatcher:
    """Maps JSON-RPC method names onto handlers."""

    def __init__(self, cache: RequestCache, client_factory: ClientFactory,
                 resolver: FallbackResolver, store: Optional[LocalBlockStore] = None,
                 ttl: Optional[float] = None):
        """
        Args:
            cache: Shared request cache
            client_factory: Builds a daemon client for (host, port)
            resolver: Local store / upstream fallback
            store: Local replicated store, or None to always use the upstream
            ttl: Cache TTL for handler results; the cache default when None
        """
        self.cache = cache
        self.client_factory = client_factory
        self.resolver = resolver
        self.store = store
        self.ttl = ttl
        self._handlers: Dict[str, Handler] = {
            "f_blocks_list_json": self._get_blocks,
            "f_block_json": self._get_block,
            "f_transaction_json": self._get_transaction,
            "getblockcount": self._get_block_count,
            "on_getblockhash": self._get_block_hash,
            "getlastblockheader": self._get_last_block_header,
            "getblockheaderbyhash": self._get_block_header_by_hash,
            "getblockheaderbyheight": self._get_block_header_by_height,
            "f_on_transactions_pool_json": self._get_transaction_pool,
            "getblocktemplate": self._get_block_template,
            "submitblock": self._submit_block,
            "getcurrencyid": self._get_currency_id,
        }

    @property
    def recognized_methods(self) -> frozenset:
        return frozenset(self._handlers)

    async def dispatch(self, host: str, port: int, method: Any, params: Any = None) -> Any:
        """
        Answer one JSON-RPC call.

        Args:
            host: Target daemon host
            port: Target daemon port
            method: JSON-RPC method name
            params: JSON-RPC params, passed through untouched for unknown methods

        Returns:
            The handler result; object results carry ``node`` and ``cached``

        Raises:
            InvalidRequestError: No method given
            InvalidParamsError: A recognized method is missing a parameter
            FallbackExhaustedError: Neither the local store nor the upstream answered
            UpstreamError: An upstream-only method failed
        """
        if not method or not isinstance(method, str):
            raise InvalidRequestError("No method defined")

        cacheable = method not in UNCACHED_METHODS
        key = fingerprint(host, port, f"json_rpc:{method}", params)

        if cacheable:
            hit = self.cache.get(key)
            if hit is not None:
                return mark_cached(hit)

        handler = self._handlers.get(method)
        client = self.client_factory(host, port)
        if handler is None:
            logger.debug("json_rpc_passthrough", method=method, node=str(client.endpoint))
            result = await client.json_rpc(method, params)
        else:
            result = await handler(client, params)

        result = annotate(result, NodeEndpoint(host=host, port=port))
        if cacheable and result is not None:
            self.cache.set(key, result, self.ttl)
        return result

    def _local(self, read: Callable[[LocalBlockStore], Awaitable[Any]]) -> Optional[Callable[[], Awaitable[Any]]]:
        if self.store is None:
            return None
        store = self.store
        return lambda: read(store)

    # Handlers backed by the local store

    async def _get_blocks(self, client: DaemonClient, params: Any) -> Any:
        height = _named_param(params, "height")
        return await self.resolver.resolve(
            "f_blocks_list_json",
            self._local(lambda store: store.get_blocks(height)),
            lambda: client.get_blocks(height)
        )

    async def _get_block(self, client: DaemonClient, params: Any) -> Any:
        block_hash = _named_param(params, "hash")
        return await self.resolver.resolve(
            "f_block_json",
            self._local(lambda store: store.get_block(block_hash)),
            lambda: client.get_block(block_hash)
        )

    async def _get_transaction(self, client: DaemonClient, params: Any) -> Any:
        tx_hash = _named_param(params, "hash")
        return await self.resolver.resolve(
            "f_transaction_json",
            self._local(lambda store: store.get_transaction(tx_hash)),
            lambda: client.get_transaction(tx_hash)
        )

    async def _get_block_count(self, client: DaemonClient, params: Any) -> Any:
        async def local_count(store: LocalBlockStore):
            payload = await store.get_block_count()
            return payload["count"], payload

        network: Dict[str, int] = {}

        async def network_count():
            network["count"] = await client.get_block_count()
            return network["count"]

        async def live_count():
            # Reuse the count fetched for the deviance check when there is one
            if "count" not in network:
                network["count"] = await client.get_block_count()
            return {"count": network["count"], "status": "OK"}

        return await self.resolver.resolve_checked(
            "getblockcount",
            network_count,
            self._local(local_count),
            live_count
        )

    async def _get_block_hash(self, client: DaemonClient, params: Any) -> Any:
        height = _positional_param(params, 0)
        return await self.resolver.resolve(
            "on_getblockhash",
            self._local(lambda store: store.get_block_hash(height)),
            lambda: client.get_block_hash(height)
        )

    async def _get_last_block_header(self, client: DaemonClient, params: Any) -> Any:
        return await self.resolver.resolve(
            "getlastblockheader",
            self._local(lambda store: store.get_last_block_header()),
            client.get_last_block_header
        )

    async def _get_block_header_by_hash(self, client: DaemonClient, params: Any) -> Any:
        block_hash = _named_param(params, "hash")
        return await self.resolver.resolve(
            "getblockheaderbyhash",
            self._local(lambda store: store.get_block_header_by_hash(block_hash)),
            lambda: client.get_block_header_by_hash(block_hash)
        )

    async def _get_block_header_by_height(self, client: DaemonClient, params: Any) -> Any:
        height = _named_param(params, "height")
        return await self.resolver.resolve(
            "getblockheaderbyheight",
            self._local(lambda store: store.get_block_header_by_height(height)),
            lambda: client.get_block_header_by_height(height)
        )

    # Upstream-only handlers

    async def _get_transaction_pool(self, client: DaemonClient, params: Any) -> Any:
        return {
            "status": "OK",
            "transactions": await client.get_transaction_pool()
        }

    async def _get_block_template(self, client: DaemonClient, params: Any) -> Any:
        return await client.get_block_template(
            reserve_size=_named_param(params, "reserve_size"),
            wallet_address=_named_param(params, "wallet_address")
        )

    async def _submit_block(self, client: DaemonClient, params: Any) -> Any:
        return await client.submit_block(_positional_param(params, 0))

    async def _get_currency_id(self, client: DaemonClient, params: Any) -> Any:
        return {"currency_id_blob": await client.get_currency_id()}
