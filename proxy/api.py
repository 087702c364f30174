"""HTTP surface of the daemon API proxy."""
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, ConfigDict

from cache import get_hit_ratio
from config.logging import log_error
from config.settings import ProxySettings, get_settings
from .errors import (
    FallbackExhaustedError,
    InvalidParamsError,
    InvalidRequestError,
    UpstreamError,
    UpstreamRPCError,
)
from .models import AggregateResult, ErrorResult, ProxyResult
from .service import ProxyService

logger = structlog.get_logger()

# JSON-RPC 2.0 error codes
INVALID_REQUEST = -32600
INVALID_PARAMS = -32602
SERVER_ERROR = -32000


class JsonRpcRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    method: Optional[str] = None
    params: Any = None


def render(result: Any) -> Any:
    if isinstance(result, ProxyResult):
        return result.to_response()
    return result


def result_response(result: ProxyResult) -> JSONResponse:
    """Map a query result onto an HTTP response."""
    status_code = 200
    if isinstance(result, ErrorResult):
        status_code = 502
    elif isinstance(result, AggregateResult) and not result.ok:
        status_code = 503
    return JSONResponse(result.to_response(), status_code=status_code)


def rpc_error(status_code: int, code: int, message: str, data: Any = None) -> JSONResponse:
    error: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return JSONResponse({"jsonrpc": "2.0", "error": error}, status_code=status_code)


def security_headers(cache_ttl: int) -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": "POST, GET, OPTIONS",
        "Access-Control-Allow-Headers": "Origin, X-Requested-With, Content-Type, Accept",
        "Cache-Control": f"max-age={cache_ttl}, public",
        "Referrer-Policy": "no-referrer",
        "Content-Security-Policy": "default-src 'none'",
        "X-Content-Type-Options": "nosniff",
    }


def create_app(settings: Optional[ProxySettings] = None,
               service: Optional[ProxyService] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Proxy configuration; the process settings when None
        service: Service to expose; one is built from ``settings`` when None

    The app's lifespan starts and stops the service.
    """
    settings = settings if settings is not None else get_settings()
    service = service if service is not None else ProxyService(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await service.start()
        try:
            yield
        finally:
            await service.stop()

    app = FastAPI(title="Daemon API Proxy", version="1.0.0", lifespan=lifespan)
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["*"]
    )

    headers = security_headers(settings.cache_ttl)

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.update(headers)
        return response

    # JSON-RPC failures

    @app.exception_handler(InvalidParamsError)
    async def invalid_params_handler(request: Request, exc: InvalidParamsError):
        return rpc_error(400, INVALID_PARAMS, str(exc))

    @app.exception_handler(InvalidRequestError)
    async def invalid_request_handler(request: Request, exc: InvalidRequestError):
        return rpc_error(400, INVALID_REQUEST, str(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError):
        return rpc_error(400, INVALID_REQUEST, "Malformed request", data=str(exc))

    @app.exception_handler(FallbackExhaustedError)
    async def fallback_handler(request: Request, exc: FallbackExhaustedError):
        return rpc_error(502, SERVER_ERROR, str(exc))

    @app.exception_handler(UpstreamError)
    async def upstream_handler(request: Request, exc: UpstreamError):
        log_error(logger, exc, {"path": request.url.path}, event="upstream_request_failed")
        if isinstance(exc, UpstreamRPCError) and exc.code is not None:
            return rpc_error(502, exc.code, str(exc), data=exc.data)
        return rpc_error(502, SERVER_ERROR, str(exc))

    # Fixed routes

    @app.get("/health")
    async def health_check() -> Dict[str, Any]:
        """Liveness check."""
        return {
            "status": "healthy",
            "seeds": len(service.seeds),
            "pools": len(service.pools),
            "cacheSize": len(service.cache),
            "cacheHitRatio": get_hit_ratio(service.cache.namespace)
        }

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/globalHeight")
    async def global_height():
        return result_response(await service.get_global_height())

    @app.get("/globalDifficulty")
    async def global_difficulty():
        return result_response(await service.get_global_difficulty())

    @app.get("/globalPoolHeight")
    async def global_pool_height():
        return result_response(await service.get_global_pool_height())

    @app.get("/globalPoolDifficulty")
    async def global_pool_difficulty():
        return result_response(await service.get_global_pool_difficulty())

    @app.get("/pools")
    async def pools():
        return [pool.model_dump() for pool in service.pools]

    @app.get("/trustedNodes")
    async def trusted_nodes():
        return [seed.model_dump() for seed in service.seeds]

    # Single-node queries, default node first

    async def json_rpc(body: JsonRpcRequest, node: Optional[str] = None, port: Optional[int] = None):
        result = await service.json_rpc(body.method, body.params, host=node, port=port)
        return {"jsonrpc": "2.0", "result": render(result)}

    async def json_rpc_get():
        return rpc_error(400, INVALID_REQUEST, "json_rpc requires POST")

    queries = {
        "info": service.get_info,
        "height": service.get_height,
        "fee": service.get_fee,
        "peers": service.get_peers,
    }

    for prefix in ("", "/{node}", "/{node}/{port}"):
        app.add_api_route(f"{prefix}/json_rpc", json_rpc, methods=["POST"])
        app.add_api_route(f"{prefix}/json_rpc", json_rpc_get, methods=["GET"])
        for name, query in queries.items():
            app.add_api_route(f"{prefix}/{name}", _query_route(query), methods=["GET"])

    return app


def _query_route(query):
    async def route(node: Optional[str] = None, port: Optional[int] = None):
        return result_response(await query(node, port))
    return route
