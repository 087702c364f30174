import argparse

import structlog
import uvicorn

from config.logging import configure_logging
from config.settings import ProxySettings
from .api import create_app

logger = structlog.get_logger()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Daemon API Proxy")
    parser.add_argument("--host", dest="bind_host", help="Address to listen on")
    parser.add_argument("--port", dest="bind_port", type=int, help="Port to listen on")
    parser.add_argument("--default-host", help="Daemon answering host-less routes")
    parser.add_argument("--default-port", type=int, help="Port of the default daemon")
    parser.add_argument("--cache-ttl", type=int, help="Cache TTL for proxied responses, seconds")
    parser.add_argument("--timeout", type=float, help="Upstream call timeout, seconds")
    parser.add_argument("--max-deviance", type=int, help="Blocks the local store may trail the network")
    parser.add_argument("--local-store-url", help="SQLAlchemy URL of the replicated block store")
    parser.add_argument("--log-level", help="Log level (DEBUG, INFO, ...)")
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> ProxySettings:
    """Settings from the environment, overridden by any command line option given."""
    overrides = {name: value for name, value in vars(args).items() if value is not None}
    return ProxySettings(**overrides)


def main(argv=None):
    """Main entry point for the daemon API proxy."""
    settings = build_settings(parse_args(argv))
    configure_logging(settings.log_level, json_output=settings.log_json)

    logger.info("proxy_starting",
                host=settings.bind_host,
                port=settings.bind_port,
                default_node=f"{settings.default_host}:{settings.default_port}")

    uvicorn.run(create_app(settings), host=settings.bind_host, port=settings.bind_port,
                log_config=None)


if __name__ == "__main__":
    main()
