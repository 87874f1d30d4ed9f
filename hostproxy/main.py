"""
Process entry point: load the routing configuration, then serve the
plaintext, encrypted and admin listeners from one event loop.

Configuration errors at startup are fatal and no listener is opened.
"""

import argparse
import asyncio
import contextlib
import logging
import logging.config
import signal
import sys
from typing import List, Optional

import uvicorn
from uvicorn.config import LOGGING_CONFIG

from hostproxy.errors import ConfigError
from hostproxy.proxy import Listener, create_proxy_app
from hostproxy.reloader import ConfigReloader
from hostproxy.routing import HostRouter
from hostproxy.server import bind_admin_app, instrument_app
from hostproxy.tls import create_sni_server_context
from hostproxy.vars import (
    ADMIN_HOST,
    ADMIN_PORT,
    BIND_HOST,
    CERT_RELOAD_INTERVAL,
    DEFAULT_TLS_HOST,
    HTTP_PORT,
    HTTPS_PORT,
    LOG_LEVEL,
    PROXY_CONFIG_FILE,
)

logger = logging.getLogger("uvicorn.error")


class ListenerServer(uvicorn.Server):
    """uvicorn server whose signals are handled once for all listeners."""

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self) -> None:
        pass


class SNIConfig(uvicorn.Config):
    """
    uvicorn config for the encrypted listener. Certificates come from the
    router's active table through the SNI callback instead of a single
    certfile, so a reload swaps certificates without rebinding the port.
    """

    def __init__(self, app, host_router: HostRouter, **kwargs):
        self.host_router = host_router
        super().__init__(app, **kwargs)

    def load(self) -> None:
        super().load()
        self.ssl = create_sni_server_context(self.host_router.select_tls_context)


def _server_kwargs(host: str, port: int) -> dict:
    return {
        "host": host,
        "port": port,
        "log_level": LOG_LEVEL.lower(),
        # The proxy is the edge: never take the client address from headers
        "proxy_headers": False,
        "lifespan": "on",
    }


def build_servers(reloader: ConfigReloader) -> List[uvicorn.Server]:
    host_router = reloader.router
    servers: List[uvicorn.Server] = []

    plaintext_app = instrument_app(create_proxy_app(host_router, Listener.PLAINTEXT))
    plaintext_config = uvicorn.Config(
        plaintext_app, **_server_kwargs(BIND_HOST, HTTP_PORT)
    )
    servers.append(ListenerServer(plaintext_config))

    if host_router.has_certificates:
        encrypted_app = instrument_app(create_proxy_app(host_router, Listener.ENCRYPTED))
        encrypted_config = SNIConfig(
            encrypted_app, host_router, **_server_kwargs(BIND_HOST, HTTPS_PORT)
        )
        servers.append(ListenerServer(encrypted_config))
    else:
        logger.info("[Main] No certificate bindings; encrypted listener disabled")

    if ADMIN_PORT:
        admin_config = uvicorn.Config(
            bind_admin_app(reloader), **_server_kwargs(ADMIN_HOST, ADMIN_PORT)
        )
        servers.append(ListenerServer(admin_config))
    return servers


async def serve(reloader: ConfigReloader) -> None:
    servers = build_servers(reloader)
    loop = asyncio.get_running_loop()

    def _shutdown() -> None:
        logger.info("[Main] Shutting down listeners")
        for server in servers:
            server.should_exit = True

    def _reload() -> None:
        logger.info("[Main] SIGHUP received, reloading configuration")
        loop.run_in_executor(None, reloader.try_reload)

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _shutdown)
    loop.add_signal_handler(signal.SIGHUP, _reload)

    watcher = None
    if CERT_RELOAD_INTERVAL > 0:
        watcher = asyncio.create_task(reloader.watch(CERT_RELOAD_INTERVAL))
    try:
        await asyncio.gather(*(server.serve() for server in servers))
    finally:
        if watcher is not None:
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher


def parse_args(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        prog="hostproxy", description="Host-routed reverse proxy"
    )
    parser.add_argument(
        "-c",
        "--config",
        default=PROXY_CONFIG_FILE,
        help=f"Routing configuration file (default: {PROXY_CONFIG_FILE})",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Validate the configuration and certificates, then exit",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.config.dictConfig(LOGGING_CONFIG)
    logger.setLevel(LOG_LEVEL)

    reloader = ConfigReloader(
        HostRouter(default_tls_host=DEFAULT_TLS_HOST), args.config
    )
    try:
        table = reloader.reload()
    except ConfigError as e:
        logger.error(f"[Main] Invalid configuration, not starting: {e.detail}")
        return 1

    if args.check:
        logger.info(
            f"[Main] Configuration OK: {len(table)} host(s), "
            f"{len(table.bindings)} certificate(s)"
        )
        return 0

    asyncio.run(serve(reloader))
    return 0


if __name__ == "__main__":
    sys.exit(main())
