import asyncio
import logging
import os
from typing import Dict, Optional

from opentelemetry import trace

from hostproxy.config import ProxyConfig, load_config
from hostproxy.errors import ConfigError
from hostproxy.metrics import ROUTED_HOSTS, ROUTING_GENERATION
from hostproxy.routing import HostRouter, RoutingTable
from hostproxy.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)

logger = logging.getLogger("uvicorn.error")
tracer = trace.get_tracer(__name__)


def _mtime(path: str) -> Optional[float]:
    try:
        return os.stat(path).st_mtime
    except OSError:
        return None


class ConfigReloader:
    """
    Loads the configuration file into a HostRouter.

    Used at startup (errors are fatal to the caller), on SIGHUP, from the admin
    ``/reload`` endpoint, and by the certificate watcher. A failed reload
    leaves the active routing table untouched.
    """

    def __init__(
        self,
        host_router: HostRouter,
        config_path: str,
        certificate_root: Optional[str] = None,
    ):
        self.router = host_router
        self.config_path = config_path
        self.certificate_root = certificate_root
        self.config: Optional[ProxyConfig] = None
        self.last_error: Optional[str] = None
        self._fingerprint: Dict[str, Optional[float]] = {}

    def reload(self) -> RoutingTable:
        with tracer.start_as_current_span("reload_config") as span:
            span.set_attribute("config.path", self.config_path)
            try:
                config = load_config(self.config_path, self.certificate_root)
                table = self.router.configure(config.routes, config.certificates)
            except ConfigError as e:
                self.last_error = e.detail
                span.set_attribute("config.error", e.detail)
                raise
            self.config = config
            self.last_error = None
            self._fingerprint = self._current_fingerprint()
            ROUTING_GENERATION.set(table.generation)
            ROUTED_HOSTS.set(len(table))
            return table

    def try_reload(self) -> bool:
        """Reload, logging instead of raising. Returns whether it succeeded."""
        try:
            self.reload()
        except ConfigError as e:
            log_exception_with_details(
                logger, "[Reload] Keeping previous routing table:", e, logging.WARNING
            )
            return False
        except Exception as e:
            self.last_error = format_exception_message(e)
            log_exception_with_details(
                logger,
                "[Reload] Unexpected error, keeping previous routing table:",
                e,
                include_traceback=True,
            )
            return False
        return True

    def _current_fingerprint(self) -> Dict[str, Optional[float]]:
        files = self.config.watched_files() if self.config else [self.config_path]
        return {path: _mtime(path) for path in files}

    def has_changed(self) -> bool:
        """Whether the config file or any bound certificate/key file changed on disk."""
        return self._current_fingerprint() != self._fingerprint

    async def watch(self, interval: float) -> None:
        """
        Poll the watched files and reload on change, so certificates renewed
        by an external tool are picked up without a restart.
        """
        logger.info(f"[Reload] Watching configuration and certificates every {interval}s")
        while True:
            await asyncio.sleep(interval)
            if self.has_changed():
                logger.info("[Reload] Change detected on disk, reloading")
                # Certificate loading reads files; keep it off the event loop
                ok = await asyncio.to_thread(self.try_reload)
                if not ok:
                    # Do not retry the same broken state on every tick
                    self._fingerprint = self._current_fingerprint()
