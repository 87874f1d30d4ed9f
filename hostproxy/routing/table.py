"""
Routing table snapshots and the router that swaps them.

A ``RoutingTable`` is never mutated once built. ``HostRouter.configure``
builds a complete new table (validation and certificate loading included) and
publishes it with a single reference assignment, so a request handler that
reads ``router.table`` once sees either the whole old table or the whole new
one.
"""

import logging
import ssl
import threading
from types import MappingProxyType
from typing import Iterable, Optional

from opentelemetry import trace

from hostproxy.errors import ConfigError, NotFoundError, TLSConfigError
from hostproxy.models import CertificateBinding, Route, normalize_host, split_host_port
from hostproxy.tls.context import CertificateStore, ContextFactory, load_server_context

logger = logging.getLogger("uvicorn.error")
tracer = trace.get_tracer(__name__)


class RoutingTable:
    def __init__(
        self,
        routes: dict[str, Route],
        bindings: dict[str, CertificateBinding],
        certificates: Optional[CertificateStore] = None,
        generation: int = 0,
    ):
        self._routes = MappingProxyType(dict(routes))
        self._bindings = MappingProxyType(dict(bindings))
        self._certificates = certificates or CertificateStore()
        self.generation = generation

    @classmethod
    def empty(cls) -> "RoutingTable":
        return cls({}, {})

    @classmethod
    def build(
        cls,
        routes: Iterable[Route],
        bindings: Iterable[CertificateBinding] = (),
        context_factory: Optional[ContextFactory] = load_server_context,
        generation: int = 0,
    ) -> "RoutingTable":
        """Validate routes and bindings and return a new snapshot."""
        by_host: dict[str, Route] = {}
        for route in routes:
            if route.host in by_host:
                raise ConfigError(f"Duplicate route for host {route.host}")
            by_host[route.host] = route

        bound: dict[str, CertificateBinding] = {}
        for binding in bindings:
            if binding.host in bound:
                raise ConfigError(f"Duplicate certificate binding for {binding.host}")
            if binding.host not in by_host:
                raise ConfigError(
                    f"Certificate binding for {binding.host} has no matching route"
                )
            bound[binding.host] = binding

        for host, route in by_host.items():
            if route.redirect_to_https and host not in bound:
                logger.warning(
                    f"[Routing] {host} redirects to HTTPS but has no certificate binding"
                )

        certificates = CertificateStore.load(bound.values(), context_factory)
        return cls(by_host, bound, certificates, generation)

    @property
    def routes(self):
        return self._routes

    @property
    def bindings(self):
        return self._bindings

    @property
    def hosts(self) -> frozenset:
        return frozenset(self._routes)

    def __len__(self) -> int:
        return len(self._routes)

    def __contains__(self, host: object) -> bool:
        return isinstance(host, str) and split_host_port(host) in self._routes

    def lookup(self, host: str) -> Route:
        """Case-insensitive exact match on the virtual host name."""
        key = split_host_port(host)
        route = self._routes.get(key)
        if route is None:
            raise NotFoundError(key)
        return route

    def binding_for(self, host: str) -> CertificateBinding:
        key = split_host_port(host)
        binding = self._bindings.get(key)
        if binding is None:
            raise TLSConfigError(key)
        return binding

    def tls_context_for(self, host: str) -> ssl.SSLContext:
        return self._certificates.get(normalize_host(host))


class HostRouter:
    """Holds the active ``RoutingTable`` and replaces it atomically."""

    def __init__(
        self,
        context_factory: Optional[ContextFactory] = load_server_context,
        default_tls_host: str = "",
    ):
        self._context_factory = context_factory
        self._default_tls_host = normalize_host(default_tls_host)
        self._lock = threading.Lock()
        self._table = RoutingTable.empty()
        self._configured = False

    @property
    def table(self) -> RoutingTable:
        return self._table

    def snapshot(self) -> RoutingTable:
        return self._table

    @property
    def is_configured(self) -> bool:
        return self._configured

    def configure(
        self,
        routes: Iterable[Route],
        certificate_bindings: Iterable[CertificateBinding] = (),
    ) -> RoutingTable:
        """
        Replace the active routing table.

        Raises ConfigError when two routes share a host name, when a binding
        names a host without a route, or when certificate material cannot be
        loaded. The previous table stays active on failure.
        """
        routes = list(routes)
        certificate_bindings = list(certificate_bindings)
        with tracer.start_as_current_span("configure_routes") as span:
            span.set_attribute("routing.routes", len(routes))
            span.set_attribute("routing.certificates", len(certificate_bindings))
            with self._lock:
                try:
                    table = RoutingTable.build(
                        routes,
                        certificate_bindings,
                        context_factory=self._context_factory,
                        generation=self._table.generation + 1,
                    )
                except ConfigError as e:
                    span.set_attribute("routing.error", e.detail)
                    logger.error(f"[Routing] Configuration rejected: {e.detail}")
                    raise
                self._table = table
                self._configured = True
            span.set_attribute("routing.generation", table.generation)
        logger.info(
            f"[Routing] Activated table generation {table.generation}: "
            f"{len(table)} host(s), {len(table.bindings)} certificate(s)"
        )
        return table

    def resolve(self, host: str) -> Route:
        return self._table.lookup(host)

    def select_tls_context(self, server_name: Optional[str]) -> ssl.SSLContext:
        """TLS context for an SNI name, falling back to DEFAULT_TLS_HOST."""
        table = self._table
        name = normalize_host(server_name or "") or self._default_tls_host
        if not name:
            raise TLSConfigError(None, "client sent no server name")
        return table.tls_context_for(name)

    @property
    def has_certificates(self) -> bool:
        return len(self._table.bindings) > 0
