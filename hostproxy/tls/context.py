"""
TLS material for the encrypted listener.

Certificates are issued and renewed by an external tool; the proxy only reads
the chain and key files when a routing table is built (startup or reload).
"""

import logging
import ssl
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Optional

from hostproxy.errors import ConfigError, TLSConfigError
from hostproxy.models import CertificateBinding

logger = logging.getLogger("uvicorn.error")

ContextFactory = Callable[[CertificateBinding], ssl.SSLContext]


def load_server_context(binding: CertificateBinding) -> ssl.SSLContext:
    """Build a server-side context from one host's certificate chain and key."""
    context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    context.set_alpn_protocols(["http/1.1"])
    try:
        context.load_cert_chain(certfile=binding.certfile, keyfile=binding.keyfile)
    except (OSError, ssl.SSLError) as e:
        raise ConfigError(
            f"Cannot load certificate for {binding.host} "
            f"({binding.certfile}, {binding.keyfile}): {e}"
        ) from e
    return context


class CertificateStore:
    """Immutable host -> SSLContext map."""

    def __init__(self, contexts: Optional[Mapping[str, ssl.SSLContext]] = None):
        self._contexts = MappingProxyType(dict(contexts or {}))

    @classmethod
    def load(
        cls,
        bindings: Iterable[CertificateBinding],
        context_factory: Optional[ContextFactory] = load_server_context,
    ) -> "CertificateStore":
        if context_factory is None:
            return cls()
        contexts = {}
        for binding in bindings:
            contexts[binding.host] = context_factory(binding)
            logger.info(f"[TLS] Loaded certificate for {binding.host}")
        return cls(contexts)

    def get(self, host: str) -> ssl.SSLContext:
        try:
            return self._contexts[host]
        except KeyError:
            raise TLSConfigError(host, f"no certificate for {host}") from None

    def __contains__(self, host: object) -> bool:
        return host in self._contexts

    def __len__(self) -> int:
        return len(self._contexts)

    @property
    def hosts(self) -> frozenset:
        return frozenset(self._contexts)


SNISelector = Callable[[Optional[str]], ssl.SSLContext]


def create_sni_server_context(select: SNISelector) -> ssl.SSLContext:
    """
    Base context for the encrypted listener.

    The base context holds no certificate of its own: the SNI callback swaps
    in the per-host context returned by ``select``. A name ``select`` rejects
    with ``TLSConfigError`` aborts the handshake with ``unrecognized_name``.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.set_alpn_protocols(["http/1.1"])

    def _sni_callback(ssl_object, server_name, _base_context):
        try:
            ssl_object.context = select(server_name)
        except TLSConfigError as e:
            logger.warning(f"[TLS] Refusing handshake for {server_name!r}: {e.detail}")
            return ssl.ALERT_DESCRIPTION_UNRECOGNIZED_NAME
        return None

    context.sni_callback = _sni_callback
    return context
