from .context import (
    CertificateStore,
    create_sni_server_context,
    load_server_context,
)

__all__ = [
    "CertificateStore",
    "create_sni_server_context",
    "load_server_context",
]
