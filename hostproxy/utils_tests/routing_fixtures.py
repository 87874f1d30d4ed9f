import ssl

import httpx

from hostproxy.models import BackendTarget, CertificateBinding, Route


def make_route(host: str, port: int, **kwargs) -> Route:
    return Route(host=host, backend=BackendTarget(host="127.0.0.1", port=port), **kwargs)


def make_binding(host: str) -> CertificateBinding:
    return CertificateBinding(
        host=host,
        certfile=f"/etc/letsencrypt/live/{host}/fullchain.pem",
        keyfile=f"/etc/letsencrypt/live/{host}/privkey.pem",
    )


class FakeContextFactory:
    """Stands in for certificate loading; records which bindings were loaded."""

    def __init__(self):
        self.loaded = []
        self.contexts = {}

    def __call__(self, binding: CertificateBinding) -> ssl.SSLContext:
        self.loaded.append(binding.host)
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        self.contexts[binding.host] = context
        return context


def backend_response(status_code: int = 200, body: bytes = b"", headers=None) -> httpx.Response:
    """
    Response for an httpx.MockTransport handler with an unread body, as a
    real backend connection delivers it to ``aiter_raw``.
    """
    return httpx.Response(status_code, headers=headers, stream=httpx.ByteStream(body))
