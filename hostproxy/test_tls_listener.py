"""
Handshake tests for the encrypted listener: a real uvicorn server with the
SNI-selecting context, real certificates, and a fake backend behind it.
"""

import asyncio
import contextlib
import ssl

import httpx
import pytest

from hostproxy.main import ListenerServer, SNIConfig
from hostproxy.proxy import Listener, create_proxy_app
from hostproxy.proxy.forward import create_backend_client
from hostproxy.routing import HostRouter
from hostproxy.utils_tests.certificates import write_self_signed_certificate
from hostproxy.utils_tests.routing_fixtures import backend_response, make_route


@contextlib.asynccontextmanager
async def running_listener(host_router: HostRouter, backend):
    upstream = create_backend_client(transport=httpx.MockTransport(backend))
    app = create_proxy_app(host_router, Listener.ENCRYPTED, client=upstream)
    config = SNIConfig(
        app,
        host_router,
        host="127.0.0.1",
        port=0,
        # Leave logging alone so caplog keeps seeing uvicorn.error records
        log_config=None,
        lifespan="off",
    )
    server = ListenerServer(config)
    task = asyncio.create_task(server.serve())
    try:
        for _ in range(500):
            if server.started or task.done():
                break
            await asyncio.sleep(0.01)
        assert server.started, "encrypted listener did not start"
        yield server.servers[0].sockets[0].getsockname()[1]
    finally:
        server.should_exit = True
        await asyncio.wait_for(task, timeout=10)
        await upstream.aclose()


def _client_context() -> ssl.SSLContext:
    # The certificates are self-signed; the test compares the served one instead
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


async def _fetch(port: int, server_name: str, host_header: str):
    reader, writer = await asyncio.open_connection(
        "127.0.0.1", port, ssl=_client_context(), server_hostname=server_name
    )
    try:
        served = writer.get_extra_info("ssl_object").getpeercert(binary_form=True)
        writer.write(
            f"GET /hello HTTP/1.1\r\nHost: {host_header}\r\nConnection: close\r\n\r\n".encode()
        )
        await writer.drain()
        response = await asyncio.wait_for(reader.read(), timeout=10)
    finally:
        writer.close()
        with contextlib.suppress(ssl.SSLError, ConnectionError):
            await writer.wait_closed()
    return served, response


@pytest.fixture
def tls_router(tmp_path):
    binding, der = write_self_signed_certificate(tmp_path, "app-a.example.com")
    router = HostRouter()
    router.configure(
        [make_route("app-a.example.com", 8000), make_route("app-b.example.com", 8501)],
        [binding],
    )
    return router, der


@pytest.mark.asyncio
async def test_bound_name_served_with_its_certificate(tls_router):
    router, der = tls_router
    seen = []

    def backend(request):
        seen.append(request)
        return backend_response(200, b"decrypted and forwarded")

    async with running_listener(router, backend) as port:
        served, response = await _fetch(port, "app-a.example.com", "app-a.example.com")

    assert served == der
    assert response.startswith(b"HTTP/1.1 200")
    assert b"decrypted and forwarded" in response
    assert str(seen[0].url) == "http://127.0.0.1:8000/hello"
    assert seen[0].headers["x-forwarded-proto"] == "https"


@pytest.mark.asyncio
@pytest.mark.parametrize("server_name", ["app-b.example.com", "unknown.example.com"])
async def test_unbound_name_fails_handshake(tls_router, server_name, caplog):
    router, _ = tls_router
    seen = []

    def backend(request):
        seen.append(request)
        return backend_response(200, b"should not be reached")

    async with running_listener(router, backend) as port:
        with pytest.raises((ssl.SSLError, ConnectionError)):
            await _fetch(port, server_name, server_name)

    assert seen == []
    assert f"[TLS] Refusing handshake for '{server_name}'" in caplog.text


@pytest.mark.asyncio
async def test_reload_swaps_certificate_without_restart(tls_router, tmp_path):
    router, _ = tls_router
    binding_b, der_b = write_self_signed_certificate(tmp_path, "app-b.example.com")

    async with running_listener(router, lambda request: backend_response(200, b"ok")) as port:
        router.configure(
            [make_route("app-a.example.com", 8000), make_route("app-b.example.com", 8501)],
            [binding_b],
        )
        served, response = await _fetch(port, "app-b.example.com", "app-b.example.com")

    assert served == der_b
    assert response.startswith(b"HTTP/1.1 200")
