import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import Optional

import httpx
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import PlainTextResponse, RedirectResponse, Response
from opentelemetry import trace

from hostproxy.errors import (
    BackendUnavailableError,
    NotFoundError,
    ProxyError,
    TLSConfigError,
)
from hostproxy.metrics import record_request
from hostproxy.models import split_host_port
from hostproxy.proxy.acme import challenge_response
from hostproxy.proxy.forward import create_backend_client, forward_to_backend
from hostproxy.proxy.target import OriginFormMiddleware, request_path
from hostproxy.routing import HostRouter
from hostproxy.utils import describe_client
from hostproxy.utils.traced_requests import traced_request
from hostproxy.vars import ACME_WEBROOT, HTTPS_PUBLIC_PORT

router = APIRouter()
tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

class Listener(str, Enum):
    PLAINTEXT = "http"
    ENCRYPTED = "https"


def requested_host(request: Request) -> str:
    """The virtual host the client declared, without port."""
    return split_host_port(request.headers.get("host", ""))


def build_https_redirect(request: Request, host: str) -> str:
    """Same host and path on the encrypted listener."""
    authority = host if HTTPS_PUBLIC_PORT == 443 else f"{host}:{HTTPS_PUBLIC_PORT}"
    query = request.url.query
    return f"https://{authority}{request_path(request)}" + (f"?{query}" if query else "")


def _client_label(request: Request) -> str:
    client = request.client
    return describe_client(client.host, client.port) if client else describe_client(None)


async def handle_request(request: Request) -> Response:
    """
    Route one request by its declared host.

    Unknown hosts raise NotFoundError. On the plaintext listener a route with
    redirect_to_https is answered with a redirect and never forwarded. On the
    encrypted listener a host without a certificate binding raises
    TLSConfigError. Everything else is forwarded to the route's backend.
    """
    listener: Listener = request.app.state.listener
    host_router: HostRouter = request.app.state.router
    # One snapshot per request: every decision below sees the same table
    table = host_router.snapshot()
    host = requested_host(request)

    with traced_request(
        tracer,
        operation="handle_request",
        host=host,
        listener=listener.value,
        start_message=(
            f"[Proxy] {_client_label(request)} {request.method} {host}{request.url.path}"
        ),
        extra_attrs={"routing.generation": table.generation},
    ) as span:
        if not host:
            record_request(None, listener.value, "not_found")
            raise NotFoundError(None, "no such host")

        try:
            route = table.lookup(host)
        except NotFoundError:
            record_request(None, listener.value, "not_found")
            raise

        if listener is Listener.PLAINTEXT:
            challenge = challenge_response(request, ACME_WEBROOT)
            if challenge is not None:
                record_request(route.host, listener.value, "acme_challenge")
                return challenge

        if listener is Listener.PLAINTEXT and route.redirect_to_https:
            location = build_https_redirect(request, route.host)
            span.set_attribute("proxy.redirect", location)
            record_request(route.host, listener.value, "redirect")
            return RedirectResponse(location, status_code=301)

        if listener is Listener.ENCRYPTED:
            try:
                table.binding_for(route.host)
            except TLSConfigError:
                record_request(route.host, listener.value, "tls_refused")
                raise

        client: httpx.AsyncClient = request.app.state.client
        try:
            response = await forward_to_backend(request, route, client, listener.value)
        except BackendUnavailableError:
            record_request(route.host, listener.value, "backend_error")
            raise
        record_request(route.host, listener.value, "forwarded")
        return response


class ProxyEndpoint:
    """
    Catch-all ASGI endpoint; the declared host decides where the request goes.
    Mounted as a plain ASGI app so every method, extension methods such as
    PROPFIND included, reaches the backend.
    """

    async def __call__(self, scope, receive, send):
        request = Request(scope, receive, send)
        response = await handle_request(request)
        await response(scope, receive, send)


router.add_route("/{path:path}", ProxyEndpoint(), include_in_schema=False)


async def proxy_error_handler(request: Request, exc: ProxyError) -> Response:
    host = requested_host(request)
    if isinstance(exc, NotFoundError):
        logger.info(f"[Proxy] No route for host {host or '<none>'}")
    elif isinstance(exc, TLSConfigError):
        logger.warning(f"[Proxy] No certificate for {host} on encrypted listener")
    headers = {"connection": "close"} if isinstance(exc, TLSConfigError) else None
    return PlainTextResponse(exc.detail, status_code=exc.status_code, headers=headers)


def create_proxy_app(
    host_router: HostRouter,
    listener: Listener,
    client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    ASGI app for one listener. When no client is passed, a pooled backend
    client is created on startup and closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.client is None
        if owned:
            app.state.client = create_backend_client()
        try:
            yield
        finally:
            if owned:
                await app.state.client.aclose()
                app.state.client = None

    app = FastAPI(
        title=f"hostproxy ({listener.value})",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.router = host_router
    app.state.listener = listener
    app.state.client = client
    app.add_middleware(OriginFormMiddleware)
    app.add_exception_handler(ProxyError, proxy_error_handler)
    app.include_router(router)
    return app
