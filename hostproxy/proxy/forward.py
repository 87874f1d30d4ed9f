import logging
from typing import AsyncIterator, Optional

import httpx
from fastapi import Request
from fastapi.responses import StreamingResponse
from opentelemetry import trace

from hostproxy.errors import BackendTimeoutError, BackendUnavailableError
from hostproxy.models import Route
from hostproxy.proxy.headers import prepare_request_headers, prepare_response_headers
from hostproxy.proxy.target import request_path
from hostproxy.utils.exception_logging import log_exception_with_details
from hostproxy.vars import (
    PROXY_CONNECT_TIMEOUT,
    PROXY_MAX_CONNECTIONS,
    PROXY_MAX_KEEPALIVE,
    PROXY_TIMEOUT,
)

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")


def create_backend_client(
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Shared client for all backends. Keep-alive connections are pooled per
    backend address and reused across requests.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(PROXY_TIMEOUT, connect=PROXY_CONNECT_TIMEOUT),
        limits=httpx.Limits(
            max_connections=PROXY_MAX_CONNECTIONS,
            max_keepalive_connections=PROXY_MAX_KEEPALIVE,
        ),
        follow_redirects=False,  # Redirects are relayed to the client as-is
        trust_env=False,
        transport=transport,
    )


def get_target_url(request: Request, route: Route) -> str:
    """Backend URL for the request, keeping the path as the client encoded it."""
    path = request_path(request)
    query_string = request.url.query
    if query_string:
        path = f"{path}?{query_string}"
    return f"{route.backend.base_url}{path}"


def _encode_headers(headers):
    return [
        (name.encode("latin-1"), value.encode("latin-1")) for name, value in headers
    ]


def _decode_headers(response: httpx.Response):
    return [
        (name.decode("latin-1"), value.decode("latin-1"))
        for name, value in response.headers.raw
    ]


def _request_body(request: Request):
    # Only stream a body when the client declared one
    if "content-length" in request.headers or "transfer-encoding" in request.headers:
        return request.stream()
    return None


async def relay_body(upstream: httpx.Response, route: Route) -> AsyncIterator[bytes]:
    """
    Stream the backend body to the client byte for byte.

    The upstream response is closed when the stream finishes, fails, or is
    abandoned because the client went away, which releases the backend
    connection.
    """
    try:
        async for chunk in upstream.aiter_raw():
            yield chunk
    except httpx.HTTPError as e:
        log_exception_with_details(
            logger, f"[Proxy] {route.host} -> {route.backend} broke mid-stream:", e
        )
        raise BackendUnavailableError(
            str(route.backend), "backend broke mid-stream"
        ) from e
    finally:
        await upstream.aclose()


async def forward_to_backend(
    request: Request,
    route: Route,
    client: httpx.AsyncClient,
    scheme: str,
) -> StreamingResponse:
    """
    Forward a request to the route's backend and stream the response back.

    Connect errors and errors before response headers arrive raise
    BackendUnavailableError, timeouts raise BackendTimeoutError. No retries.
    """
    with tracer.start_as_current_span("proxy_request") as span:
        target_url = get_target_url(request, route)
        span.set_attribute("proxy.host", route.host)
        span.set_attribute("proxy.backend", str(route.backend))
        span.set_attribute("proxy.method", request.method)

        logger.debug(
            f"[Proxy] {request.method} {route.host}{request.url.path} -> {target_url}"
        )

        upstream_request = client.build_request(
            method=request.method,
            url=target_url,
            headers=_encode_headers(prepare_request_headers(request, route, scheme)),
            content=_request_body(request),
        )

        try:
            upstream = await client.send(upstream_request, stream=True)
        except httpx.TimeoutException as e:
            span.set_attribute("proxy.error", "timeout")
            log_exception_with_details(
                logger, f"[Proxy] Timeout for {route.host} -> {target_url}:", e
            )
            raise BackendTimeoutError(str(route.backend)) from e
        except httpx.HTTPError as e:
            span.set_attribute("proxy.error", "connection_failed")
            log_exception_with_details(
                logger,
                f"[Proxy] Backend {route.backend} unavailable for {route.host}:",
                e,
            )
            raise BackendUnavailableError(str(route.backend)) from e

        span.set_attribute("proxy.status_code", upstream.status_code)

        response = StreamingResponse(
            relay_body(upstream, route),
            status_code=upstream.status_code,
        )
        # Raw list keeps repeated headers such as Set-Cookie intact
        response.raw_headers = [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in prepare_response_headers(_decode_headers(upstream), route)
        ]
        return response
