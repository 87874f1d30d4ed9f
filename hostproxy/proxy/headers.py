from typing import Iterable, List, Tuple

from fastapi import Request

from hostproxy.models import Route

# Hop-by-hop headers that should NOT be forwarded (RFC 7230 section 6.1)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# Headers that identify the original request for the backend
FORWARDED_HEADERS = {
    "x-forwarded-for",
    "x-forwarded-host",
    "x-forwarded-proto",
    "x-real-ip",
}

HeaderList = List[Tuple[str, str]]


def connection_tokens(headers: Iterable[Tuple[str, str]]) -> set[str]:
    """Header names listed in ``Connection`` are hop-by-hop for this message."""
    tokens = set()
    for name, value in headers:
        if name.lower() == "connection":
            tokens.update(t.strip().lower() for t in value.split(",") if t.strip())
    return tokens


def strip_hop_by_hop(headers: Iterable[Tuple[str, str]]) -> HeaderList:
    headers = list(headers)
    dropped = HOP_BY_HOP_HEADERS | connection_tokens(headers)
    return [(name, value) for name, value in headers if name.lower() not in dropped]


def client_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def prepare_request_headers(request: Request, route: Route, scheme: str) -> HeaderList:
    """
    Prepare headers for forwarding to the backend.
    Removes hop-by-hop headers, adds proxy headers, then applies the route's
    request header rewrites.
    """
    incoming = strip_hop_by_hop(request.headers.items())
    original_host = request.headers.get("host", "")
    client_ip = client_address(request)

    existing_xff = ", ".join(
        value for name, value in incoming if name.lower() == "x-forwarded-for"
    )
    headers = [
        (name, value)
        for name, value in incoming
        if name.lower() not in FORWARDED_HEADERS and name.lower() != "host"
    ]

    upstream_host = original_host if route.preserve_host else route.backend.authority
    headers.append(("host", upstream_host))
    # X-Forwarded-For: append client IP
    headers.append(("x-forwarded-for", f"{existing_xff}, {client_ip}".strip(", ")))
    # X-Real-IP: client IP (for single client identification)
    headers.append(("x-real-ip", client_ip))
    # X-Forwarded-Host: originally requested host
    headers.append(("x-forwarded-host", original_host))
    headers.append(("x-forwarded-proto", scheme))

    return route.request_headers.apply(headers)


def prepare_response_headers(
    upstream_headers: Iterable[Tuple[str, str]], route: Route
) -> HeaderList:
    """Relay backend headers unchanged apart from hop-by-hop removal and route rewrites."""
    return route.response_headers.apply(strip_hop_by_hop(upstream_headers))
