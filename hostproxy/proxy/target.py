"""
Request-target handling.

Clients talking to a proxy may send the absolute form
(``GET http://app-a.example.com/path HTTP/1.1``). The authority in the URI
then names the virtual host, and the Host header is ignored.
"""

from urllib.parse import unquote, urlsplit

from fastapi import Request


def _is_absolute_form(path: str) -> bool:
    return not path.startswith("/") and "://" in path


def to_origin_form(scope: dict) -> dict:
    """Return ``scope`` with an absolute-form target rewritten to origin form."""
    path = scope.get("path") or ""
    if not _is_absolute_form(path):
        return scope
    raw_path = scope.get("raw_path") or path.encode("latin-1")
    target = urlsplit(raw_path.decode("latin-1"))
    origin = target.path or "/"
    authority = target.netloc.rpartition("@")[2]
    headers = [(name, value) for name, value in scope.get("headers", []) if name != b"host"]
    headers.insert(0, (b"host", authority.encode("latin-1")))
    return dict(
        scope,
        path=unquote(origin),
        raw_path=origin.encode("latin-1"),
        headers=headers,
    )


class OriginFormMiddleware:
    """Normalises absolute-form request targets before routing."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http":
            scope = to_origin_form(scope)
        await self.app(scope, receive, send)


def request_path(request: Request) -> str:
    """Origin-form path of the request as the client encoded it."""
    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path else request.url.path
    if _is_absolute_form(path):
        path = urlsplit(path).path
    if not path.startswith("/"):
        path = "/" + path
    return path
