"""
HTTP-01 challenge passthrough for an external ACME client.

The client (``certbot certonly --webroot -w $ACME_WEBROOT``) writes token
files under ``<webroot>/.well-known/acme-challenge/``; the plaintext listener
serves them for routed hosts ahead of any HTTPS redirect so that issuance and
renewal keep working once redirects are switched on.
"""

import logging
import os
import re
from typing import Optional

from fastapi import Request
from fastapi.responses import PlainTextResponse, Response

logger = logging.getLogger("uvicorn.error")

ACME_CHALLENGE_PREFIX = "/.well-known/acme-challenge/"
_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def is_challenge_request(request: Request) -> bool:
    return request.method in ("GET", "HEAD") and request.url.path.startswith(
        ACME_CHALLENGE_PREFIX
    )


def challenge_response(request: Request, webroot: str) -> Optional[Response]:
    """
    Serve a challenge token, or None when the request is not a challenge or
    no webroot is configured (the request then follows normal routing).
    """
    if not webroot or not is_challenge_request(request):
        return None
    token = request.url.path[len(ACME_CHALLENGE_PREFIX):]
    if not _TOKEN_RE.match(token):
        return PlainTextResponse("invalid challenge token", status_code=404)
    path = os.path.join(webroot, ".well-known", "acme-challenge", token)
    try:
        with open(path, "r", encoding="ascii") as fh:
            content = fh.read()
    except (OSError, UnicodeDecodeError):
        logger.info(f"[ACME] Challenge token {token} not found in {webroot}")
        return PlainTextResponse("challenge not found", status_code=404)
    logger.info(f"[ACME] Served challenge token {token}")
    return PlainTextResponse(content)
