"""
Error kinds raised by the proxy.

Every error carries the HTTP status it is answered with when it escapes a
request handler. Only ``ConfigError`` is fatal, and only at startup.
"""


class ProxyError(Exception):
    status_code = 500
    default_detail = "internal proxy error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ConfigError(ProxyError):
    """Invalid or conflicting routing / certificate configuration."""

    default_detail = "invalid proxy configuration"


class NotFoundError(ProxyError):
    """No route exists for the requested virtual host."""

    status_code = 404
    default_detail = "no such host"

    def __init__(self, host: str | None = None, detail: str | None = None):
        self.host = host
        super().__init__(detail)


class TLSConfigError(ProxyError):
    """A host was requested on the encrypted listener without a certificate."""

    status_code = 421
    default_detail = "no certificate for requested host"

    def __init__(self, host: str | None = None, detail: str | None = None):
        self.host = host
        super().__init__(detail)


class BackendUnavailableError(ProxyError):
    """The backend could not be reached or broke mid-stream."""

    status_code = 502
    default_detail = "bad gateway"

    def __init__(self, backend: str | None = None, detail: str | None = None):
        self.backend = backend
        super().__init__(detail)


class BackendTimeoutError(BackendUnavailableError):
    status_code = 504
    default_detail = "gateway timeout"
