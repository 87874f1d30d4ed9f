from typing import Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


def normalize_host(value: str) -> str:
    """Lowercase a host name and drop surrounding whitespace and a trailing dot."""
    return (value or "").strip().lower().rstrip(".")


def split_host_port(value: str) -> str:
    """
    Return the host part of a ``Host`` header value.

    Handles ``name``, ``name:port``, ``[v6]`` and ``[v6]:port``.
    """
    value = normalize_host(value)
    if value.startswith("["):
        end = value.find("]")
        return value[: end + 1] if end != -1 else value
    if value.count(":") == 1:
        value = value.split(":", 1)[0]
    return value.rstrip(".")


def _validate_virtual_host(value: str) -> str:
    host = normalize_host(value)
    if not host:
        raise ValueError("host must not be empty")
    if any(ch in host for ch in "/?#@ \t"):
        raise ValueError(f"invalid host name: {value!r}")
    if ":" in host and not (host.startswith("[") and host.endswith("]")):
        raise ValueError(f"host must not include a port: {value!r}")
    return host


class BackendTarget(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    host: str
    port: int = Field(ge=1, le=65535)
    scheme: Literal["http", "https"] = "http"

    @field_validator("host")
    @classmethod
    def strip_host(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("backend host must not be empty")
        return value

    @property
    def authority(self) -> str:
        host = self.host
        if ":" in host and not host.startswith("["):
            host = f"[{host}]"
        return f"{host}:{self.port}"

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.authority}"

    def __str__(self) -> str:
        return self.authority


class HeaderRewrite(BaseModel):
    """Headers to overwrite (``set``) and headers to drop (``remove``)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    set: Dict[str, str] = Field(default_factory=dict)
    remove: List[str] = Field(default_factory=list)

    def __hash__(self) -> int:
        return hash((tuple(sorted(self.set.items())), tuple(self.remove)))

    def apply(self, headers: List[tuple[str, str]]) -> List[tuple[str, str]]:
        """Apply the rewrite to a list of ``(name, value)`` pairs."""
        dropped = {name.lower() for name in self.remove}
        dropped.update(name.lower() for name in self.set)
        result = [
            (name, value) for name, value in headers if name.lower() not in dropped
        ]
        result.extend(self.set.items())
        return result


class Route(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    host: str
    backend: BackendTarget
    redirect_to_https: bool = False
    preserve_host: bool = True
    request_headers: HeaderRewrite = Field(default_factory=HeaderRewrite)
    response_headers: HeaderRewrite = Field(default_factory=HeaderRewrite)

    @field_validator("host")
    @classmethod
    def check_host(cls, value: str) -> str:
        return _validate_virtual_host(value)

    def __hash__(self) -> int:
        return hash((self.host, self.backend))


class CertificateBinding(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    host: str
    certfile: str
    keyfile: str

    @field_validator("host")
    @classmethod
    def check_host(cls, value: str) -> str:
        return _validate_virtual_host(value)

    def __hash__(self) -> int:
        return hash((self.host, self.certfile, self.keyfile))
