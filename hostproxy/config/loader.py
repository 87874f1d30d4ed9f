"""
Routing configuration file.

JSON document with a ``routes`` list and an optional ``certificates`` list.
A certificate entry that names only a host resolves to the certbot layout
``<CERTIFICATE_ROOT>/<host>/fullchain.pem`` and ``privkey.pem``.
"""

import json
import logging
import os
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from hostproxy.errors import ConfigError
from hostproxy.models import CertificateBinding, Route, normalize_host
from hostproxy.vars import CERTIFICATE_ROOT

logger = logging.getLogger("uvicorn.error")


class CertificateEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    host: str
    certfile: Optional[str] = None
    keyfile: Optional[str] = None

    def to_binding(self, certificate_root: str) -> CertificateBinding:
        live_dir = os.path.join(certificate_root, normalize_host(self.host))
        return CertificateBinding(
            host=self.host,
            certfile=self.certfile or os.path.join(live_dir, "fullchain.pem"),
            keyfile=self.keyfile or os.path.join(live_dir, "privkey.pem"),
        )


class ConfigDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    routes: List[Route] = Field(default_factory=list)
    certificates: List[CertificateEntry] = Field(default_factory=list)


class ProxyConfig(BaseModel):
    """Validated routes and certificate bindings, ready for HostRouter.configure."""

    model_config = ConfigDict(frozen=True)

    routes: List[Route]
    certificates: List[CertificateBinding]
    source: Optional[str] = None

    def watched_files(self) -> List[str]:
        files = [self.source] if self.source else []
        for binding in self.certificates:
            files.extend([binding.certfile, binding.keyfile])
        return files


def _format_validation_error(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        problems.append(f"{location}: {item.get('msg')}")
    return "; ".join(problems)


def parse_config(
    data: Any,
    source: Optional[str] = None,
    certificate_root: Optional[str] = None,
) -> ProxyConfig:
    """Validate a decoded configuration document."""
    if not isinstance(data, dict):
        raise ConfigError(f"{source or 'configuration'}: top level must be an object")
    try:
        document = ConfigDocument.model_validate(data)
    except ValidationError as e:
        raise ConfigError(
            f"{source or 'configuration'}: {_format_validation_error(e)}"
        ) from e

    root = certificate_root if certificate_root is not None else CERTIFICATE_ROOT
    try:
        bindings = [entry.to_binding(root) for entry in document.certificates]
    except ValidationError as e:
        raise ConfigError(
            f"{source or 'configuration'}: {_format_validation_error(e)}"
        ) from e
    return ProxyConfig(routes=document.routes, certificates=bindings, source=source)


def load_config(path: str, certificate_root: Optional[str] = None) -> ProxyConfig:
    """Read and validate the configuration file at ``path``."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"{path}: invalid JSON: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read configuration file {path}: {e}") from e

    config = parse_config(data, source=path, certificate_root=certificate_root)
    logger.info(
        f"[Config] Loaded {len(config.routes)} route(s) and "
        f"{len(config.certificates)} certificate(s) from {path}"
    )
    return config
