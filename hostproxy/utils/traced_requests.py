import logging
from contextlib import contextmanager
from typing import Dict, Optional

from opentelemetry.trace import Tracer

logger = logging.getLogger("uvicorn.error")


@contextmanager
def traced_request(
    tracer: Tracer,
    operation: str,
    host: Optional[str],
    listener: str,
    start_message: Optional[str] = None,
    extra_attrs: Optional[Dict] = None,
):
    """Create a span, set the common proxy attributes, and log a start message."""
    with tracer.start_as_current_span(operation) as span:
        span.set_attribute("proxy.listener", listener)
        if host:
            span.set_attribute("proxy.host", host)
        if extra_attrs:
            for k, v in extra_attrs.items():
                span.set_attribute(k, v)
        if start_message:
            logger.debug(start_message)
        yield span
