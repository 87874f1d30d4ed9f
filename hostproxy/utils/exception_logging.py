"""
Exception logging helpers for per-request proxy failures.

httpx wraps transport failures several levels deep; these helpers log the
whole ``__cause__`` chain (and exception groups raised by anyio task groups)
without ever raising themselves.
"""

import logging


def _safe_str(obj) -> str:
    """Convert an object to string, falling back when __str__ fails."""
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def _describe(exception: BaseException) -> str:
    text = _safe_str(exception)
    name = type(exception).__name__
    return f"{name}: {text}" if text else name


def _sub_exceptions(exception) -> list:
    try:
        return list(getattr(exception, "exceptions", []) or [])
    except Exception:
        return []


def exception_chain(exception: BaseException, limit: int = 8) -> list[BaseException]:
    """The exception followed by its causes (explicit or implicit), oldest last."""
    chain = []
    seen = set()
    current = exception
    while current is not None and id(current) not in seen and len(chain) < limit:
        chain.append(current)
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return chain


def format_exception_message(exception: BaseException) -> str:
    """
    Format an exception and its causes as one line, e.g.
    ``ConnectError: All connection attempts failed <- OSError: [Errno 111] ...``
    """
    if exception is None:
        return "None"
    try:
        parts = [_describe(item) for item in exception_chain(exception)]
        subs = _sub_exceptions(exception)
        if subs:
            joined = "; ".join(_describe(sub) for sub in subs)
            parts.append(f"(Sub-exceptions: {joined})")
        return " <- ".join(parts)
    except Exception:
        return f"<{type(exception).__name__} (formatting failed)>"


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: BaseException,
    level: int = logging.ERROR,
    include_traceback: bool = False,
) -> None:
    """
    Log an exception with its cause chain on one line.

    Tracebacks are only attached on request; backend outages are expected
    operational events and would otherwise flood the log.
    """
    try:
        message = f"{prefix} {format_exception_message(exception)}"
        logger.log(
            level,
            message,
            exc_info=exception if include_traceback and exception is not None else None,
        )
    except Exception:
        try:
            logger.log(logging.ERROR, f"{prefix} Exception (logging failed)")
        except Exception:
            pass
