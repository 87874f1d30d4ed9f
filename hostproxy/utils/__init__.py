def describe_client(host: str | None, port: int | None = None) -> str:
    """Render a client address for log lines."""
    if not host:
        return "<unknown>"
    return f"{host}:{port}" if port else host
