"""Host-routed reverse proxy: virtual hosts mapped to backend HTTP servers."""

__version__ = "0.1.0"
