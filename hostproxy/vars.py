import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "hostproxy")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

PROXY_CONFIG_FILE = os.getenv("PROXY_CONFIG_FILE", "/etc/hostproxy/routes.json")

BIND_HOST = os.getenv("BIND_HOST", "0.0.0.0")
HTTP_PORT = int(os.getenv("HTTP_PORT", "80"))
HTTPS_PORT = int(os.getenv("HTTPS_PORT", "443"))
# Port advertised in redirects, differs from HTTPS_PORT behind port forwarding
HTTPS_PUBLIC_PORT = int(os.getenv("HTTPS_PUBLIC_PORT", str(HTTPS_PORT)))

ADMIN_HOST = os.getenv("ADMIN_HOST", "127.0.0.1")
ADMIN_PORT = int(os.getenv("ADMIN_PORT", "9100"))

PROXY_TIMEOUT = float(os.getenv("PROXY_TIMEOUT", "300"))  # 5 minutes default
PROXY_CONNECT_TIMEOUT = float(os.getenv("PROXY_CONNECT_TIMEOUT", "10"))
PROXY_MAX_CONNECTIONS = int(os.getenv("PROXY_MAX_CONNECTIONS", "200"))
PROXY_MAX_KEEPALIVE = int(os.getenv("PROXY_MAX_KEEPALIVE", "20"))

CERTIFICATE_ROOT = os.getenv("CERTIFICATE_ROOT", "/etc/letsencrypt/live")
DEFAULT_TLS_HOST = os.getenv("DEFAULT_TLS_HOST", "").strip().lower()
CERT_RELOAD_INTERVAL = float(os.getenv("CERT_RELOAD_INTERVAL", "0"))

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")

# Webroot an external ACME client (e.g. certbot --webroot) writes HTTP-01 tokens into
ACME_WEBROOT = os.getenv("ACME_WEBROOT", "")
