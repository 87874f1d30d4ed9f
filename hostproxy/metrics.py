from prometheus_client import Counter, Gauge, Info

from hostproxy.vars import SERVICE_NAME

PROXY_REQUESTS = Counter(
    "hostproxy_requests_total",
    "Requests handled by the proxy listeners",
    ["host", "listener", "outcome"],
)
ROUTING_GENERATION = Gauge(
    "hostproxy_routing_generation",
    "Generation of the active routing table",
)
ROUTED_HOSTS = Gauge(
    "hostproxy_routed_hosts",
    "Virtual hosts in the active routing table",
)

app_info = Info("hostproxy_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME})


def record_request(host: str | None, listener: str, outcome: str) -> None:
    # Unknown hosts share one label value to keep cardinality bounded
    PROXY_REQUESTS.labels(host=host or "unknown", listener=listener, outcome=outcome).inc()
