from .table import HostRouter, RoutingTable

__all__ = ["HostRouter", "RoutingTable"]
