from .loader import ProxyConfig, load_config, parse_config

__all__ = ["ProxyConfig", "load_config", "parse_config"]
