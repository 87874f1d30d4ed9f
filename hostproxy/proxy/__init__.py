from .route import Listener, create_proxy_app, handle_request

__all__ = ["Listener", "create_proxy_app", "handle_request"]
