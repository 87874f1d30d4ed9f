import pytest

from hostproxy.routing import HostRouter
from hostproxy.utils_tests.routing_fixtures import FakeContextFactory, make_route


@pytest.fixture
def context_factory():
    return FakeContextFactory()


@pytest.fixture
def host_router(context_factory):
    """Router configured with the two-application example layout."""
    router = HostRouter(context_factory=context_factory)
    router.configure(
        [
            make_route("app-a.example.com", 8000),
            make_route("app-b.example.com", 8501),
        ],
        [],
    )
    return router
