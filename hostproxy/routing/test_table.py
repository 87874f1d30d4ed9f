"""
Tests for routing table snapshots and atomic reconfiguration.
"""

import threading

import pytest

from hostproxy.errors import ConfigError, NotFoundError, TLSConfigError
from hostproxy.routing import HostRouter, RoutingTable
from hostproxy.utils_tests.routing_fixtures import (
    FakeContextFactory,
    make_binding,
    make_route,
)


class TestRoutingTableBuild:
    def test_example_layout(self):
        table = RoutingTable.build(
            [
                make_route("app-a.example.com", 8000),
                make_route("app-b.example.com", 8501),
            ],
            context_factory=None,
        )

        assert table.lookup("app-a.example.com").backend.port == 8000
        assert table.lookup("app-b.example.com").backend.port == 8501
        with pytest.raises(NotFoundError):
            table.lookup("app-c.example.com")

    def test_lookup_is_case_insensitive_and_ignores_port(self):
        table = RoutingTable.build(
            [make_route("app-a.example.com", 8000)], context_factory=None
        )

        assert table.lookup("APP-A.Example.Com:80").host == "app-a.example.com"
        assert "App-A.example.com" in table

    def test_lookup_is_exact_match(self):
        table = RoutingTable.build(
            [make_route("example.com", 8000)], context_factory=None
        )

        with pytest.raises(NotFoundError):
            table.lookup("www.example.com")
        with pytest.raises(NotFoundError):
            table.lookup("example.co")

    def test_duplicate_hosts_rejected(self):
        with pytest.raises(ConfigError, match="Duplicate route"):
            RoutingTable.build(
                [
                    make_route("app-a.example.com", 8000),
                    make_route("APP-A.example.com", 9000),
                ],
                context_factory=None,
            )

    def test_binding_without_route_rejected(self):
        with pytest.raises(ConfigError, match="no matching route"):
            RoutingTable.build(
                [make_route("app-a.example.com", 8000)],
                [make_binding("app-b.example.com")],
                context_factory=None,
            )

    def test_duplicate_bindings_rejected(self):
        with pytest.raises(ConfigError, match="Duplicate certificate"):
            RoutingTable.build(
                [make_route("app-a.example.com", 8000)],
                [make_binding("app-a.example.com"), make_binding("app-a.example.com")],
                context_factory=None,
            )

    def test_redirect_without_binding_only_warns(self, caplog):
        with caplog.at_level("WARNING", logger="uvicorn.error"):
            table = RoutingTable.build(
                [make_route("app-a.example.com", 8000, redirect_to_https=True)],
                context_factory=None,
            )

        assert table.lookup("app-a.example.com").redirect_to_https
        assert "no certificate binding" in caplog.text

    def test_binding_for(self):
        table = RoutingTable.build(
            [make_route("app-a.example.com", 8000), make_route("app-b.example.com", 8501)],
            [make_binding("app-a.example.com")],
            context_factory=None,
        )

        assert table.binding_for("app-a.example.com:443").host == "app-a.example.com"
        with pytest.raises(TLSConfigError):
            table.binding_for("app-b.example.com")

    def test_routes_mapping_is_read_only(self):
        table = RoutingTable.build(
            [make_route("app-a.example.com", 8000)], context_factory=None
        )

        with pytest.raises(TypeError):
            table.routes["evil.example.com"] = make_route("evil.example.com", 1)


class TestHostRouterConfigure:
    def test_configure_activates_new_table(self, host_router):
        assert host_router.is_configured
        assert host_router.resolve("app-a.example.com").backend.port == 8000
        assert host_router.table.generation == 1

    def test_unconfigured_router_routes_nothing(self):
        router = HostRouter(context_factory=None)

        assert not router.is_configured
        with pytest.raises(NotFoundError):
            router.resolve("app-a.example.com")

    def test_failed_configure_keeps_previous_table(self, host_router):
        before = host_router.table

        with pytest.raises(ConfigError):
            host_router.configure(
                [make_route("x.example.com", 1), make_route("x.example.com", 2)]
            )

        assert host_router.table is before
        assert host_router.resolve("app-b.example.com").backend.port == 8501

    def test_certificate_load_failure_keeps_previous_table(self):
        def failing_factory(binding):
            raise ConfigError(f"Cannot load certificate for {binding.host}")

        router = HostRouter(context_factory=failing_factory)
        router.configure([make_route("app-a.example.com", 8000)])
        before = router.table

        with pytest.raises(ConfigError, match="Cannot load certificate"):
            router.configure(
                [make_route("app-a.example.com", 8000)],
                [make_binding("app-a.example.com")],
            )

        assert router.table is before

    def test_configure_loads_certificates(self, context_factory):
        router = HostRouter(context_factory=context_factory)
        router.configure(
            [make_route("app-a.example.com", 8000), make_route("app-b.example.com", 8501)],
            [make_binding("app-a.example.com")],
        )

        assert context_factory.loaded == ["app-a.example.com"]
        assert router.has_certificates
        assert (
            router.select_tls_context("app-a.example.com")
            is context_factory.contexts["app-a.example.com"]
        )

    def test_configure_accepts_sets(self, context_factory):
        router = HostRouter(context_factory=context_factory)
        router.configure(
            {make_route("app-a.example.com", 8000), make_route("app-b.example.com", 8501)},
            set(),
        )

        assert router.table.hosts == {"app-a.example.com", "app-b.example.com"}

    def test_generation_increases(self, host_router):
        host_router.configure([make_route("app-a.example.com", 9000)])

        assert host_router.table.generation == 2
        with pytest.raises(NotFoundError):
            host_router.resolve("app-b.example.com")


class TestSelectTLSContext:
    def test_unknown_server_name(self, context_factory):
        router = HostRouter(context_factory=context_factory)
        router.configure(
            [make_route("app-a.example.com", 8000)], [make_binding("app-a.example.com")]
        )

        with pytest.raises(TLSConfigError):
            router.select_tls_context("app-c.example.com")

    def test_missing_server_name_without_default(self, context_factory):
        router = HostRouter(context_factory=context_factory)
        router.configure(
            [make_route("app-a.example.com", 8000)], [make_binding("app-a.example.com")]
        )

        with pytest.raises(TLSConfigError):
            router.select_tls_context(None)

    def test_missing_server_name_uses_default_host(self, context_factory):
        router = HostRouter(
            context_factory=context_factory, default_tls_host="App-A.example.com"
        )
        router.configure(
            [make_route("app-a.example.com", 8000)], [make_binding("app-a.example.com")]
        )

        assert (
            router.select_tls_context(None)
            is context_factory.contexts["app-a.example.com"]
        )


class TestAtomicReconfiguration:
    def test_readers_never_see_a_mixed_table(self):
        """
        Two tables map both hosts to the same port (8000 or 9000). A reader
        that sees one host on 8000 and the other on 9000 observed a partial
        update.
        """
        router = HostRouter(context_factory=FakeContextFactory())
        layouts = [
            [make_route("a.example.com", port), make_route("b.example.com", port)]
            for port in (8000, 9000)
        ]
        router.configure(layouts[0])

        stop = threading.Event()
        mixed = []

        def reader():
            while not stop.is_set():
                table = router.snapshot()
                a = table.lookup("a.example.com").backend.port
                b = table.lookup("b.example.com").backend.port
                if a != b:
                    mixed.append((a, b))

        def writer():
            for i in range(300):
                router.configure(layouts[i % 2])

        readers = [threading.Thread(target=reader) for _ in range(4)]
        for t in readers:
            t.start()
        writers = [threading.Thread(target=writer) for _ in range(2)]
        for t in writers:
            t.start()
        for t in writers:
            t.join()
        stop.set()
        for t in readers:
            t.join()

        assert mixed == []
        assert router.table.generation == 601

    def test_concurrent_failed_configure_never_publishes(self, host_router):
        errors = []

        def bad_writer():
            for _ in range(50):
                try:
                    host_router.configure(
                        [make_route("x.example.com", 1), make_route("x.example.com", 2)]
                    )
                except ConfigError as e:
                    errors.append(e)

        threads = [threading.Thread(target=bad_writer) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(errors) == 150
        assert host_router.table.hosts == {"app-a.example.com", "app-b.example.com"}
        assert host_router.table.generation == 1
