from typing import Sequence

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_fastapi_instrumentator import Instrumentator

from hostproxy.admin import router as admin_router
from hostproxy.reloader import ConfigReloader
from hostproxy.vars import OTLP_ENDPOINT, OTLP_HEADERS, SERVICE_NAME

# Admin app: health, routes, reload and the Prometheus endpoint
app = FastAPI(title="hostproxy admin")
instrumentator = Instrumentator()

instrumentator.instrument(app).expose(app)


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that filters out ASGI body spans. Every relayed chunk of a
    streamed backend response would otherwise produce its own span.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type") == "http.response.body"
            )
        ]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


trace.set_tracer_provider(
    TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
)
tracer_provider = trace.get_tracer_provider()
if OTLP_ENDPOINT:
    otlp_exporter = OTLPSpanExporter(
        endpoint=OTLP_ENDPOINT,
        headers=OTLP_HEADERS or None,  # "key=value,key2=value2"
    )
    tracer_provider.add_span_processor(
        BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
    )


def instrument_app(target: FastAPI, excluded_urls: str = "") -> FastAPI:
    """Attach OpenTelemetry request spans to a listener or the admin app."""
    FastAPIInstrumentor.instrument_app(
        target,
        excluded_urls=excluded_urls,
        server_request_hook=None,
        client_request_hook=None,
    )
    return target


instrument_app(app, excluded_urls="/metrics,/healthz")
app.include_router(admin_router)


def bind_admin_app(reloader: ConfigReloader) -> FastAPI:
    app.state.reloader = reloader
    return app
