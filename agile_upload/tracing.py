from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor, SpanExporter

from agile_upload.config import settings

TRACER_NAME = "agile.client"

_tracing_initialized = False

# Proxy tracer; spans reach whichever provider setup_tracing installs later.
tracer = trace.get_tracer(TRACER_NAME)


def setup_tracing(
    service_name: str | None = None,
    otlp_endpoint: str | None = None,
    exporter: SpanExporter | None = None,
) -> TracerProvider | None:
    """Install the client's tracer provider once.

    Without an explicit ``exporter`` this only acts when tracing is enabled in
    settings, and ships spans in batches over OTLP gRPC. An explicit exporter
    is flushed span by span.
    """
    global _tracing_initialized
    if _tracing_initialized or (exporter is None and not settings.tracing_enabled):
        return None

    resource = Resource.create({SERVICE_NAME: service_name or settings.tracing_service_name})
    provider = TracerProvider(resource=resource)
    if exporter is None:
        processor = BatchSpanProcessor(
            OTLPSpanExporter(endpoint=otlp_endpoint or settings.otlp_endpoint, insecure=settings.otlp_insecure)
        )
    else:
        processor = SimpleSpanProcessor(exporter)
    provider.add_span_processor(processor)

    trace.set_tracer_provider(provider)
    _tracing_initialized = True
    return provider
