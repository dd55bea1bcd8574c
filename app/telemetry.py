import logging
import os

from opentelemetry import trace

logger = logging.getLogger(__name__)

_TRACER_NAME = "sitecrew"


def get_tracer(name: str | None = None) -> trace.Tracer:
    """Return an OTel tracer.

    Without a configured TracerProvider the API hands out no-op spans, so
    callers never check whether tracing is on.
    """
    return trace.get_tracer(name or _TRACER_NAME)


def _instrument_fastapi(app) -> None:
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

    FastAPIInstrumentor.instrument_app(app)


def _instrument_sqlalchemy(app) -> None:
    from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

    from app.db import get_engine

    SQLAlchemyInstrumentor().instrument(engine=get_engine())


def _instrument_httpx(app) -> None:
    from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

    HTTPXClientInstrumentor().instrument()


_INSTRUMENTORS = (
    ("FastAPI", _instrument_fastapi),
    ("SQLAlchemy", _instrument_sqlalchemy),
    ("httpx", _instrument_httpx),
)


def setup_otel(app) -> None:
    """Configure OpenTelemetry tracing when ``OTEL_ENABLED`` is set.

    Each instrumentor is optional; a missing package is logged and skipped.
    """
    enabled = os.getenv("OTEL_ENABLED", "false").lower() in {"1", "true", "yes", "on"}
    if not enabled:
        return

    try:
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError:
        logger.exception("OpenTelemetry SDK not available, tracing stays off.")
        return

    service_name = os.getenv("OTEL_SERVICE_NAME", "sitecrew")
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    trace.set_tracer_provider(provider)
    exporter = OTLPSpanExporter(endpoint=f"{endpoint}/v1/traces") if endpoint else OTLPSpanExporter()
    provider.add_span_processor(BatchSpanProcessor(exporter))

    for label, instrument in _INSTRUMENTORS:
        try:
            instrument(app)
            logger.info("OTel: %s instrumented", label)
        except Exception:
            logger.warning("OTel: %s instrumentation unavailable", label, exc_info=True)

    logger.info("OpenTelemetry tracing enabled (service=%s)", service_name)
