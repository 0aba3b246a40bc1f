# foodsync/utils/telemetry.py
"""
OpenTelemetry tracing bootstrap.

- Service name and exporter come from Settings (SERVICE_NAME, OTEL_EXPORTER).
- OTEL_EXPORTER: "console" prints spans to stdout, "otlp" ships them over
  OTLP/HTTP (endpoint from the standard OTEL_EXPORTER_OTLP_* env vars),
  "none" keeps spans in-process only so log lines still carry a trace_id.
- The tracer provider is installed once per process; instrumentation is
  applied to every app/engine passed in.
"""

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor, ConsoleSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

from foodsync.config import Settings

_provider: TracerProvider | None = None


def build_tracer_provider(settings: Settings) -> TracerProvider:
    provider = TracerProvider(resource=Resource.create({"service.name": settings.SERVICE_NAME}))

    if settings.OTEL_EXPORTER == "console":
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    elif settings.OTEL_EXPORTER == "otlp":
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter()))

    return provider


def init_otel(settings: Settings, app=None, engine=None):
    """Install tracing and instrument the FastAPI app and SQLAlchemy async engine."""
    global _provider

    if _provider is None:
        _provider = build_tracer_provider(settings)
        trace.set_tracer_provider(_provider)

    if app is not None:
        FastAPIInstrumentor.instrument_app(app, tracer_provider=_provider)

    if engine is not None:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine, tracer_provider=_provider)

    return trace.get_tracer(settings.SERVICE_NAME)
