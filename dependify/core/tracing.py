"""
OpenTelemetry distributed tracing configuration.

Spans are opened around the orchestrator request, each model turn and each
capability execution. Spans are exported via OTLP when an endpoint is
configured; otherwise they are recorded in-process only.

Configuration:
- OTEL_SERVICE_NAME: Service name (default: dependify_orchestrator)
- OTEL_EXPORTER_OTLP_ENDPOINT: OTLP gRPC endpoint (e.g. http://localhost:4317)
- OTEL_TRACES_SAMPLER_ARG: Sampling rate (default: 1.0 for 100% sampling)
"""
import os
from typing import Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Status, StatusCode, Tracer

from .logging import get_logger

logger = get_logger(__name__)

_tracer: Optional[Tracer] = None
_tracer_provider: Optional[TracerProvider] = None

__all__ = [
    "StatusCode",
    "configure_tracing",
    "get_tracer",
    "record_exception",
    "shutdown_tracing",
]


def configure_tracing(
    service_name: Optional[str] = None,
    otlp_endpoint: Optional[str] = None,
    sampling_rate: float = 1.0,
) -> None:
    """
    Configure OpenTelemetry tracing.

    Args:
        service_name: Service name identifier (defaults to OTEL_SERVICE_NAME)
        otlp_endpoint: OTLP endpoint URL (defaults to OTEL_EXPORTER_OTLP_ENDPOINT)
        sampling_rate: Sampling rate (0.0 to 1.0, default: 1.0 for 100% sampling)
    """
    global _tracer, _tracer_provider

    service_name = service_name or os.getenv("OTEL_SERVICE_NAME", "dependify_orchestrator")
    otlp_endpoint = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    sampling_rate = float(os.getenv("OTEL_TRACES_SAMPLER_ARG", str(sampling_rate)))

    resource = Resource.create({
        "service.name": service_name,
        "service.version": "0.1.0",
    })

    if sampling_rate < 1.0:
        from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
        _tracer_provider = TracerProvider(resource=resource, sampler=TraceIdRatioBased(sampling_rate))
    else:
        _tracer_provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        try:
            span_processor = BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint))
            _tracer_provider.add_span_processor(span_processor)
            logger.info(
                "tracing_otlp_configured",
                endpoint=otlp_endpoint,
                sampling_rate=sampling_rate,
            )
        except Exception as e:
            logger.warning(
                "tracing_otlp_configuration_failed",
                endpoint=otlp_endpoint,
                error=str(e),
                error_type=type(e).__name__,
                message="Tracing will continue without OTLP export",
            )

    trace.set_tracer_provider(_tracer_provider)
    _tracer = trace.get_tracer("dependify")

    logger.info(
        "tracing_configured",
        service_name=service_name,
        sampling_rate=sampling_rate,
        otlp_enabled=bool(otlp_endpoint),
    )


def get_tracer() -> Tracer:
    """
    Get the tracer used by the orchestration core.

    Falls back to the globally registered provider (a no-op provider unless
    configure_tracing() or the host application installed one).
    """
    if _tracer is None:
        return trace.get_tracer("dependify")
    return _tracer


def record_exception(exception: BaseException) -> None:
    """
    Record an exception on the current span and mark it as errored.
    """
    current_span = trace.get_current_span()
    if current_span:
        current_span.record_exception(exception)
        current_span.set_status(Status(StatusCode.ERROR, str(exception)))


def shutdown_tracing() -> None:
    """
    Shutdown tracing and flush all spans.
    """
    global _tracer_provider
    if _tracer_provider:
        try:
            _tracer_provider.shutdown()
            logger.info("tracing_shutdown")
        except Exception as e:
            logger.warning(
                "tracing_shutdown_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
