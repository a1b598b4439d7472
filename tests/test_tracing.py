"""
Unit tests for OpenTelemetry tracing setup and span helpers.
"""
from unittest.mock import MagicMock, patch

import pytest

from dependify.core.tracing import (
    StatusCode,
    configure_tracing,
    get_tracer,
    record_exception,
    shutdown_tracing,
)


@pytest.fixture(autouse=True)
def clean_otel_env(monkeypatch):
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
    monkeypatch.delenv("OTEL_TRACES_SAMPLER_ARG", raising=False)


def test_configure_without_endpoint_skips_exporter():
    with patch("dependify.core.tracing.OTLPSpanExporter") as exporter:
        configure_tracing(service_name="test_service")

    exporter.assert_not_called()
    assert get_tracer() is not None


def test_configure_with_endpoint_builds_otlp_exporter():
    with patch("dependify.core.tracing.OTLPSpanExporter") as exporter, \
            patch("dependify.core.tracing.BatchSpanProcessor") as processor:
        configure_tracing(otlp_endpoint="http://collector:4317")

    exporter.assert_called_once_with(endpoint="http://collector:4317")
    processor.assert_called_once_with(exporter.return_value)
    shutdown_tracing()


def test_exporter_failure_does_not_raise():
    with patch("dependify.core.tracing.OTLPSpanExporter", side_effect=RuntimeError("no grpc")):
        configure_tracing(otlp_endpoint="http://collector:4317")

    assert get_tracer() is not None


def test_configured_tracer_records_spans():
    configure_tracing()

    with get_tracer().start_as_current_span("capability.execute") as span:
        span.set_attribute("capability.id", "content.blog.generate")
        assert span.get_span_context().is_valid


def test_record_exception_marks_span_errored():
    span = MagicMock()
    error = ValueError("boom")

    with patch("dependify.core.tracing.trace.get_current_span", return_value=span):
        record_exception(error)

    span.record_exception.assert_called_once_with(error)
    status = span.set_status.call_args[0][0]
    assert status.status_code == StatusCode.ERROR
    assert status.description == "boom"
