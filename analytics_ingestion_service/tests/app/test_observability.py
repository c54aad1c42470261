import logging
import pytest
from unittest.mock import MagicMock

from pythonjsonlogger import jsonlogger

from analytics_ingestion_service.app import observability
from analytics_ingestion_service.app.config import settings


@pytest.fixture(autouse=True)
def preserve_original_settings():
    original_traces_endpoint = settings.OTEL_EXPORTER_OTLP_TRACES_ENDPOINT
    original_metrics_endpoint = settings.OTEL_EXPORTER_OTLP_METRICS_ENDPOINT
    yield
    settings.OTEL_EXPORTER_OTLP_TRACES_ENDPOINT = original_traces_endpoint
    settings.OTEL_EXPORTER_OTLP_METRICS_ENDPOINT = original_metrics_endpoint


@pytest.fixture
def mock_otel_sdk(mocker):
    mocks = {
        name: mocker.patch(f'analytics_ingestion_service.app.observability.{name}')
        for name in (
            "Resource",
            "TracerProvider",
            "BatchSpanProcessor",
            "ConsoleSpanExporter",
            "OTLPSpanExporter",
            "MeterProvider",
            "PeriodicExportingMetricReader",
            "ConsoleMetricExporter",
            "OTLPMetricExporter",
        )
    }
    mocks["set_tracer_provider"] = mocker.patch('analytics_ingestion_service.app.observability.trace.set_tracer_provider')
    mocks["set_meter_provider"] = mocker.patch('analytics_ingestion_service.app.observability.metrics.set_meter_provider')
    mocker.patch.object(observability.logger, 'info')
    return mocks


def test_json_logging_is_installed_once():
    observability.setup_json_logging()
    observability.setup_json_logging()

    json_handlers = [
        handler for handler in logging.getLogger().handlers
        if isinstance(handler.formatter, jsonlogger.JsonFormatter)
    ]
    assert len(json_handlers) == 1


def test_setup_opentelemetry_console_only(mock_otel_sdk):
    settings.OTEL_EXPORTER_OTLP_TRACES_ENDPOINT = None
    settings.OTEL_EXPORTER_OTLP_METRICS_ENDPOINT = None

    observability.setup_opentelemetry(service_name="analytics-test")

    mock_otel_sdk["Resource"].assert_called_once_with(attributes={"service.name": "analytics-test"})
    mock_otel_sdk["OTLPSpanExporter"].assert_not_called()
    mock_otel_sdk["OTLPMetricExporter"].assert_not_called()
    mock_otel_sdk["set_tracer_provider"].assert_called_once_with(mock_otel_sdk["TracerProvider"].return_value)
    mock_otel_sdk["set_meter_provider"].assert_called_once_with(mock_otel_sdk["MeterProvider"].return_value)


def test_setup_opentelemetry_with_otlp_endpoints(mock_otel_sdk):
    settings.OTEL_EXPORTER_OTLP_TRACES_ENDPOINT = "http://collector:4317"
    settings.OTEL_EXPORTER_OTLP_METRICS_ENDPOINT = "http://collector:4317"

    observability.setup_opentelemetry(service_name="analytics-test")

    mock_otel_sdk["OTLPSpanExporter"].assert_called_once_with(endpoint="http://collector:4317", insecure=True)
    mock_otel_sdk["OTLPMetricExporter"].assert_called_once_with(endpoint="http://collector:4317", insecure=True)
    tracer_provider = mock_otel_sdk["TracerProvider"].return_value
    assert tracer_provider.add_span_processor.call_count == 2
    readers = mock_otel_sdk["MeterProvider"].call_args.kwargs["metric_readers"]
    assert len(readers) == 2
