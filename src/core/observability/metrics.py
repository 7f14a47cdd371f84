"""
OpenTelemetry Metrics

Ingestion counters and histograms. Instruments only exist after
init_metrics(); before that record_counter()/record_histogram() are no-ops,
which keeps tests and one-off scripts free of exporter setup.
"""

import logging
from typing import Optional, Dict, Any, List

from opentelemetry import metrics
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    MetricReader,
    PeriodicExportingMetricReader,
)
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.resources import Resource, SERVICE_NAME

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_NAME = "cast-ingest"

# Global meter
_meter: Optional[metrics.Meter] = None

# Metric instruments
_counters: Dict[str, metrics.Counter] = {}
_histograms: Dict[str, metrics.Histogram] = {}

COUNTERS = {
    "ingest_submissions_total": "Events submitted to the orchestrator",
    "ingest_duplicates_total": "Events classified as duplicates",
    "ingest_completed_total": "Records moved to COMPLETED",
    "ingest_failed_total": "Records moved to FAILED during processing",
    "ingest_reaped_total": "Stale PROCESSING records forced to FAILED",
    "ingest_cache_evictions_total": "Hashes dropped from fast-path caches",
}

HISTOGRAMS = {
    "ingest_extraction_duration_seconds": "Extraction call duration",
    "ingest_submission_duration_seconds": "End-to-end submit_event duration",
}


def init_metrics(
    service_name: str = DEFAULT_SERVICE_NAME,
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False,
    export_interval_ms: int = 60000,
    metric_readers: Optional[List[MetricReader]] = None
) -> metrics.Meter:
    """
    Initialize OpenTelemetry metrics.

    Args:
        service_name: Name of the service
        otlp_endpoint: OTLP exporter endpoint
        console_export: Enable console export for debugging
        export_interval_ms: Export interval in milliseconds
        metric_readers: Extra readers, e.g. an InMemoryMetricReader in tests

    Returns:
        Configured meter
    """
    global _meter

    readers = list(metric_readers or [])

    if otlp_endpoint:
        otlp_exporter = OTLPMetricExporter(endpoint=otlp_endpoint, insecure=True)
        readers.append(PeriodicExportingMetricReader(
            otlp_exporter,
            export_interval_millis=export_interval_ms
        ))
        logger.info(f"OTel metrics: OTLP exporter configured -> {otlp_endpoint}")

    if console_export:
        readers.append(PeriodicExportingMetricReader(
            ConsoleMetricExporter(),
            export_interval_millis=export_interval_ms
        ))
        logger.info("OTel metrics: Console exporter enabled")

    resource = Resource.create({SERVICE_NAME: service_name})

    provider = MeterProvider(resource=resource, metric_readers=readers)
    metrics.set_meter_provider(provider)

    _meter = provider.get_meter(service_name)

    _init_ingestion_metrics()

    logger.info(f"OTel metrics initialized: {service_name}")

    return _meter


def _init_ingestion_metrics():
    """Create the ingestion instruments on the current meter."""
    meter = get_meter()

    for name, description in COUNTERS.items():
        _counters[name] = meter.create_counter(name, description=description, unit="1")

    for name, description in HISTOGRAMS.items():
        _histograms[name] = meter.create_histogram(name, description=description, unit="s")


def get_meter() -> metrics.Meter:
    """Get the global meter."""
    global _meter
    if _meter is None:
        _meter = metrics.get_meter(DEFAULT_SERVICE_NAME)
    return _meter


def record_counter(
    name: str,
    value: int = 1,
    attributes: Dict[str, Any] = None
):
    """Record a counter metric."""
    if name in _counters:
        _counters[name].add(value, attributes or {})


def record_histogram(
    name: str,
    value: float,
    attributes: Dict[str, Any] = None
):
    """Record a histogram metric."""
    if name in _histograms:
        _histograms[name].record(value, attributes or {})
