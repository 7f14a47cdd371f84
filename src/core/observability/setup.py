"""
Observability Initialization

Environment Variables:
    OTEL_ENABLED: turn on tracing and metrics (default: false)
    OTEL_EXPORTER_OTLP_ENDPOINT: OTLP collector; setting it also enables OTel
    OTEL_CONSOLE_EXPORT: print spans and metrics to stdout (default: false)
    APP_VERSION: service version reported on spans
    LOG_LEVEL: Logging level (default: INFO)
    LOG_STRUCTURED: JSON log lines (default: true)
"""

import os
import logging

from .logging import configure_logging
from .metrics import DEFAULT_SERVICE_NAME, init_metrics
from .tracing import init_tracing

logger = logging.getLogger(__name__)


def init_telemetry(service_name: str = DEFAULT_SERVICE_NAME) -> bool:
    """
    Initialize tracing and metrics if OTel is enabled in the environment.

    Returns:
        True if the providers were installed
    """
    otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    otel_enabled = os.getenv("OTEL_ENABLED", "false").lower() == "true"
    console_export = os.getenv("OTEL_CONSOLE_EXPORT", "false").lower() == "true"

    if not (otel_enabled or otlp_endpoint):
        logger.debug("OpenTelemetry disabled: set OTEL_ENABLED or OTEL_EXPORTER_OTLP_ENDPOINT")
        return False

    init_tracing(
        service_name=service_name,
        service_version=os.getenv("APP_VERSION", "0.1.0"),
        otlp_endpoint=otlp_endpoint,
        console_export=console_export
    )

    init_metrics(
        service_name=service_name,
        otlp_endpoint=otlp_endpoint,
        console_export=console_export
    )

    logger.info("OpenTelemetry observability initialized")
    return True


def init_observability(service_name: str = DEFAULT_SERVICE_NAME) -> bool:
    """Configure structured logging first, then tracing and metrics."""
    configure_logging(
        level=os.getenv("LOG_LEVEL", "INFO"),
        structured=os.getenv("LOG_STRUCTURED", "true").lower() == "true",
        service_name=service_name
    )
    return init_telemetry(service_name)
