from opentelemetry import metrics
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource


def setup_metrics(app_name: str) -> MeterProvider:
    """Configure OpenTelemetry metrics.

    A single fetch lives for seconds, so the reader only exports when the
    provider is shut down (or every export interval for long runs).
    """

    resource = Resource.create({"service.name": app_name})

    console_reader = PeriodicExportingMetricReader(ConsoleMetricExporter())

    provider = MeterProvider(resource=resource, metric_readers=[console_reader])

    metrics.set_meter_provider(provider)
    return provider
