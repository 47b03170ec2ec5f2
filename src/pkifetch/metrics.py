"""OpenTelemetry metrics for the fetch workflow."""

from opentelemetry import metrics

meter = metrics.get_meter("pkifetch")

fetches_total = meter.create_counter(
    name="pkifetch_fetches_total",
    description="Total fetch runs by mode and outcome",
    unit="1",
)

fetch_duration = meter.create_histogram(
    name="pkifetch_fetch_duration_seconds",
    description="Fetch run duration in seconds",
    unit="s",
)

backend_requests_total = meter.create_counter(
    name="pkifetch_backend_requests_total",
    description="Total requests sent to the PKI backend",
    unit="1",
)

backend_errors_total = meter.create_counter(
    name="pkifetch_backend_errors_total",
    description="Total backend failures by error category",
    unit="1",
)

artifacts_written_total = meter.create_counter(
    name="pkifetch_artifacts_written_total",
    description="Total files written by artifact kind",
    unit="1",
)

state_transitions_total = meter.create_counter(
    name="pkifetch_state_transitions_total",
    description="Total fetch run state transitions",
    unit="1",
)


class FetchMetrics:
    """Facade for fetch metrics with proper labels."""

    def record_fetch(self, mode: str, outcome: str, duration_seconds: float) -> None:
        """Record a finished run. Labels: mode=bootstrap|issue, outcome=<category>|success"""
        fetches_total.add(1, {"mode": mode, "outcome": outcome})
        fetch_duration.record(duration_seconds, {"mode": mode})

    def record_backend_request(self, endpoint: str) -> None:
        """Labels: endpoint=ca_pem|issue"""
        backend_requests_total.add(1, {"endpoint": endpoint})

    def record_backend_error(self, category: str) -> None:
        backend_errors_total.add(1, {"category": category})

    def record_artifact_written(self, kind: str) -> None:
        artifacts_written_total.add(1, {"kind": kind})

    def record_state_transition(self, from_state: str, to_state: str, event: str) -> None:
        state_transitions_total.add(
            1, {"from_state": from_state, "to_state": to_state, "event": event}
        )


# Singleton instance
fetch_metrics = FetchMetrics()
