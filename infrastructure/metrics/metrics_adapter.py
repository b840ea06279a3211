"""
Metrics adapter that implements MetricsPort protocol.

Wraps the Prometheus counters so the application layer never touches prometheus_client.
"""
from infrastructure.metrics.metrics import (
    plans_generated_total,
    settlement_confirmations_total,
    settlement_requests_total,
)


class MetricsAdapter:
    """Adapter that implements MetricsPort by incrementing Prometheus counters."""

    def increment_plan_generated(self, outcome: str) -> None:
        plans_generated_total.labels(outcome=outcome).inc()

    def increment_settlement_request(self, outcome: str) -> None:
        """
        Increment the settlement_requests_total counter.

        Args:
            outcome: e.g. "issued", "reused", "gateway_failed"
        """
        settlement_requests_total.labels(outcome=outcome).inc()

    def increment_settlement_confirmation(self, path: str, outcome: str) -> None:
        settlement_confirmations_total.labels(path=path, outcome=outcome).inc()
