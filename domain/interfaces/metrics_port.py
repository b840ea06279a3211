from typing_extensions import Protocol


class MetricsPort(Protocol):
    """Protocol for metrics operations."""

    def increment_plan_generated(self, outcome: str) -> None:
        """
        Increment the plans_generated_total counter.

        Args:
            outcome: One of "created", "replaced", "invalid", "conflict" or "error"
        """
        ...

    def increment_settlement_request(self, outcome: str) -> None:
        """
        Increment the settlement_requests_total counter.

        Args:
            outcome: "issued", "reused", "in_progress", "already_paid",
                "gateway_failed", "gateway_timeout", "gateway_unavailable" or "error"
        """
        ...

    def increment_settlement_confirmation(self, path: str, outcome: str) -> None:
        """
        Increment the settlement_confirmations_total counter.

        Args:
            path: "callback", "poll" or "manual"
            outcome: "confirmed", "duplicate", "mismatch", "pending", "unknown",
                "registered", "rejected" or "error"
        """
        ...
