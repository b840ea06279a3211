from typing import Optional

from typing_extensions import Protocol

from domain.entities import SettlementEvent


class NotificationPort(Protocol):
    """Protocol for the notification sink."""

    async def publish(self, event: SettlementEvent, request_id: Optional[str] = None) -> bool:
        """
        Deliver a settlement event.

        Args:
            event: Success or failure event for one installment
            request_id: Optional request ID for tracing

        Returns:
            True if the sink accepted the event, False otherwise. Never raises on
            delivery failure.
        """
        ...
