from datetime import datetime
from typing import Optional, Dict, Any
from sqlalchemy import Column, String, Integer, DateTime
from sqlalchemy.orm import Mapped
from infrastructure.db.models.base import Base, JSONType


class OutboundNotificationModel(Base):
    """Database model for settlement events delivered to the notification sink."""

    __tablename__ = "outbound_notification"

    id: Mapped[str] = Column(String(36), primary_key=True)
    event_type: Mapped[str] = Column(String(32), nullable=False)  # SETTLEMENT_SUCCESS | SETTLEMENT_FAILURE
    payload: Mapped[Dict[str, Any]] = Column(JSONType, nullable=False)
    target_url: Mapped[str] = Column(String, nullable=False)
    status: Mapped[str] = Column(String(16), nullable=False)  # "pending", "success", "failed"
    last_attempt_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    attempts: Mapped[int] = Column(Integer, nullable=False, default=0)
    latency_ms: Mapped[Optional[int]] = Column(Integer, nullable=True)
    created_at: Mapped[datetime] = Column(DateTime, nullable=False)

    # Plain references, no FK: failure events may concern rows that were rolled back
    installment_id: Mapped[Optional[str]] = Column(String(36), nullable=True, index=True)
    settlement_id: Mapped[Optional[str]] = Column(String(36), nullable=True)

    @classmethod
    def create(
        cls,
        notification_id: str,
        event_type: str,
        payload: Dict[str, Any],
        target_url: str,
        installment_id: Optional[str] = None,
        settlement_id: Optional[str] = None,
    ) -> "OutboundNotificationModel":
        """Create a new pending notification record."""
        return cls(
            id=notification_id,
            event_type=event_type,
            payload=payload,
            target_url=target_url,
            status="pending",
            attempts=0,
            last_attempt_at=None,
            created_at=datetime.now(),
            installment_id=installment_id,
            settlement_id=settlement_id,
        )

    def update_attempt(self, success: bool, attempt_count: int, latency_ms: Optional[int] = None):
        """Update the record after delivery finished (all retries included)."""
        self.attempts = attempt_count
        self.last_attempt_at = datetime.now()
        self.latency_ms = latency_ms
        self.status = "success" if success else "failed"
