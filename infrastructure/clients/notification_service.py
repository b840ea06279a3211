"""
Notification service that delivers settlement events and records them in the database.
"""
import time
from typing import Optional
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.entities import SettlementEvent
from infrastructure.clients.notification_client import NotificationWebhookClient
from infrastructure.db.models.base import make_json_serializable
from infrastructure.db.models.notifications import OutboundNotificationModel
from infrastructure.logging.structlog_logs import logger


class NotificationService:
    """
    Implements NotificationPort.

    - Creates an outbound_notification record
    - Sends the event with NotificationWebhookClient (retries included)
    - Updates the record with attempts and final status

    Recording problems are logged and never affect delivery or the caller.
    """

    def __init__(self, client: NotificationWebhookClient, db_session: Optional[AsyncSession] = None):
        self.client = client
        self.db_session = db_session

    async def publish(self, event: SettlementEvent, request_id: Optional[str] = None) -> bool:
        log = logger.bind(
            request_id=request_id or "unknown",
            installment_id=event.installment_id,
            settlement_id=event.settlement_id,
            step="notification_service"
        )
        payload = make_json_serializable(event.to_payload())
        record = await self._create_record(event, payload, log)

        start_time = time.time()
        success, attempt_count = await self.client.send(payload, request_id=request_id)
        duration_ms = (time.time() - start_time) * 1000

        if record is not None:
            try:
                record.update_attempt(success=success, attempt_count=attempt_count, latency_ms=int(duration_ms))
                await self.db_session.commit()
                log.info(
                    "notification_recorded",
                    notification_id=record.id,
                    status=record.status,
                    attempts=attempt_count,
                    duration_ms=round(duration_ms, 2),
                )
            except SQLAlchemyError as e:
                log.error("notification_record_update_failed", error=str(e), exc_info=True)
                await self.db_session.rollback()
        return success

    async def _create_record(self, event: SettlementEvent, payload: dict, log) -> Optional[OutboundNotificationModel]:
        if self.db_session is None:
            return None
        record = OutboundNotificationModel.create(
            notification_id=str(uuid4()),
            event_type=f"SETTLEMENT_{event.outcome.value.upper()}",
            payload=payload,
            target_url=self.client.target_url,
            installment_id=event.installment_id,
            settlement_id=event.settlement_id,
        )
        try:
            self.db_session.add(record)
            await self.db_session.commit()
            return record
        except SQLAlchemyError as e:
            log.error("notification_record_creation_failed", error=str(e), exc_info=True)
            await self.db_session.rollback()
            return None
