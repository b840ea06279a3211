from .pagofacil_client import PagoFacilClient, get_gateway_session
from .notification_client import NotificationWebhookClient
from .notification_service import NotificationService

__all__ = ["PagoFacilClient", "get_gateway_session", "NotificationWebhookClient", "NotificationService"]
