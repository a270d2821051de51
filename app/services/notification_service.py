"""
Order Notification Dispatch

Builds order event messages and hands them to delivery channels:
- Email / in-app / Telegram: logged here, delivered by the messaging worker
- Webhook: POSTed to NOTIFICATION_WEBHOOK_URL when configured

Delivery and retry belong to the receiving side. A failed delivery is
logged and never raised into the order pipeline.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
from enum import Enum
from uuid import uuid4

import httpx

from app.config import settings


logger = logging.getLogger(__name__)


class NotificationChannel(str, Enum):
    """Notification delivery channels."""
    EMAIL = "email"
    IN_APP = "in_app"
    TELEGRAM = "telegram"
    WEBHOOK = "webhook"


class NotificationType(str, Enum):
    """Types of notifications."""
    ORDER_PLACED = "order_placed"
    ORDER_PAID = "order_paid"
    ORDER_COMPLETED = "order_completed"
    ORDER_CANCELLED = "order_cancelled"


MESSAGE_TEMPLATES = {
    NotificationType.ORDER_PLACED: "Order {order_number} was placed. Total: {total}.",
    NotificationType.ORDER_PAID: "Order {order_number} is paid. Total: {total}.",
    NotificationType.ORDER_COMPLETED: "Order {order_number} is completed.",
    NotificationType.ORDER_CANCELLED: "Order {order_number} was cancelled.",
}

DEFAULT_ORDER_CHANNELS = [
    NotificationChannel.EMAIL,
    NotificationChannel.IN_APP,
    NotificationChannel.TELEGRAM,
]


class NotificationService:
    """Send order notifications to a client or organization-wide."""

    def __init__(self, webhook_url: Optional[str] = None, timeout: float = 10.0):
        self.webhook_url = webhook_url if webhook_url is not None else settings.NOTIFICATION_WEBHOOK_URL
        self.timeout = timeout

    async def send_notification(
        self,
        organization_id: str,
        notification_type: NotificationType,
        channels: List[NotificationChannel],
        variables: Dict[str, Any],
        client_id: Optional[str] = None,
        country: Optional[str] = None,
        subject: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Dispatch one notification on every requested channel.

        Args:
            organization_id: Organization the event belongs to
            notification_type: Event type, selects the message template
            channels: Delivery channels
            variables: Template variables
            client_id: Recipient client; None means organization-wide
            country: Routing hint for localized delivery

        Returns:
            Dict with the notification id, rendered message and per-channel status
        """
        notification_id = str(uuid4())
        template = MESSAGE_TEMPLATES.get(notification_type, "")
        try:
            message = template.format(**variables)
        except KeyError as e:
            logger.warning(f"Missing template variable: {e}")
            message = template

        payload = {
            "notification_id": notification_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "organization_id": organization_id,
            "client_id": client_id,
            "country": country,
            "type": notification_type.value,
            "subject": subject or notification_type.value.replace("_", " ").title(),
            "message": message,
        }

        statuses = {}
        for channel in channels:
            if channel == NotificationChannel.WEBHOOK:
                statuses[channel.value] = await self._send_webhook({**payload, "channel": channel.value})
            else:
                target = f"client {client_id}" if client_id else f"org {organization_id}"
                logger.info(f"[NOTIFICATION] {channel.value.upper()} to {target}: {message[:100]}")
                statuses[channel.value] = "queued"

        return {
            "notification_id": notification_id,
            "message": message,
            "channels": statuses,
        }

    async def _send_webhook(self, payload: Dict[str, Any]) -> str:
        if not self.webhook_url:
            logger.debug("Webhook channel requested but NOTIFICATION_WEBHOOK_URL is not set")
            return "skipped"
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(self.webhook_url, json=payload, timeout=self.timeout)
            if response.status_code >= 400:
                logger.error(f"Notification webhook returned {response.status_code}: {response.text[:200]}")
                return "failed"
            return "sent"
        except httpx.HTTPError as e:
            logger.error(f"Notification webhook failed: {e}")
            return "failed"
