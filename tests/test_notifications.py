"""
Tests — Order Notifications
============================
"""

from app.services.notification_service import (
    NotificationChannel,
    NotificationService,
    NotificationType,
)


ORG = "00000000-0000-0000-0000-0000000000d1"


class TestNotificationService:
    async def test_renders_template_per_channel(self):
        result = await NotificationService(webhook_url="").send_notification(
            organization_id=ORG,
            notification_type=NotificationType.ORDER_PLACED,
            channels=[NotificationChannel.EMAIL, NotificationChannel.IN_APP],
            variables={"order_number": "ORD-00007", "total": "58.00"},
            client_id="client-1",
        )

        assert result["message"] == "Order ORD-00007 was placed. Total: 58.00."
        assert result["channels"] == {"email": "queued", "in_app": "queued"}

    async def test_webhook_skipped_without_url(self):
        result = await NotificationService(webhook_url="").send_notification(
            organization_id=ORG,
            notification_type=NotificationType.ORDER_CANCELLED,
            channels=[NotificationChannel.WEBHOOK],
            variables={"order_number": "ORD-00001"},
        )

        assert result["channels"] == {"webhook": "skipped"}

    async def test_missing_variable_keeps_raw_template(self):
        result = await NotificationService(webhook_url="").send_notification(
            organization_id=ORG,
            notification_type=NotificationType.ORDER_COMPLETED,
            channels=[NotificationChannel.IN_APP],
            variables={},
        )

        assert result["message"] == "Order {order_number} is completed."
