"""
Payment gateway client.

Only invoice cancellation is used by the order pipeline: changing an
order's payment method first cancels the pending invoice. A 404 means the
invoice is already gone and counts as success.
"""
import logging
from typing import Optional

import httpx

from app.config import settings
from app.core.exceptions import PaymentGatewayError

logger = logging.getLogger(__name__)


class PaymentGatewayService:
    """Thin async client for the payment gateway API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.PAYMENT_GATEWAY_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.PAYMENT_GATEWAY_API_KEY
        self.timeout = timeout or settings.PAYMENT_GATEWAY_TIMEOUT
        self._transport = transport

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def cancel_invoice(self, invoice_id: str) -> bool:
        """
        Cancel a pending invoice.

        Returns:
            True when the invoice was cancelled, False when it no longer existed

        Raises:
            PaymentGatewayError: gateway not configured, unreachable, or non-2xx other than 404
        """
        if not self.base_url:
            raise PaymentGatewayError("Payment gateway is not configured")

        url = f"{self.base_url}/invoices/{invoice_id}/cancel"
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(url, headers=self._headers(), timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.error(f"Payment gateway unreachable cancelling invoice {invoice_id}: {e}")
            raise PaymentGatewayError(f"Payment gateway unreachable: {e}")

        if response.status_code == 404:
            logger.info(f"Invoice {invoice_id} already gone at the gateway")
            return False
        if response.status_code >= 300:
            logger.error(
                f"Payment gateway refused to cancel invoice {invoice_id}: "
                f"{response.status_code} {response.text[:200]}"
            )
            raise PaymentGatewayError(
                f"Invoice cancellation failed with status {response.status_code}",
                {"invoice_id": invoice_id, "gateway_status": response.status_code},
            )

        logger.info(f"Cancelled invoice {invoice_id}")
        return True
