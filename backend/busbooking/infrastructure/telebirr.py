"""
TeleBirr mobile-money integration.

Merchant-initiated payments: we ask TeleBirr to push a payment request to the
customer's phone; the customer approves on the handset and TeleBirr later
calls our webhook with the outcome.

Both directions are signed with HMAC-SHA256 over the alphabetically sorted,
URL-encoded parameters (signature field excluded) keyed by the app key.
"""

import hashlib
import hmac
import secrets
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping, Optional
from urllib.parse import urlencode

import httpx

from busbooking.core.config import Settings, get_settings
from busbooking.core.exceptions import ProviderUnavailable
from busbooking.core.logging import get_logger

logger = get_logger(__name__)


def sign_params(params: Mapping[str, Any], app_key: str) -> str:
    to_sign = {
        key: str(value)
        for key, value in params.items()
        if key != "signature" and value is not None
    }
    query_string = urlencode(sorted(to_sign.items()))
    return hmac.new(app_key.encode(), query_string.encode(), hashlib.sha256).hexdigest()


def verify_signature(params: Mapping[str, Any], signature: Any, app_key: str) -> bool:
    if not isinstance(signature, str) or not signature:
        logger.warning("telebirr_signature_missing")
        return False
    expected = sign_params(params, app_key)
    return hmac.compare_digest(signature.encode(), expected.encode())


class TelebirrClient:
    """Outbound calls to the TeleBirr merchant API."""

    def __init__(self, settings: Optional[Settings] = None, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or get_settings()
        self._http_client = http_client

    @property
    def demo_mode(self) -> bool:
        return self.settings.PAYMENT_DEMO_MODE or not self.settings.TELEBIRR_APP_ID

    async def initiate_payment(
        self,
        phone: str,
        amount: Decimal,
        reference: str,
        description: Optional[str] = None,
    ) -> str:
        """Push a payment request to the customer's phone; returns TeleBirr's transaction id."""
        if self.demo_mode:
            transaction_id = f"DEMO-TXN-{uuid.uuid4().hex[:16].upper()}"
            logger.info(
                "telebirr_demo_payment_initiated",
                reference=reference,
                amount=str(amount),
                transaction_id=transaction_id,
            )
            return transaction_id

        payload = {
            "appId": self.settings.TELEBIRR_APP_ID,
            "nonce": secrets.token_hex(16),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "amount": f"{amount:.2f}",
            "phone": phone,
            "outTradeNo": reference,
            "notifyUrl": self.settings.TELEBIRR_NOTIFY_URL,
            "subject": description or "Bus ticket booking",
            "merchantCode": self.settings.TELEBIRR_MERCHANT_CODE,
        }
        payload["signature"] = sign_params(payload, self.settings.TELEBIRR_APP_KEY)

        client = self._http_client or httpx.AsyncClient(timeout=self.settings.TELEBIRR_TIMEOUT_SECONDS)
        try:
            response = await client.post(f"{self.settings.TELEBIRR_API_URL}/payment/request", json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("telebirr_request_failed", reference=reference, error=str(e))
            raise ProviderUnavailable("Payment provider is unavailable. Please retry.") from e
        finally:
            if self._http_client is None:
                await client.aclose()

        if data.get("code") != "0":
            logger.error("telebirr_rejected", reference=reference, msg=data.get("msg"))
            raise ProviderUnavailable(f"Payment provider rejected the request: {data.get('msg')}")

        transaction_id = (data.get("data") or {}).get("transactionId")
        if not transaction_id:
            raise ProviderUnavailable("Payment provider response missing transaction id")

        logger.info("telebirr_payment_initiated", reference=reference, transaction_id=transaction_id)
        return transaction_id


def get_telebirr_client() -> TelebirrClient:
    return TelebirrClient()
