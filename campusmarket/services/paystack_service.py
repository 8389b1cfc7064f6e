"""
Paystack payment gateway client.

Usage:
    from campusmarket.services.paystack_service import paystack_service

    init = paystack_service.initialize_transaction(
        email="buyer@uni.edu", amount=4500, callback_url=url, metadata={...}
    )
    # init = {"authorization_url": "...", "access_code": "...", "reference": "..."}

    tx = paystack_service.verify_transaction(init["reference"])
    # tx["status"] == "success" once paid
"""
import hashlib
import hmac
import logging
from typing import Any, Dict, Optional

import requests

from campusmarket.config import get_settings
from campusmarket.core.exceptions import ExternalServiceException

logger = logging.getLogger(__name__)


def to_minor_units(amount: float) -> int:
    """Paystack expects kobo: the amount rounded to a whole unit, times 100."""
    return int(round(amount)) * 100


class PaystackService:
    """Thin client over the Paystack transaction API."""

    def __init__(self):
        settings = get_settings()
        self.secret_key = settings.PAYSTACK_SECRET_KEY
        self.base_url = settings.PAYSTACK_BASE_URL.rstrip("/")
        self.timeout = settings.PAYSTACK_TIMEOUT_SECONDS

    def is_configured(self) -> bool:
        return bool(self.secret_key)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    def _call(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Perform an API call and return the `data` member.

        Raises:
            ExternalServiceException: Not configured, transport error or
                an unsuccessful answer
        """
        if not self.is_configured():
            raise ExternalServiceException("Paystack not configured")

        url = f"{self.base_url}{path}"
        try:
            response = requests.request(method, url, json=json, headers=self._headers(), timeout=self.timeout)
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Paystack {method} {path} failed: {e}")
            raise ExternalServiceException("Payment gateway unavailable")

        if not response.ok or not body.get("status"):
            logger.error(f"Paystack {method} {path} rejected ({response.status_code}): {body.get('message')}")
            raise ExternalServiceException(body.get("message") or "Payment gateway error")

        return body.get("data") or {}

    def initialize_transaction(
        self,
        *,
        email: str,
        amount: float,
        callback_url: str,
        metadata: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Start a checkout.

        Args:
            email: Payer email
            amount: Amount in major units
            callback_url: Where Paystack redirects after payment
            metadata: Echoed back on verification and webhooks

        Returns:
            Paystack data: authorization_url, access_code, reference
        """
        payload = {
            "email": email,
            "amount": to_minor_units(amount),
            "callback_url": callback_url,
            "metadata": metadata,
        }
        data = self._call("POST", "/transaction/initialize", json=payload)
        logger.info(f"Paystack transaction initialized: {data.get('reference')}")
        return data

    def verify_transaction(self, reference: str) -> Dict[str, Any]:
        """
        Fetch the state of a transaction.

        Returns:
            Paystack data (status, reference, metadata, amount, ...)
        """
        return self._call("GET", f"/transaction/verify/{reference}")

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        """
        Check a webhook's x-paystack-signature header.

        The header is the hex HMAC-SHA512 of the raw body keyed with the
        secret key.
        """
        if not signature or not self.is_configured():
            return False
        expected = hmac.new(self.secret_key.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature.strip())


# Singleton instance
paystack_service = PaystackService()
