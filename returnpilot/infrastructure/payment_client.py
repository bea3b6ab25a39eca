"""Payment gateway client (Razorpay REST API).

Verifies processing-fee payments and authenticates gateway webhooks.
"""

import hashlib
import hmac
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from returnpilot.domain.policies import is_payment_captured
from returnpilot.infrastructure.config import settings

logger = structlog.get_logger()


class PaymentClientError(Exception):
    """Error from a payment gateway API call."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


@dataclass
class PaymentVerification:
    """Gateway view of a payment.

    Attributes:
        payment_id: Gateway payment identifier.
        status: Gateway status (created, authorized, captured, failed...).
        amount: Amount in minor units.
        currency: ISO currency code.
        notes: Merchant notes attached at checkout.
    """

    payment_id: str
    status: str
    amount: int
    currency: str = "INR"
    notes: dict[str, Any] = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return is_payment_captured(self.status)

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "PaymentVerification":
        """Create from API response data."""
        notes = data.get("notes")
        return cls(
            payment_id=data.get("id", ""),
            status=data.get("status", "unknown"),
            amount=int(data.get("amount") or 0),
            currency=data.get("currency", "INR"),
            notes=notes if isinstance(notes, dict) else {},
        )


class PaymentClient:
    """HTTP client for the Razorpay payments API."""

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 15.0,
    ) -> None:
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                auth=(self.key_id, self.key_secret),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def verify(self, payment_id: str) -> PaymentVerification | None:
        """Fetch a payment from the gateway.

        Args:
            payment_id: Gateway payment identifier.

        Returns:
            The payment, or None if the gateway does not know the id.

        Raises:
            PaymentClientError: On transport, auth or server errors.
        """
        try:
            client = await self._get_client()
            response = await client.get(f"/payments/{payment_id}")
        except httpx.RequestError as e:
            logger.error("Payment API request failed", payment_id=payment_id, error=str(e))
            raise PaymentClientError(f"Request failed: {str(e)}") from e

        # Unknown ids come back as 400 BAD_REQUEST_ERROR
        if response.status_code in (400, 404):
            logger.info("Payment not found", payment_id=payment_id)
            return None
        if response.status_code != 200:
            raise PaymentClientError(
                f"Payment API error: {response.text}", response.status_code
            )

        try:
            data = response.json()
        except ValueError as e:
            raise PaymentClientError(
                f"Payment API returned a non-JSON body (HTTP {response.status_code})",
                response.status_code,
            ) from e
        if not isinstance(data, dict):
            raise PaymentClientError("Payment API returned an unexpected body")
        return PaymentVerification.from_api_response(data)


class PaymentSignatureVerifier:
    """Verifies gateway webhook signatures (hex HMAC-SHA256 of the raw body)."""

    def __init__(self, secret: str) -> None:
        self._secret = secret.encode()

    def sign(self, body: bytes) -> str:
        return hmac.new(self._secret, body, hashlib.sha256).hexdigest()

    def verify(self, body: bytes, signature: str | None) -> bool:
        """Check a signature in constant time."""
        if not signature:
            return False
        return hmac.compare_digest(self.sign(body), signature)


# Global client instance
_payment_client: PaymentClient | None = None


def get_payment_client() -> PaymentClient | None:
    """Get the payment client singleton, None if not configured."""
    global _payment_client
    if _payment_client is None and settings.payment_configured:
        _payment_client = PaymentClient(
            key_id=settings.razorpay_key_id,
            key_secret=settings.razorpay_key_secret,
            base_url=settings.razorpay_base_url,
            timeout=settings.http_timeout_seconds,
        )
    return _payment_client


async def close_payment_client() -> None:
    """Close and drop the payment client singleton."""
    global _payment_client
    if _payment_client is not None:
        await _payment_client.close()
    _payment_client = None


def get_signature_verifier() -> PaymentSignatureVerifier | None:
    """Webhook signature verifier, None if no webhook secret is set."""
    if not settings.razorpay_webhook_secret:
        return None
    return PaymentSignatureVerifier(settings.razorpay_webhook_secret)
