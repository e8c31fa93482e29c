"""
MercadoPago gateway adapter
Creates checkout preferences, fetches payments and verifies webhook deliveries
"""

from typing import Any, Dict, Optional
from decimal import Decimal
from datetime import datetime
import hashlib
import hmac
import json
import time

import httpx
import structlog

from academy.core.clock import utcnow
from academy.core.config import Settings
from academy.core.exceptions import ExternalProviderError
from academy.models.order import Order
from academy.models.payment import (
    PaymentInfo,
    PreferenceResult,
    ProviderPaymentStatus,
    WebhookVerification,
    WebhookVerificationStatus,
)

logger = structlog.get_logger()


def parse_signature_header(header: Optional[str]) -> Dict[str, str]:
    """'ts=1700000000,v1=abcdef' -> {'ts': '1700000000', 'v1': 'abcdef'}"""
    parts: Dict[str, str] = {}
    if not header:
        return parts
    for part in header.split(","):
        key, sep, value = part.partition("=")
        if sep and key.strip() and value.strip():
            parts[key.strip()] = value.strip()
    return parts


def build_manifest(data_id: str, request_id: str, timestamp: str) -> str:
    return f"id:{data_id};request-id:{request_id};ts:{timestamp};"


def sign_manifest(secret: str, manifest: str) -> str:
    return hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()


class MercadoPagoGateway:
    """HTTP adapter for the MercadoPago REST API"""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.client = client or httpx.AsyncClient(
            base_url=settings.mercadopago_api_url,
            timeout=settings.mercadopago_timeout
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    def _headers(self, idempotency_key: Optional[str] = None) -> Dict[str, str]:
        if not self.settings.mercadopago_access_token:
            raise ExternalProviderError("MercadoPago is not configured")
        headers = {"Authorization": f"Bearer {self.settings.mercadopago_access_token}"}
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key
        return headers

    def _back_urls(self, order: Order) -> Dict[str, str]:
        app_url = self.settings.app_url.rstrip("/")
        return {
            "success": f"{app_url}/checkout/success/{order.id}",
            "failure": f"{app_url}/checkout/{order.course_id}?error=payment_failed",
            "pending": f"{app_url}/checkout/success/{order.id}?pending=true",
        }

    async def create_preference(
        self,
        order: Order,
        course_title: str,
        payer_email: str,
        payer_name: Optional[str] = None
    ) -> PreferenceResult:
        """
        Register a payment intent for the order's final amount.
        The order id travels as external_reference and metadata so the
        webhook can find the order again.
        """
        body = {
            "items": [{
                "id": order.course_id,
                "title": course_title,
                "quantity": 1,
                "unit_price": float(order.final_amount),
                "currency_id": order.currency.value,
            }],
            "external_reference": order.id,
            "metadata": {"order_id": order.id, "order_number": order.order_number},
            "payer": {"email": payer_email, "name": payer_name},
            "back_urls": self._back_urls(order),
            "notification_url": self.settings.webhook_url,
            "auto_return": "approved",
        }

        started = time.monotonic()
        try:
            resp = await self.client.post(
                "/checkout/preferences",
                json=body,
                headers=self._headers(idempotency_key=order.id)
            )
            resp.raise_for_status()
            data = resp.json()
            if not isinstance(data, dict):
                raise ValueError(f"unexpected response body: {type(data).__name__}")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                "mercadopago_preference_failed",
                order_id=order.id,
                error=str(e),
                duration_ms=int((time.monotonic() - started) * 1000)
            )
            raise ExternalProviderError(
                "Could not start the online payment, please try again",
                {"order_id": order.id}
            ) from e

        redirect_url = data.get("sandbox_init_point") if self.settings.mercadopago_sandbox else data.get("init_point")
        if not data.get("id") or not redirect_url:
            logger.error("mercadopago_preference_incomplete", order_id=order.id, response=data)
            raise ExternalProviderError("Payment provider returned an incomplete preference", {"order_id": order.id})

        logger.info(
            "mercadopago_preference_created",
            order_id=order.id,
            preference_id=data["id"],
            duration_ms=int((time.monotonic() - started) * 1000)
        )
        return PreferenceResult(preference_id=str(data["id"]), redirect_url=redirect_url)

    async def get_payment(self, payment_id: str) -> PaymentInfo:
        """Fetch the authoritative payment object"""
        started = time.monotonic()
        try:
            resp = await self.client.get(f"/v1/payments/{payment_id}", headers=self._headers())
            resp.raise_for_status()
            data = resp.json()
            if not isinstance(data, dict):
                raise ValueError(f"unexpected response body: {type(data).__name__}")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                "mercadopago_get_payment_failed",
                payment_id=payment_id,
                error=str(e),
                duration_ms=int((time.monotonic() - started) * 1000)
            )
            raise ExternalProviderError("Could not fetch payment from provider", {"payment_id": payment_id}) from e

        metadata = data.get("metadata") or {}
        raw_status = data.get("status") or "unknown"
        amount = data.get("transaction_amount")

        logger.info(
            "mercadopago_payment_fetched",
            payment_id=payment_id,
            status=raw_status,
            duration_ms=int((time.monotonic() - started) * 1000)
        )
        return PaymentInfo(
            id=str(data.get("id") or payment_id),
            status=ProviderPaymentStatus.parse(raw_status),
            raw_status=raw_status,
            status_detail=data.get("status_detail"),
            external_reference=data.get("external_reference") or None,
            preference_id=data.get("preference_id"),
            order_id=metadata.get("order_id"),
            transaction_amount=Decimal(str(amount)) if amount is not None else None,
            currency=data.get("currency_id")
        )

    def verify_webhook(
        self,
        raw_body: bytes,
        signature_header: Optional[str],
        request_id: Optional[str],
        query_data_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> WebhookVerification:
        """
        Check a webhook delivery.
        Malformed payloads are reported before the signature is checked,
        because the signed manifest needs data.id.
        """
        try:
            payload: Any = json.loads(raw_body or b"{}")
        except ValueError:
            return WebhookVerification(status=WebhookVerificationStatus.MALFORMED_PAYLOAD, detail="invalid JSON")
        if not isinstance(payload, dict):
            return WebhookVerification(status=WebhookVerificationStatus.MALFORMED_PAYLOAD, detail="payload is not an object")

        event_type = payload.get("type") or payload.get("topic")
        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        data_id = query_data_id or data.get("id")
        if not event_type or data_id in (None, ""):
            return WebhookVerification(
                status=WebhookVerificationStatus.MALFORMED_PAYLOAD,
                event_type=event_type,
                detail="missing type or data.id"
            )
        data_id = str(data_id)

        secret = self.settings.mercadopago_webhook_secret
        if not secret:
            if self.settings.is_production:
                return self._invalid(event_type, data_id, "webhook secret not configured")
            logger.warning("webhook_signature_skipped", data_id=data_id, reason="secret not configured")
            return WebhookVerification(status=WebhookVerificationStatus.VERIFIED, event_type=event_type, data_id=data_id)

        parts = parse_signature_header(signature_header)
        timestamp = parts.get("ts")
        received = parts.get("v1")
        if not request_id or not timestamp or not received:
            return self._invalid(event_type, data_id, "missing signature headers")

        try:
            sent_at = int(timestamp)
        except ValueError:
            return self._invalid(event_type, data_id, "invalid timestamp")

        age = int((now or utcnow()).timestamp()) - sent_at
        if age > self.settings.webhook_max_age_seconds or age < -self.settings.webhook_clock_skew_seconds:
            return self._invalid(event_type, data_id, f"timestamp outside window ({age}s)")

        expected = sign_manifest(secret, build_manifest(data_id, request_id, timestamp))
        if not hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8")):
            return self._invalid(event_type, data_id, "signature mismatch")

        return WebhookVerification(status=WebhookVerificationStatus.VERIFIED, event_type=event_type, data_id=data_id)

    def _invalid(self, event_type: str, data_id: str, detail: str) -> WebhookVerification:
        logger.warning("webhook_signature_invalid", event_type=event_type, data_id=data_id, detail=detail)
        return WebhookVerification(
            status=WebhookVerificationStatus.INVALID_SIGNATURE,
            event_type=event_type,
            data_id=data_id,
            detail=detail
        )
