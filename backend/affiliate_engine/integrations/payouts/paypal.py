from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

import requests

from affiliate_engine.core.config import settings
from affiliate_engine.core.errors import PayoutProviderError
from affiliate_engine.integrations.payouts.base import PayoutBatch, PayoutItem, PayoutProvider


logger = logging.getLogger(__name__)

API_BASE_URLS = {
    "sandbox": "https://api-m.sandbox.paypal.com",
    "live": "https://api-m.paypal.com",
}


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return (resp.text or "")[:500]
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error_description") or body.get("name") or body)
    return str(body)


class PayPalPayoutProvider(PayoutProvider):
    """PayPal Payouts REST API over ``requests`` (client-credentials OAuth)."""

    def __init__(
        self,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        mode: str | None = None,
        timeout: int | None = None,
    ) -> None:
        self.client_id = client_id or settings.PAYPAL_CLIENT_ID
        self.client_secret = client_secret or settings.PAYPAL_CLIENT_SECRET
        self.mode = mode or settings.PAYPAL_MODE
        self.timeout = timeout or settings.PAYPAL_TIMEOUT_SECONDS
        self.base_url = API_BASE_URLS[self.mode]

    def _access_token(self) -> str:
        if not self.client_id or not self.client_secret:
            raise PayoutProviderError("PayPal credentials not configured")
        try:
            resp = requests.post(
                f"{self.base_url}/v1/oauth2/token",
                data={"grant_type": "client_credentials"},
                auth=(self.client_id, self.client_secret),
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise PayoutProviderError(f"Failed to connect to PayPal: {exc}") from exc
        if resp.status_code >= 400:
            raise PayoutProviderError(
                f"PayPal authentication failed: {_error_message(resp)}",
                provider_status=resp.status_code,
            )
        token = resp.json().get("access_token")
        if not token:
            raise PayoutProviderError("PayPal did not return an access token")
        return token

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _item_payload(item: PayoutItem) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "recipient_type": "EMAIL",
            "amount": {"value": str(item.amount), "currency": item.currency},
            "receiver": item.receiver,
            "sender_item_id": str(item.commission_id),
        }
        if item.note:
            payload["note"] = item.note
        return payload

    def submit_payout(self, items: list[PayoutItem], *, sender_batch_id: str) -> PayoutBatch:
        if not items:
            raise PayoutProviderError("No payout items to submit")
        total = sum((Decimal(str(item.amount)) for item in items), Decimal("0"))
        body = {
            "sender_batch_header": {
                "sender_batch_id": sender_batch_id,
                "email_subject": settings.PAYOUT_EMAIL_SUBJECT,
                "email_message": f"You have received a commission payment of {total:.2f} {items[0].currency}.",
            },
            "items": [self._item_payload(item) for item in items],
        }
        headers = self._headers()
        try:
            resp = requests.post(
                f"{self.base_url}/v1/payments/payouts",
                json=body,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise PayoutProviderError(f"Failed to connect to PayPal: {exc}") from exc
        if resp.status_code != 201:
            logger.warning(
                "payout_provider.rejected",
                extra={"provider_status": resp.status_code, "sender_batch_id": sender_batch_id},
            )
            raise PayoutProviderError(
                f"PayPal API error: {resp.status_code} - {_error_message(resp)}",
                provider_status=resp.status_code,
            )
        header = resp.json().get("batch_header") or {}
        batch_id = header.get("payout_batch_id")
        if not batch_id:
            raise PayoutProviderError("PayPal batch ID not returned", provider_status=resp.status_code)
        return PayoutBatch(batch_id=batch_id, status=header.get("batch_status") or "PENDING")

    def get_payout_status(self, batch_id: str) -> str:
        headers = self._headers()
        try:
            resp = requests.get(
                f"{self.base_url}/v1/payments/payouts/{batch_id}",
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise PayoutProviderError(f"Failed to connect to PayPal: {exc}") from exc
        if resp.status_code >= 400:
            raise PayoutProviderError(
                f"PayPal API error: {resp.status_code} - {_error_message(resp)}",
                provider_status=resp.status_code,
            )
        header = resp.json().get("batch_header") or {}
        return header.get("batch_status") or "UNKNOWN"
