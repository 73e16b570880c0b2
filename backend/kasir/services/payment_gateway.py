"""
Outbound payment gateway boundary.

The rest of the application only sees PaymentGateway: "create invoice" and
"get invoice". XenditGateway talks to the Xendit invoice API over httpx; tests
install a fake in app.extensions["payment_gateway"].
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
from flask import current_app


class GatewayError(Exception):
    """Raised when the payment gateway cannot be reached or rejects a call."""

    def __init__(self, message: str, status_code: int | None = None, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


@dataclass(frozen=True)
class Invoice:
    id: str
    url: str | None
    status: str
    external_id: str | None = None
    payment_method: str | None = None
    payment_channel: str | None = None


class PaymentGateway:
    """Abstract invoice capability."""

    def create_invoice(
        self,
        *,
        amount: int,
        currency: str,
        external_id: str,
        payer_email: str,
        description: str,
        success_url: str,
        failure_url: str,
        webhook_url: str | None,
        duration: int,
    ) -> Invoice:
        raise NotImplementedError

    def get_invoice(self, invoice_id: str) -> Invoice:
        raise NotImplementedError


class XenditGateway(PaymentGateway):
    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.xendit.co",
        timeout: float = 15.0,
        client: httpx.Client | None = None,
    ):
        self.secret_key = secret_key
        self._client = client or httpx.Client(
            base_url=base_url,
            timeout=timeout,
            auth=(secret_key, ""),
        )

    def create_invoice(
        self,
        *,
        amount: int,
        currency: str,
        external_id: str,
        payer_email: str,
        description: str,
        success_url: str,
        failure_url: str,
        webhook_url: str | None,
        duration: int,
    ) -> Invoice:
        # Xendit delivers invoice callbacks to the URL configured on its
        # dashboard; webhook_url is not part of the invoice request.
        body = {
            "external_id": external_id,
            "amount": amount,
            "currency": currency,
            "payer_email": payer_email,
            "description": description,
            "invoice_duration": duration,
            "success_redirect_url": success_url,
            "failure_redirect_url": failure_url,
        }
        return self._parse_invoice(self._request("POST", "/v2/invoices", json=body))

    def get_invoice(self, invoice_id: str) -> Invoice:
        return self._parse_invoice(self._request("GET", f"/v2/invoices/{invoice_id}"))

    def _request(self, method: str, path: str, json: dict | None = None) -> dict:
        if not self.secret_key:
            raise GatewayError("Payment gateway is not configured")

        try:
            response = self._client.request(method, path, json=json)
        except httpx.TimeoutException as exc:
            raise GatewayError("Payment gateway timed out", details=str(exc)) from exc
        except httpx.TransportError as exc:
            raise GatewayError("Payment gateway unreachable", details=str(exc)) from exc

        if response.status_code >= 400:
            try:
                details = response.json()
            except ValueError:
                details = response.text
            message = "Payment gateway rejected the request"
            if isinstance(details, dict) and details.get("message"):
                message = f"{message}: {details['message']}"
            raise GatewayError(message, status_code=response.status_code, details=details)

        try:
            payload = response.json()
        except ValueError as exc:
            raise GatewayError("Payment gateway returned invalid JSON", status_code=response.status_code) from exc
        if not isinstance(payload, dict):
            raise GatewayError("Payment gateway returned an unexpected payload", details=payload)
        return payload

    @staticmethod
    def _parse_invoice(payload: dict) -> Invoice:
        if not payload.get("id"):
            raise GatewayError("Payment gateway response is missing the invoice id", details=payload)
        return Invoice(
            id=payload["id"],
            url=payload.get("invoice_url"),
            status=str(payload.get("status") or "PENDING"),
            external_id=payload.get("external_id"),
            payment_method=payload.get("payment_method"),
            payment_channel=payload.get("payment_channel"),
        )


def build_gateway(config) -> PaymentGateway:
    return XenditGateway(
        secret_key=config.get("XENDIT_SECRET_KEY", ""),
        base_url=config.get("XENDIT_API_URL", "https://api.xendit.co"),
        timeout=config.get("PAYMENT_GATEWAY_TIMEOUT", 15.0),
    )


def get_gateway() -> PaymentGateway:
    return current_app.extensions["payment_gateway"]
