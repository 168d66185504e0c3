"""Client for the Paystack transaction API."""
from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Optional

import requests

from .errors import PaymentGatewayError

_DEFAULT_BASE_URL = "https://api.paystack.co"


def generate_reference() -> str:
    """Opaque, unguessable reference shared with the gateway."""

    return secrets.token_hex(20)


@dataclass
class GatewayTransaction:
    authorization_url: str
    access_code: str
    reference: str


@dataclass
class GatewayVerification:
    reference: str
    status: str
    # Minor units (kobo).
    amount: int

    @property
    def successful(self) -> bool:
        return self.status == "success"


class PaystackGateway:
    """Thin wrapper over ``/transaction/initialize`` and ``/transaction/verify``."""

    def __init__(
        self,
        secret_key: str,
        *,
        base_url: str = _DEFAULT_BASE_URL,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method, url, headers=self._headers(), timeout=self.timeout, **kwargs
            )
        except requests.RequestException as exc:
            raise PaymentGatewayError(f"Gateway request failed: {exc}") from exc
        if response.status_code != 200:
            raise PaymentGatewayError(f"Gateway request failed with status {response.status_code}: {path}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise PaymentGatewayError(f"Gateway returned invalid JSON: {path}") from exc
        if not payload.get("status"):
            raise PaymentGatewayError(payload.get("message") or f"Gateway rejected request: {path}")
        return payload.get("data") or {}

    def initialize_transaction(
        self,
        *,
        email: str,
        amount: int,
        reference: str,
        callback_url: str,
    ) -> GatewayTransaction:
        """Register a transaction; ``amount`` is in whole naira."""

        data = self._request(
            "POST",
            "/transaction/initialize",
            json={
                "email": email,
                "amount": amount * 100,
                "reference": reference,
                "callback_url": callback_url,
            },
        )
        return GatewayTransaction(
            authorization_url=data.get("authorization_url", ""),
            access_code=data.get("access_code", ""),
            reference=data.get("reference", reference),
        )

    def verify_transaction(self, reference: str) -> GatewayVerification:
        data = self._request("GET", f"/transaction/verify/{reference}")
        return GatewayVerification(
            reference=data.get("reference", reference),
            status=str(data.get("status", "")),
            amount=int(data.get("amount") or 0),
        )


__all__ = [
    "GatewayTransaction",
    "GatewayVerification",
    "PaystackGateway",
    "generate_reference",
]
