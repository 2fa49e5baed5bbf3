"""HTTP gateway adapter posting collections to a processor endpoint."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

import httpx

from payout_engine.errors import GatewayError, GatewayTimeoutError
from payout_engine.gateways.base import CollectResult

logger = logging.getLogger(__name__)


class HttpGateway:
    """Collects fees through a JSON endpoint.

    Request:  POST {base_url}/collections
              {"professional_id", "amount", "currency"}
              with an Idempotency-Key header when a key is given.
    Response: 200/201 {"id": "...", "status": "succeeded" | "failed", "reason"?}

    A non-2xx answer or a failed status is a declined collection. Network
    errors raise GatewayError, timeouts GatewayTimeoutError.
    """

    gateway_name = "http"

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout_seconds: float = 30.0,
        currency: str = "USD",
        client: httpx.Client | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.currency = currency
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def close(self) -> None:
        """Release the underlying HTTP connection pool."""
        self._client.close()

    def _headers(self, idempotency_key: str | None) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def collect(
        self,
        professional_id: str,
        amount: Decimal,
        *,
        idempotency_key: str | None = None,
    ) -> CollectResult:
        payload = {
            "professional_id": professional_id,
            "amount": str(amount),
            "currency": self.currency,
        }
        try:
            response = self._client.post(
                f"{self.base_url}/collections",
                json=payload,
                headers=self._headers(idempotency_key),
            )
        except httpx.TimeoutException as e:
            raise GatewayTimeoutError(self.timeout_seconds) from e
        except httpx.HTTPError as e:
            raise GatewayError(f"Gateway request failed: {e}") from e

        if response.status_code not in (200, 201):
            logger.warning(
                "Gateway declined collection for %s: HTTP %d",
                professional_id,
                response.status_code,
            )
            return CollectResult(
                success=False,
                reason=f"http_{response.status_code}: {response.text[:200]}",
            )

        try:
            body: dict[str, Any] = response.json()
        except ValueError:
            return CollectResult(success=False, reason="invalid_response")

        if body.get("status") != "succeeded" or not body.get("id"):
            return CollectResult(
                success=False,
                reference_id=body.get("id"),
                reason=str(body.get("reason") or body.get("status") or "invalid_response"),
            )

        return CollectResult(success=True, reference_id=str(body["id"]))
