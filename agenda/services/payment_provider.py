"""Sunize payment provider client."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from agenda.core.config import settings
from agenda.core.exceptions import PaymentProviderError


logger = logging.getLogger(__name__)


class SunizeClient:
    """
    Thin async client for the Sunize transactions API.

    Makes exactly one request per call. No retry and no timeout policy of
    its own: retrying a purchase can charge twice, so that decision and the
    latency budget belong to the caller.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = (base_url or settings.payments.api_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.payments.api_key
        self.api_secret = (
            api_secret if api_secret is not None else settings.payments.api_secret
        )
        self._http_client = http_client

        if not self.api_key:
            logger.warning("Sunize API key not set; transaction initiation will be rejected")

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "x-api-secret": self.api_secret,
        }

    async def create_transaction(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST a transaction and return the provider's JSON body."""

        url = f"{self.base_url}/transactions"
        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, json=payload, headers=self._headers())
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(url, json=payload, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.error(f"Sunize request failed: {exc!r}")
            raise PaymentProviderError(
                "Payment provider unreachable", raw_response=str(exc)
            ) from exc

        if not response.is_success:
            logger.error(f"Sunize rejected transaction ({response.status_code}): {response.text}")
            raise PaymentProviderError(
                f"Payment provider error: {response.text}",
                raw_response=response.text,
                provider_status=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise PaymentProviderError(
                "Payment provider returned an invalid response",
                raw_response=response.text,
                provider_status=response.status_code,
            ) from exc


_client: Optional[SunizeClient] = None


def get_payment_client() -> SunizeClient:
    """Return a cached provider client configured from settings."""

    global _client
    if _client is None:
        _client = SunizeClient()
    return _client
