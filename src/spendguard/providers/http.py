"""HttpProviderGateway - a remote x402 provider reached over HTTP."""

from __future__ import annotations

from typing import Any

import httpx

from spendguard.core.config import Config
from spendguard.core.exceptions import ProviderError, UnexpectedProviderResponse
from spendguard.core.logging import get_logger
from spendguard.core.types import PaymentRequirement, ProviderResult
from spendguard.payment.proof import PAYMENT_PROOF_HEADER
from spendguard.providers.base import ProviderGateway, ProviderInfo


class HttpProviderGateway(ProviderGateway):
    """
    Gateway to a provider speaking the x402 convention.

    Flow:
    1. POST without a proof header, expect 402 with the terms under
       ``x402`` (or ``requirements``) in the JSON body
    2. POST the payload with the proof header, expect 200 with
       ``{"success": bool, "data"?, "error"?}``
    """

    def __init__(
        self,
        info: ProviderInfo,
        url: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        proof_header: str = PAYMENT_PROOF_HEADER,
    ) -> None:
        """
        Args:
            info: Published terms (the price charged against the budget)
            url: Provider endpoint
            http_client: Optional custom HTTP client
            timeout: Request timeout in seconds
            proof_header: Header carrying the encoded proof
        """
        self._info = info
        self._url = url
        self._http_client = http_client
        self._owns_client = http_client is None
        self._timeout = timeout
        self._proof_header = proof_header
        self._logger = get_logger(f"providers.http.{info.name}")

    @classmethod
    def from_config(cls, config: Config, info: ProviderInfo, url: str) -> HttpProviderGateway:
        """Build a gateway using the configured provider timeout."""
        return cls(info, url, timeout=config.provider_timeout)

    @property
    def info(self) -> ProviderInfo:
        return self._info

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def _post(self, json: dict[str, Any], headers: dict[str, str] | None = None) -> httpx.Response:
        client = await self._get_http_client()
        try:
            return await client.post(self._url, json=json, headers=headers)
        except httpx.HTTPError as e:
            raise ProviderError(
                f"Request to {self._url} failed: {e}",
                provider_name=self._info.name,
            ) from e

    @staticmethod
    def _json_body(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    async def quote(self) -> PaymentRequirement:
        response = await self._post(json={})

        if response.status_code != 402:
            raise UnexpectedProviderResponse(
                f"status {response.status_code}",
                provider_name=self._info.name,
                status_code=response.status_code,
            )

        body = self._json_body(response)
        terms = body.get("x402") or body.get("requirements")
        if not isinstance(terms, dict):
            raise UnexpectedProviderResponse(
                "402 response without payment terms",
                provider_name=self._info.name,
                status_code=402,
            )

        try:
            return PaymentRequirement.from_dict(terms)
        except (KeyError, ValueError) as e:
            raise UnexpectedProviderResponse(
                f"invalid payment terms: {e}",
                provider_name=self._info.name,
                status_code=402,
            ) from e

    async def execute(
        self,
        payload: dict[str, Any],
        payment_proof: str | None = None,
    ) -> ProviderResult:
        headers = {self._proof_header: payment_proof} if payment_proof else None
        response = await self._post(json=payload, headers=headers)
        body = self._json_body(response)

        if response.status_code == 200:
            return ProviderResult(
                success=bool(body.get("success", True)),
                data=body.get("data"),
                error=body.get("error"),
            )

        if response.status_code == 402:
            raise UnexpectedProviderResponse(
                "status 402 after verified payment",
                provider_name=self._info.name,
                status_code=402,
            )

        self._logger.warning(f"Provider returned HTTP {response.status_code} after payment")
        raise UnexpectedProviderResponse(
            f"status {response.status_code}: {body.get('error', response.reason_phrase)}",
            provider_name=self._info.name,
            status_code=response.status_code,
        )

    async def close(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
