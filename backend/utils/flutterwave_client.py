# backend/utils/flutterwave_client.py
import httpx
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """Raised when Flutterwave is unreachable or answers with an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class FlutterwaveClient:
    def __init__(self, api_url: str, secret_key: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_url = api_url.rstrip("/")
        self.secret_key = secret_key
        # Injected in tests to answer without network access
        self.transport = transport

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "FlutterwaveClient":
        return cls(settings.FLW_API_URL, settings.FLW_SECRET_KEY, transport=transport)

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.api_url}{path}"
        async with httpx.AsyncClient(transport=self.transport) as client:
            try:
                response = await client.request(method, url, headers=self._headers(), **kwargs)
            except httpx.RequestError as e:
                logger.error("Flutterwave %s %s failed: %s", method, path, e)
                raise GatewayError(f"Payment provider unreachable: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code >= 400:
            # Flutterwave puts a human readable reason in "message"
            message = body.get("message") if isinstance(body, dict) else None
            logger.error("Flutterwave %s %s returned %s: %s", method, path, response.status_code, response.text[:1000])
            raise GatewayError(message or response.text or "Payment provider error", status_code=response.status_code)

        if not isinstance(body, dict):
            logger.error("Flutterwave %s %s returned an unexpected body: %s", method, path, response.text[:1000])
            raise GatewayError("Invalid response from payment provider", status_code=response.status_code)
        return body

    async def create_payment(self, payload: dict) -> dict:
        # Returns the envelope {"status", "message", "data": {"link"}}
        return await self._request("POST", "/payments", json=payload)

    async def verify_by_reference(self, tx_ref: str) -> dict:
        # Returns the envelope {"status", "message", "data": {"status", "flw_ref", "amount", ...}}
        return await self._request("GET", "/transactions/verify_by_reference", params={"tx_ref": tx_ref})
