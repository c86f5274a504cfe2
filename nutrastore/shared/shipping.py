"""Client for the Shiprocket carrier API.

Only the calls the order workflow needs are wrapped: authentication, adhoc
order creation, cancellation and order lookup. Every failure surfaces as a
``ShippingProviderError`` (or ``ShippingProviderTimeout``) whose message is
safe to show to a caller; the account credentials never appear in errors or
logs.
"""
from datetime import datetime, timedelta
from typing import Optional, List
import asyncio
import logging
import httpx

from nutrastore.shared.utils import settings, ShippingProviderError, ShippingProviderTimeout

logger = logging.getLogger(__name__)

TOKEN_TTL = timedelta(days=10)


class ShiprocketClient:
    def __init__(
        self,
        base_url: str = settings.SHIPROCKET_BASE_URL,
        email: str = settings.SHIPROCKET_EMAIL,
        password: str = settings.SHIPROCKET_PASSWORD,
        timeout: float = settings.SHIPROCKET_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._email = email
        self._password = password
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)
        self._token: Optional[str] = None
        self._token_expiry: Optional[datetime] = None
        self._token_lock = asyncio.Lock()

    async def aclose(self):
        await self._client.aclose()

    def _token_valid(self) -> bool:
        return bool(self._token and self._token_expiry and datetime.utcnow() < self._token_expiry)

    async def get_token(self) -> str:
        if self._token_valid():
            return self._token

        async with self._token_lock:
            if self._token_valid():
                return self._token
            try:
                response = await self._client.post(
                    "/auth/login",
                    json={"email": self._email, "password": self._password},
                )
                response.raise_for_status()
                token = response.json().get("token")
            except httpx.TimeoutException:
                raise ShippingProviderTimeout("Shipping provider timed out during authentication")
            except (httpx.HTTPError, ValueError):
                logger.error("Shipping provider authentication failed")
                raise ShippingProviderError("Shipping provider authentication failed")
            if not token:
                raise ShippingProviderError("Shipping provider authentication failed")

            self._token = token
            self._token_expiry = datetime.utcnow() + TOKEN_TTL
            return token

    def _invalidate_token(self):
        self._token = None
        self._token_expiry = None

    async def _request(self, method: str, path: str, json: Optional[dict] = None, retry_on_timeout: bool = False) -> dict:
        attempts = 2 if retry_on_timeout else 1
        reauthenticated = False
        while True:
            token = await self.get_token()
            try:
                response = await self._client.request(
                    method,
                    path,
                    json=json,
                    headers={"Authorization": f"Bearer {token}"},
                )
            except httpx.TimeoutException:
                attempts -= 1
                if attempts > 0:
                    logger.warning("Shipping provider timed out, retrying", extra={"target": path})
                    continue
                raise ShippingProviderTimeout()
            except httpx.RequestError:
                raise ShippingProviderError("Shipping provider unavailable")

            if response.status_code == 401 and not reauthenticated:
                # cached token revoked on the carrier side
                self._invalidate_token()
                reauthenticated = True
                continue

            if response.is_error:
                raise ShippingProviderError(
                    provider_message(response),
                    provider_status=response.status_code,
                )

            try:
                return response.json()
            except ValueError:
                raise ShippingProviderError("Shipping provider returned an invalid response")

    async def create_order(self, payload: dict) -> dict:
        """Create an adhoc order. Never retried: a retry could create a second shipment."""
        data = await self._request("POST", "/orders/create/adhoc", json=payload)
        if not data.get("order_id"):
            raise ShippingProviderError(
                data.get("message") or "Shipping provider did not return an order id",
                provider_status=data.get("status_code"),
            )
        return data

    async def cancel_orders(self, ids: List[int]) -> dict:
        return await self._request("POST", "/orders/cancel", json={"ids": ids}, retry_on_timeout=True)

    async def show_order(self, order_id) -> dict:
        return await self._request("GET", f"/orders/show/{order_id}")


def provider_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"Shipping provider error ({response.status_code})"
    message = body.get("message") if isinstance(body, dict) else None
    return message or f"Shipping provider error ({response.status_code})"
