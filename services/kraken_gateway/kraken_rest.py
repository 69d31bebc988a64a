"""Asynchronous Kraken spot REST client used by the gateway.

Public endpoints are queried with unsigned ``GET`` requests while private
endpoints are sent as signed ``POST`` requests carrying a fresh nonce.  Every
method returns the ``result`` member of Kraken's response envelope and raises
:class:`KrakenRESTError` when Kraken reports an error or the transport fails.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import hashlib
import hmac
import itertools
import json
import logging
import random
import time
import urllib.parse
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import aiohttp

logger = logging.getLogger(__name__)

KRAKEN_REST_URL = "https://api.kraken.com"
KRAKEN_API_VERSION = "0"

CredentialGetter = Callable[[], Awaitable[Dict[str, Any]]]

_RETRYABLE_PREFIXES = ("EAPI:Rate limit", "EService:Unavailable", "EService:Busy")


class KrakenRESTError(RuntimeError):
    """Raised when a Kraken REST request fails permanently."""

    def __init__(self, message: str, *, method: Optional[str] = None) -> None:
        super().__init__(message)
        self.method = method


def static_credentials(api_key: str, api_secret: str) -> CredentialGetter:
    """Return a credential getter that always yields the given key pair."""

    async def _getter() -> Dict[str, Any]:
        return {"api_key": api_key, "api_secret": api_secret}

    return _getter


class KrakenRESTClient:
    def __init__(
        self,
        *,
        credential_getter: Optional[CredentialGetter] = None,
        session: Optional[aiohttp.ClientSession] = None,
        base_url: str = KRAKEN_REST_URL,
        timeout: float = 10.0,
        max_retries: int = 1,
    ) -> None:
        self._credential_getter = credential_getter or static_credentials("", "")
        self._provided_session = session
        self._session = session
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max(1, int(max_retries))
        self._nonce_lock = asyncio.Lock()
        self._nonce_counter = itertools.count(int(time.time() * 1000))

    async def _session_or_create(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        if self._session and self._session is not self._provided_session:
            await self._session.close()
        self._session = None

    # public market data ----------------------------------------------
    async def time(self) -> Any:
        return await self._request("Time")

    async def system_status(self) -> Any:
        return await self._request("SystemStatus")

    async def assets(self, params: Optional[Mapping[str, Any]] = None) -> Any:
        return await self._request("Assets", params)

    async def asset_pairs(self, params: Optional[Mapping[str, Any]] = None) -> Any:
        return await self._request("AssetPairs", params)

    async def ticker(self, params: Mapping[str, Any]) -> Any:
        return await self._request("Ticker", params)

    async def ohlc(self, params: Mapping[str, Any]) -> Any:
        return await self._request("OHLC", params)

    async def depth(self, params: Mapping[str, Any]) -> Any:
        return await self._request("Depth", params)

    async def trades(self, params: Mapping[str, Any]) -> Any:
        return await self._request("Trades", params)

    async def spread(self, params: Mapping[str, Any]) -> Any:
        return await self._request("Spread", params)

    # private account and trading -------------------------------------
    async def balance(self) -> Any:
        """Return the latest balance snapshot for the authenticated account."""

        return await self._request("Balance", private=True)

    async def add_order(self, params: Mapping[str, Any]) -> Any:
        return await self._request("AddOrder", params, private=True)

    async def cancel_order(self, params: Mapping[str, Any]) -> Any:
        return await self._request("CancelOrder", params, private=True)

    async def cancel_all(self) -> Any:
        return await self._request("CancelAll", private=True)

    async def cancel_all_orders_after(self, params: Mapping[str, Any]) -> Any:
        """Arm (or with ``timeout=0`` disarm) Kraken's dead man's switch."""

        return await self._request("CancelAllOrdersAfter", params, private=True)

    async def _request(
        self,
        method: str,
        params: Optional[Mapping[str, Any]] = None,
        *,
        private: bool = False,
    ) -> Any:
        scope = "private" if private else "public"
        path = f"/{KRAKEN_API_VERSION}/{scope}/{method}"
        attempt = 0
        backoff = 0.5
        while True:
            attempt += 1
            try:
                if private:
                    payload = await self._post_private(path, params or {})
                else:
                    payload = await self._get_public(path, params or {})
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                if attempt >= self._max_retries:
                    raise KrakenRESTError(
                        f"REST request failed: {exc or type(exc).__name__}", method=method
                    ) from exc
                await self._sleep_backoff(backoff)
                backoff *= 2
                continue

            errors = payload.get("error") or []
            if errors:
                if attempt >= self._max_retries or not _is_retryable(errors):
                    raise KrakenRESTError(
                        ", ".join(str(error) for error in errors), method=method
                    )
                logger.warning(
                    "Retrying Kraken %s after transient error", method, extra={"errors": errors}
                )
                await self._sleep_backoff(backoff)
                backoff *= 2
                continue

            return payload.get("result")

    async def _get_public(self, path: str, params: Mapping[str, Any]) -> Dict[str, Any]:
        session = await self._session_or_create()
        url = f"{self._base_url}{path}"
        async with session.get(
            url,
            params=_encode_params(params),
            timeout=aiohttp.ClientTimeout(total=self._timeout),
        ) as resp:
            return await self._decode(resp)

    async def _post_private(self, path: str, params: Mapping[str, Any]) -> Dict[str, Any]:
        credentials = await self._credential_getter()
        api_key = credentials.get("api_key") or ""
        api_secret = credentials.get("api_secret") or ""
        if not api_key or not api_secret:
            raise KrakenRESTError("Kraken API credentials are required")

        session = await self._session_or_create()
        nonce = await self._next_nonce()
        body = {"nonce": nonce, **_encode_params(params)}
        encoded = urllib.parse.urlencode(body)

        headers = {
            "API-Key": api_key,
            "API-Sign": sign_request(path, nonce, encoded, api_secret),
            "Content-Type": "application/x-www-form-urlencoded; charset=utf-8",
        }
        url = f"{self._base_url}{path}"
        async with session.post(
            url,
            data=encoded,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self._timeout),
        ) as resp:
            return await self._decode(resp)

    async def _decode(self, resp: aiohttp.ClientResponse) -> Dict[str, Any]:
        text = await resp.text()
        if resp.status >= 500:
            raise KrakenRESTError(f"server error {resp.status}: {text}")
        try:
            payload = json.loads(text) if text else {}
        except ValueError as exc:
            raise KrakenRESTError(f"invalid JSON response (status {resp.status})") from exc
        if not isinstance(payload, dict):
            raise KrakenRESTError(f"unexpected response payload (status {resp.status})")
        return payload

    async def _next_nonce(self) -> str:
        async with self._nonce_lock:
            nonce_value = next(self._nonce_counter)
        return str(nonce_value)

    async def _sleep_backoff(self, backoff: float) -> None:
        delay = min(backoff * random.uniform(0.8, 1.2), 5.0)
        await asyncio.sleep(delay)


def sign_request(path: str, nonce: str, encoded: str, api_secret: str) -> str:
    """Compute the ``API-Sign`` header for a private request."""

    try:
        key = base64.b64decode(api_secret, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise KrakenRESTError("Kraken API secret is not valid base64") from exc
    message = path.encode() + hashlib.sha256((nonce + encoded).encode()).digest()
    mac = hmac.new(key, message, hashlib.sha512)
    return base64.b64encode(mac.digest()).decode()


def _encode_params(params: Mapping[str, Any]) -> Dict[str, str]:
    encoded: Dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            encoded[key] = "true" if value else "false"
        elif isinstance(value, float):
            encoded[key] = format(Decimal(repr(value)), "f")
        elif isinstance(value, Decimal):
            encoded[key] = format(value, "f")
        elif isinstance(value, (list, tuple)):
            encoded[key] = ",".join(str(item) for item in value)
        else:
            encoded[key] = str(value)
    return encoded


def _is_retryable(errors: list[Any]) -> bool:
    for error in errors:
        for prefix in _RETRYABLE_PREFIXES:
            if str(error).startswith(prefix):
                return True
    return False


__all__ = [
    "CredentialGetter",
    "KRAKEN_REST_URL",
    "KrakenRESTClient",
    "KrakenRESTError",
    "sign_request",
    "static_credentials",
]
