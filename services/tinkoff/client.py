# services/tinkoff/client.py
from __future__ import annotations

import hashlib
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, List, Optional

import httpx

from config.settings import DEFAULT_PROD_API_URL, Settings
from schemas.investment import (
    Account,
    CurrencyBalance,
    MarketInstrument,
    Operation,
    Position,
)
from utils.common_helpers import safe_json

logger = logging.getLogger(__name__)


class TinkoffApiError(Exception):
    """Any failed call to the brokerage: transport, HTTP status or error envelope."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, path: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.path = path


class MissingCredentialError(Exception):
    """No brokerage token was supplied."""


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


class TinkoffClient:
    """
    Async client for the Tinkoff Invest OpenAPI (REST v1).

    Account-bound reads go through `for_account(...)`, which returns a handle
    that sends brokerAccountId with every request; the client itself keeps no
    "current account", so handles for different accounts can be used at the
    same time.
    """

    def __init__(
        self,
        token: str,
        *,
        base_url: str = DEFAULT_PROD_API_URL,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        token = (token or "").strip()
        if not token:
            raise MissingCredentialError("Missing brokerage token")
        self._token = token
        self.hashed_token = hash_token(token)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._shared_client = client

    def key_for(self, kind: str, *parts: str) -> str:
        """Cache key scoped to this credential; never contains the token itself."""
        clean = [p for p in parts if p]
        return ":".join([self.hashed_token, kind, *clean])

    @asynccontextmanager
    async def _client(self):
        if self._shared_client is not None:
            yield self._shared_client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as c:
            yield c

    async def _get(self, path: str, **params: Any) -> Any:
        query = {k: v for k, v in params.items() if v is not None}
        async with self._client() as c:
            try:
                r = await c.get(
                    f"{self.base_url}{path}",
                    params=query,
                    headers={"Authorization": f"Bearer {self._token}"},
                )
            except httpx.HTTPError as e:
                logger.warning("tinkoff request failed path=%s error=%s", path, type(e).__name__)
                raise TinkoffApiError(f"Brokerage request failed: {type(e).__name__}", path=path) from e

        data = safe_json(r) or {}
        if r.status_code >= 400 or data.get("status") not in (None, "Ok"):
            err = data.get("payload")
            message = err.get("message") if isinstance(err, dict) else None
            logger.warning("tinkoff error response path=%s status=%s", path, r.status_code)
            raise TinkoffApiError(
                message or f"Brokerage call failed: {r.status_code}",
                status_code=r.status_code,
                path=path,
            )
        return data.get("payload")

    # -----------------------
    # Credential-wide calls
    # -----------------------

    async def accounts(self) -> List[Account]:
        payload = await self._get("/user/accounts") or {}
        return [Account.model_validate(a) for a in payload.get("accounts", [])]

    async def last_price(self, figi: str) -> Optional[float]:
        payload = await self._get("/market/orderbook", figi=figi, depth=1) or {}
        price = payload.get("lastPrice")
        return float(price) if price is not None else None

    async def search_by_figi(self, figi: str) -> Optional[MarketInstrument]:
        payload = await self._get("/market/search/by-figi", figi=figi)
        if not isinstance(payload, dict) or not payload.get("figi"):
            return None
        return MarketInstrument.model_validate(payload)

    def for_account(self, account_id: str) -> "AccountScope":
        return AccountScope(self, account_id)


class AccountScope:
    """Reads bound to one brokerage account."""

    def __init__(self, client: TinkoffClient, account_id: str):
        self.client = client
        self.account_id = account_id

    async def portfolio(self) -> List[Position]:
        payload = await self.client._get("/portfolio", brokerAccountId=self.account_id) or {}
        return [Position.model_validate(p) for p in payload.get("positions", [])]

    async def portfolio_currencies(self) -> List[CurrencyBalance]:
        payload = await self.client._get("/portfolio/currencies", brokerAccountId=self.account_id) or {}
        return [CurrencyBalance.model_validate(c) for c in payload.get("currencies", [])]

    async def operations(self, from_: datetime, to: datetime) -> List[Operation]:
        payload = await self.client._get(
            "/operations",
            brokerAccountId=self.account_id,
            **{"from": _iso(from_), "to": _iso(to)},
        ) or {}
        return [Operation.model_validate(o) for o in payload.get("operations", [])]


def build_client(token: str, *, sandbox: bool, settings: Settings) -> TinkoffClient:
    return TinkoffClient(
        token,
        base_url=settings.api_url(sandbox),
        timeout=settings.http_timeout_sec,
    )
