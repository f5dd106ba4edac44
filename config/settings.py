"""
Runtime settings for the investment aggregation service.

Every value can be overridden from the environment (or a .env file).
Defaults are chosen so the service runs against the public Tinkoff OpenAPI
without any extra configuration.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Tuple

from dotenv import load_dotenv

load_dotenv()

DEFAULT_PROD_API_URL = "https://api-invest.tinkoff.ru/openapi"
DEFAULT_SANDBOX_API_URL = "https://api-invest.tinkoff.ru/openapi/sandbox"
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_datetime(name: str, default: datetime) -> datetime:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    return tuple(p.strip() for p in raw.split(",") if p.strip())


@dataclass(frozen=True)
class Settings:
    # Upstream REST roots for the real and the sandbox brokerage environment.
    prod_api_url: str = DEFAULT_PROD_API_URL
    sandbox_api_url: str = DEFAULT_SANDBOX_API_URL
    # Per-request timeout for upstream calls, seconds.
    http_timeout_sec: float = 10.0
    # TTL for accounts and per-account snapshots.
    cache_default_ttl_sec: float = 60.0
    # Prices move, so last prices and currency rates live much shorter.
    last_price_ttl_sec: float = 3.0
    # Start of the operation history requested for every account.
    operations_from: datetime = EPOCH
    # Currency every price and balance is ultimately expressed in.
    base_currency: str = "RUB"
    cors_origins: Tuple[str, ...] = ("http://localhost:3000",)
    rate_limit_default: str = "60/minute"

    def api_url(self, sandbox: bool) -> str:
        return self.sandbox_api_url if sandbox else self.prod_api_url

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            prod_api_url=os.getenv("TINKOFF_API_URL", DEFAULT_PROD_API_URL).rstrip("/"),
            sandbox_api_url=os.getenv("TINKOFF_SANDBOX_API_URL", DEFAULT_SANDBOX_API_URL).rstrip("/"),
            http_timeout_sec=_env_float("TINKOFF_HTTP_TIMEOUT_SEC", 10.0),
            cache_default_ttl_sec=_env_float("CACHE_DEFAULT_TTL_SEC", 60.0),
            last_price_ttl_sec=_env_float("LAST_PRICE_TTL_SEC", 3.0),
            operations_from=_env_datetime("OPERATIONS_FROM", EPOCH),
            base_currency=(os.getenv("BASE_CURRENCY") or "RUB").strip().upper(),
            cors_origins=_env_list("CORS_ORIGINS", ("http://localhost:3000",)),
            rate_limit_default=os.getenv("RATE_LIMIT_DEFAULT", "60/minute"),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
