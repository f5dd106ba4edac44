# services/investment/prices.py
from __future__ import annotations

import asyncio
from typing import Dict, Iterable, List, Optional, Sequence

from schemas.investment import CurrencyInfo, InstrumentType, Position
from services.cache.result_cache import ResultCache
from services.investment.currencies import currency_figis
from services.investment.position_map import PositionMap, first_slot
from services.tinkoff.client import TinkoffClient

TTL_LAST_PRICE_SEC = 3.0


async def fetch_last_price(
    client: TinkoffClient,
    cache: ResultCache,
    figi: str,
    ttl_seconds: float = TTL_LAST_PRICE_SEC,
) -> float:
    async def _load() -> float:
        price = await client.last_price(figi)
        return price if price is not None else 0.0

    return await cache.get_or_compute(client.key_for("lastPrice", figi), _load, ttl_seconds)


async def resolve_last_price(
    client: TinkoffClient,
    cache: ResultCache,
    position: Position,
    currencies_info: Sequence[CurrencyInfo],
    ttl_seconds: float = TTL_LAST_PRICE_SEC,
) -> float:
    if position.instrumentType == InstrumentType.CURRENCY.value:
        info = next((i for i in currencies_info if i.figi == position.figi), None)
        # base currency: no conversion needed
        if info is None or info.lastPrice is None:
            return 1.0
        return info.lastPrice
    return await fetch_last_price(client, cache, position.figi, ttl_seconds)


async def resolve_last_prices(
    client: TinkoffClient,
    cache: ResultCache,
    position_map: PositionMap,
    currencies_info: Sequence[CurrencyInfo],
    ttl_seconds: float = TTL_LAST_PRICE_SEC,
) -> Dict[str, float]:
    """Last price per figi of the map; all lookups run concurrently."""
    figis = list(position_map)
    prices = await asyncio.gather(
        *[
            resolve_last_price(client, cache, first_slot(position_map[figi]), currencies_info, ttl_seconds)
            for figi in figis
        ]
    )
    return dict(zip(figis, prices))


async def get_currencies_info(
    client: TinkoffClient,
    cache: ResultCache,
    currencies: Iterable[Optional[str]],
    ttl_seconds: float = TTL_LAST_PRICE_SEC,
) -> List[CurrencyInfo]:
    pairs = currency_figis(currencies)
    if not pairs:
        return []

    async def _one(currency: str, figi: str) -> CurrencyInfo:
        async def _load() -> CurrencyInfo:
            return CurrencyInfo(figi=figi, currency=currency, lastPrice=await client.last_price(figi))

        return await cache.get_or_compute(client.key_for("currency", figi), _load, ttl_seconds)

    return list(await asyncio.gather(*[_one(c, f) for c, f in pairs]))
