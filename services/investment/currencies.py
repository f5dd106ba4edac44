# services/investment/currencies.py
from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

from utils.common_helpers import unique

# Exchange instruments the brokerage trades currencies through (TOM settlement).
# The base currency has no instrument: its price is 1 by definition.
CURRENCY_FIGIS = {
    "USD": "BBG0013HGFT4",
    "EUR": "BBG0013HJJ31",
}


def figi_for_currency(currency: Optional[str]) -> Optional[str]:
    return CURRENCY_FIGIS.get((currency or "").upper())


def currency_figis(currencies: Iterable[Optional[str]]) -> List[Tuple[str, str]]:
    """(currency, figi) pairs for the distinct currencies that have an instrument."""
    out: List[Tuple[str, str]] = []
    for currency in unique(c for c in currencies if c):
        figi = figi_for_currency(currency)
        if figi:
            out.append((currency, figi))
    return out
