import math
from typing import Any, Dict, Iterable, List, Optional, TypeVar

import httpx

T = TypeVar("T")


def safe_div(n, d):
    try:
        return (n / d) if (n is not None and d not in (None, 0)) else None
    except ZeroDivisionError:
        return None


def finite_or_none(x: Optional[float]) -> Optional[float]:
    if x is None or math.isnan(x) or math.isinf(x):
        return None
    return x


def safe_json(resp: httpx.Response) -> Optional[Dict[str, Any]]:
    try:
        data = resp.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def unique(items: Iterable[T]) -> List[T]:
    """De-duplicate while keeping first-seen order."""
    seen = set()
    out: List[T] = []
    for it in items:
        if it in seen:
            continue
        seen.add(it)
        out.append(it)
    return out


def split_csv(raw: Optional[str]) -> List[str]:
    return [p.strip() for p in (raw or "").split(",") if p.strip()]
