# services/investment/snapshots.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from schemas.investment import (
    CurrencyBalance,
    Operation,
    OperationStatus,
    OperationType,
    Position,
)
from services.cache.result_cache import ResultCache
from services.tinkoff.client import AccountScope, TinkoffClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountSnapshot:
    """Everything one account contributes to an aggregation query."""

    account_id: str
    positions: List[Position] = field(default_factory=list)
    operations: List[Operation] = field(default_factory=list)
    currencies: List[CurrencyBalance] = field(default_factory=list)


def is_countable(op: Operation) -> bool:
    """Declined operations and broker commissions never enter any metric."""
    return (
        op.status != OperationStatus.DECLINE.value
        and op.operationType != OperationType.BROKER_COMMISSION.value
    )


def countable_operations(ops: Iterable[Operation]) -> List[Operation]:
    return [op for op in ops if is_countable(op)]


async def fetch_operations(
    scope: AccountScope,
    from_: datetime,
    to: Optional[datetime] = None,
) -> List[Operation]:
    ops = await scope.operations(from_, to or datetime.now(timezone.utc))
    return countable_operations(ops)


async def fetch_account_snapshot(
    client: TinkoffClient,
    cache: ResultCache,
    account_id: str,
    *,
    operations_from: datetime,
    ttl_seconds: Optional[float] = None,
) -> AccountSnapshot:
    scope = client.for_account(account_id)

    async def _load() -> AccountSnapshot:
        positions, operations, currencies = await asyncio.gather(
            scope.portfolio(),
            fetch_operations(scope, operations_from),
            scope.portfolio_currencies(),
        )
        logger.info(
            "account snapshot loaded positions=%d operations=%d currencies=%d",
            len(positions), len(operations), len(currencies),
        )
        return AccountSnapshot(
            account_id=account_id,
            positions=positions,
            operations=operations,
            currencies=currencies,
        )

    return await cache.get_or_compute(
        client.key_for("positionsAndOperations", account_id),
        _load,
        ttl_seconds,
    )


async def fetch_account_snapshots(
    client: TinkoffClient,
    cache: ResultCache,
    account_ids: Sequence[str],
    *,
    operations_from: datetime,
    ttl_seconds: Optional[float] = None,
) -> List[AccountSnapshot]:
    """Snapshots in the order of account_ids; accounts are fetched concurrently."""
    results = await asyncio.gather(
        *[
            fetch_account_snapshot(
                client, cache, account_id,
                operations_from=operations_from,
                ttl_seconds=ttl_seconds,
            )
            for account_id in account_ids
        ]
    )
    return list(results)


def operations_by_account(snapshots: Sequence[AccountSnapshot]) -> Dict[str, List[Operation]]:
    return {s.account_id: list(s.operations) for s in snapshots}
