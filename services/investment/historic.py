# services/investment/historic.py
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from schemas.investment import MarketInstrument, Operation
from services.investment.position_map import PositionMap, instrument_to_empty_position

logger = logging.getLogger(__name__)

InstrumentLookup = Callable[[str], Awaitable[Optional[MarketInstrument]]]


def historic_operations(
    position_map: PositionMap,
    operations: Mapping[str, Sequence[Operation]],
) -> Dict[str, List[Operation]]:
    """Per account, the operations on instruments no account holds anymore."""
    return {
        account_id: [op for op in ops if op.figi and op.figi not in position_map]
        for account_id, ops in operations.items()
    }


async def reconstruct_historic(
    position_map: PositionMap,
    operations: Mapping[str, Sequence[Operation]],
    lookup_instrument: InstrumentLookup,
) -> Tuple[PositionMap, Dict[str, List[Operation]]]:
    """
    Zero-balance slots for every instrument that only survives in the
    operation history, plus the historic operation subset to price them
    against. Figis the brokerage no longer knows are skipped.
    """
    historic = historic_operations(position_map, operations)
    account_ids = list(operations)

    # last seen currency per figi, in first-seen figi order
    currencies: Dict[str, str] = {}
    for ops in historic.values():
        for op in ops:
            currencies[op.figi] = op.currency

    figis = list(currencies)
    instruments = await asyncio.gather(*[lookup_instrument(figi) for figi in figis])

    record_map: PositionMap = {}
    for figi, instrument in zip(figis, instruments):
        if instrument is None:
            logger.info("historic instrument not found figi=%s", figi)
            continue
        empty = instrument_to_empty_position(instrument, currencies[figi])
        record_map[figi] = {account_id: empty for account_id in account_ids}
    return record_map, historic
