# services/investment/position_map.py
"""
Instrument-indexed view over several brokerage accounts.

A PositionMap maps figi -> AccountSlots, and AccountSlots maps account id ->
Position. Once build_position_map returns, every AccountSlots holds exactly
one entry per processed account, in query order; accounts that do not hold
the instrument get a zero-balance placeholder.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from schemas.investment import (
    CurrencyBalance,
    InstrumentType,
    MarketInstrument,
    MoneyAmount,
    Position,
)
from services.investment.currencies import figi_for_currency
from services.investment.snapshots import AccountSnapshot

logger = logging.getLogger(__name__)

AccountSlots = Dict[str, Position]
PositionMap = Dict[str, AccountSlots]

BASE_CURRENCY = "RUB"


def first_slot(slots: AccountSlots) -> Position:
    return next(iter(slots.values()))


def currency_balance_to_position(
    balance: CurrencyBalance,
    figi: Optional[str],
    currency_position: Optional[Position],
    base_currency: str = BASE_CURRENCY,
) -> Position:
    """
    Currency balances carry no instrument data, so the matching portfolio
    position (if the account has one) lends its descriptive fields. Without
    one, a unit is priced at 1 base-currency unit while there is money on the
    account and at 0 otherwise.
    """
    fallback_price = MoneyAmount(
        value=1.0 if balance.balance > 0 else 0.0,
        currency=base_currency,
    )
    update = {
        "instrumentType": InstrumentType.CURRENCY.value,
        "figi": figi or balance.currency,
        "balance": balance.balance,
        "lots": balance.balance,
    }
    if currency_position is None:
        return Position(name=balance.currency, averagePositionPrice=fallback_price, **update)

    update["name"] = currency_position.name if currency_position.name is not None else balance.currency
    update["averagePositionPrice"] = currency_position.averagePositionPrice or fallback_price
    return currency_position.model_copy(update=update)


def instrument_to_empty_position(instrument: MarketInstrument, currency: Optional[str]) -> Position:
    return Position(
        figi=instrument.figi,
        ticker=instrument.ticker,
        isin=instrument.isin,
        name=instrument.name,
        instrumentType=instrument.type,
        balance=0.0,
        lots=0.0,
        averagePositionPrice=MoneyAmount(
            currency=currency or instrument.currency or BASE_CURRENCY,
            value=0.0,
        ),
    )


def placeholder_position(template: Position, figi: str) -> Position:
    avg = template.averagePositionPrice
    return Position(
        figi=figi,
        ticker=template.ticker,
        isin=template.isin,
        name=template.name,
        instrumentType=template.instrumentType,
        balance=0.0,
        lots=0.0,
        averagePositionPrice=avg.model_copy(update={"value": 0.0}) if avg else None,
    )


def add_account_positions(
    position_map: PositionMap,
    snapshot: AccountSnapshot,
    base_currency: str = BASE_CURRENCY,
) -> PositionMap:
    account_id = snapshot.account_id

    for position in snapshot.positions:
        # currency positions come back below, built from the balances
        if position.instrumentType == InstrumentType.CURRENCY.value:
            continue
        position_map.setdefault(position.figi, {})[account_id] = position

    for balance in snapshot.currencies:
        figi = figi_for_currency(balance.currency)
        currency_position = None
        if figi:
            currency_position = next((p for p in snapshot.positions if p.figi == figi), None)
        key = figi or balance.currency
        position_map.setdefault(key, {})[account_id] = currency_balance_to_position(
            balance, figi, currency_position, base_currency
        )
    return position_map


def fill_missing_slots(position_map: PositionMap, account_ids: Sequence[str]) -> PositionMap:
    result: PositionMap = {}
    for figi, slots in position_map.items():
        template = next(slots[a] for a in account_ids if a in slots)
        result[figi] = {
            a: slots[a] if a in slots else placeholder_position(template, figi)
            for a in account_ids
        }
    return result


def build_position_map(
    snapshots: Sequence[AccountSnapshot],
    base_currency: str = BASE_CURRENCY,
) -> PositionMap:
    account_ids: List[str] = [s.account_id for s in snapshots]
    if len(set(account_ids)) != len(account_ids):
        raise ValueError("Duplicate account ids in snapshots")

    position_map: PositionMap = {}
    for snapshot in snapshots:
        add_account_positions(position_map, snapshot, base_currency)

    logger.debug("position map built instruments=%d accounts=%d", len(position_map), len(account_ids))
    return fill_missing_slots(position_map, account_ids)
