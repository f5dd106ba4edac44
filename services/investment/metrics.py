# services/investment/metrics.py
"""
Position and portfolio metrics derived from operation history.

Sign convention follows the brokerage: money leaving the account is negative
(a Buy has a negative payment, a Sell a positive one), commissions are
negative too, so `payment + commission` is the full cash effect.
"""
from __future__ import annotations

from math import fsum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from schemas.investment import (
    CurrencyInfo,
    InstrumentType,
    Operation,
    OperationType,
    Position,
    PositionWithPrices,
    Totals,
)
from services.investment.position_map import AccountSlots, PositionMap
from services.investment.snapshots import is_countable
from utils.common_helpers import finite_or_none, safe_div

TRADE_TYPES = {
    OperationType.BUY.value,
    OperationType.SELL.value,
    OperationType.DIVIDEND.value,
    OperationType.TAX_DIVIDEND.value,
}
COST_TYPES = {OperationType.BUY.value, OperationType.TAX_DIVIDEND.value}
CASH_FLOW_TYPES = {OperationType.PAY_IN.value, OperationType.PAY_OUT.value}

OperationsByAccount = Mapping[str, Sequence[Operation]]


def full_payment(op: Operation) -> float:
    commission = op.commission.value if op.commission else 0.0
    return op.payment + (commission or 0.0)


def operations_for(figi: str, ops: Iterable[Operation]) -> List[Operation]:
    return [op for op in ops if op.figi == figi and is_countable(op)]


def instrument_quantity(position: Position, ops: Sequence[Operation]) -> float:
    """
    Held quantity. Currencies have no usable balance on the position, so
    their quantity is replayed from trades: a currency balance that never
    went through a Buy/Sell counts as 0 here.
    """
    if position.instrumentType != InstrumentType.CURRENCY.value:
        return position.balance
    count = 0.0
    for op in ops:
        if op.operationType == OperationType.BUY.value:
            count += op.quantity or 0.0
        elif op.operationType == OperationType.SELL.value:
            count -= op.quantity or 0.0
    return count


def operations_cost(ops: Sequence[Operation]) -> Tuple[float, float]:
    """(operationsTotal, buyCost) over trades and dividends."""
    operations_total = 0.0
    buy_cost = 0.0
    for op in ops:
        if op.operationType not in TRADE_TYPES:
            continue
        amount = full_payment(op)
        operations_total += amount
        if op.operationType in COST_TYPES:
            buy_cost += amount
    return operations_total, buy_cost


def buy_baseline_cost(ops: Iterable[Operation]) -> float:
    """
    Cost of the lot stack, replayed in date order with a high-water mark.

    A Buy is added to the baseline only while the running quantity exceeds
    everything bought so far, so buying back what was sold earlier does not
    count twice. Sells only lower the running quantity and never reduce the
    baseline. This is not FIFO lot matching.
    """
    count = 0.0
    bought_quantity = 0.0
    total = 0.0
    for op in sorted(ops, key=lambda o: o.date):
        quantity = op.quantity or 0.0
        if op.operationType == OperationType.BUY.value:
            count += quantity
            if count > bought_quantity:
                total += full_payment(op)
                bought_quantity += quantity
        elif op.operationType == OperationType.SELL.value:
            count -= quantity
    return total


def net_percent(total_net: float, baseline: float) -> Optional[float]:
    ratio = safe_div(total_net, baseline)
    if ratio is None:
        return None
    return finite_or_none(abs(100.0 * ratio))


def compute_position_metrics(
    slots: AccountSlots,
    operations: OperationsByAccount,
    last_price: Optional[float],
) -> List[PositionWithPrices]:
    """Priced rows of one instrument, one per account slot, in slot order."""
    if not slots:
        return []
    figi = next(iter(slots.values())).figi
    baseline = buy_baseline_cost(
        op for account_ops in operations.values() for op in operations_for(figi, account_ops)
    )
    price = last_price or 0.0

    rows = []
    for account_id, position in slots.items():
        ops = operations_for(position.figi, operations.get(account_id, ()))
        operations_total, buy_cost = operations_cost(ops)
        quantity = instrument_quantity(position, ops)
        rows.append(
            (
                account_id,
                position,
                {
                    "lastPrice": last_price,
                    "totalNet": operations_total + price * quantity,
                    "buyCost": buy_cost,
                    "operationsTotal": operations_total,
                    "instrumentQuantity": quantity,
                    "currency": position.averagePositionPrice.currency if position.averagePositionPrice else None,
                },
            )
        )

    percent = net_percent(fsum(r[2]["totalNet"] for r in rows), baseline)
    return [
        PositionWithPrices(
            **position.model_dump(),
            brokerAccountId=account_id,
            netPercent=percent,
            **metrics,
        )
        for account_id, position, metrics in rows
    ]


def currency_rate(currencies_info: Sequence[CurrencyInfo], currency: Optional[str]) -> float:
    """Price of one unit of `currency` in the base currency (1 when unknown)."""
    info = next((i for i in currencies_info if i.currency == currency), None)
    if info is None or info.lastPrice is None:
        return 1.0
    return info.lastPrice


def portfolio_net(
    position_map: PositionMap,
    prices: Mapping[str, float],
    currencies_info: Sequence[CurrencyInfo],
) -> float:
    terms = []
    for figi, slots in position_map.items():
        price = prices.get(figi, 0.0)
        for position in slots.values():
            currency = position.averagePositionPrice.currency if position.averagePositionPrice else None
            terms.append(position.balance * price * currency_rate(currencies_info, currency))
    return fsum(terms)


def total_pay_in(operations: OperationsByAccount) -> float:
    return fsum(
        op.payment
        for ops in operations.values()
        for op in ops
        if is_countable(op) and op.operationType in CASH_FLOW_TYPES
    )


def compute_totals(
    position_map: PositionMap,
    operations: OperationsByAccount,
    prices: Mapping[str, float],
    currencies_info: Sequence[CurrencyInfo],
) -> Totals:
    instruments_net = portfolio_net(position_map, prices, currencies_info)
    pay_in = total_pay_in(operations)
    net_total = instruments_net - pay_in
    ratio = safe_div(net_total, pay_in)
    return Totals(
        totalPayIn=pay_in,
        netTotal=net_total,
        percent=finite_or_none(ratio * 100.0) if ratio is not None else None,
    )


def price_position_map(
    position_map: PositionMap,
    operations: OperationsByAccount,
    prices: Mapping[str, float],
) -> Dict[str, List[PositionWithPrices]]:
    return {
        figi: compute_position_metrics(slots, operations, prices.get(figi))
        for figi, slots in position_map.items()
    }
