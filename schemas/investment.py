from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Field names follow the brokerage JSON (camelCase) so payloads round-trip
# through the API unchanged.


class InstrumentType(str, Enum):
    STOCK = "Stock"
    BOND = "Bond"
    ETF = "Etf"
    CURRENCY = "Currency"


class OperationType(str, Enum):
    BUY = "Buy"
    BUY_CARD = "BuyCard"
    SELL = "Sell"
    DIVIDEND = "Dividend"
    TAX_DIVIDEND = "TaxDividend"
    PAY_IN = "PayIn"
    PAY_OUT = "PayOut"
    BROKER_COMMISSION = "BrokerCommission"
    COUPON = "Coupon"
    TAX = "Tax"


class OperationStatus(str, Enum):
    DONE = "Done"
    DECLINE = "Decline"
    PROGRESS = "Progress"


class MoneyAmount(BaseModel):
    currency: str
    value: float = 0.0


class Account(BaseModel):
    brokerAccountType: str = "Tinkoff"
    brokerAccountId: str


class Position(BaseModel):
    model_config = ConfigDict(frozen=True)

    figi: str
    ticker: Optional[str] = None
    isin: Optional[str] = None
    name: Optional[str] = None
    # Kept as plain str: the brokerage adds instrument kinds over time.
    instrumentType: str
    balance: float = 0.0
    blocked: Optional[float] = None
    lots: float = 0.0
    expectedYield: Optional[MoneyAmount] = None
    averagePositionPrice: Optional[MoneyAmount] = None
    averagePositionPriceNoNkd: Optional[MoneyAmount] = None


class CurrencyBalance(BaseModel):
    currency: str
    balance: float = 0.0
    blocked: Optional[float] = None


class Operation(BaseModel):
    id: Optional[str] = None
    status: str = OperationStatus.DONE.value
    operationType: Optional[str] = None
    payment: float = 0.0
    price: Optional[float] = None
    commission: Optional[MoneyAmount] = None
    quantity: Optional[float] = None
    quantityExecuted: Optional[float] = None
    currency: str
    figi: Optional[str] = None
    instrumentType: Optional[str] = None
    isMarginCall: bool = False
    date: datetime

    @field_validator("date")
    @classmethod
    def date_as_utc(cls, v: datetime) -> datetime:
        # naive and aware dates must stay comparable when histories are sorted
        return v.replace(tzinfo=timezone.utc) if v.tzinfo is None else v


class MarketInstrument(BaseModel):
    figi: str
    ticker: Optional[str] = None
    isin: Optional[str] = None
    name: Optional[str] = None
    type: str
    currency: Optional[str] = None
    lot: Optional[int] = None
    minPriceIncrement: Optional[float] = None


class CurrencyInfo(BaseModel):
    figi: Optional[str] = None
    currency: str
    lastPrice: Optional[float] = None


class PositionWithPrices(Position):
    brokerAccountId: str
    lastPrice: Optional[float] = None
    totalNet: float = 0.0
    buyCost: float = 0.0
    operationsTotal: float = 0.0
    instrumentQuantity: float = 0.0
    currency: Optional[str] = None
    # None when no purchase was ever recorded (percentage undefined).
    netPercent: Optional[float] = None


class Totals(BaseModel):
    totalPayIn: float
    netTotal: float
    percent: Optional[float] = None


class PositionDetails(BaseModel):
    figi: str
    positions: List[PositionWithPrices] = Field(default_factory=list)
    operations: List[Operation] = Field(default_factory=list)
