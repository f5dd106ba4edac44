# services/investment/investment_service.py
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from config.settings import Settings, get_settings
from schemas.investment import (
    Account,
    CurrencyInfo,
    MarketInstrument,
    Operation,
    PositionDetails,
    PositionWithPrices,
    Totals,
)
from services.cache.result_cache import ResultCache
from services.investment import prices
from services.investment.historic import reconstruct_historic
from services.investment.metrics import compute_totals, operations_for, price_position_map
from services.investment.position_map import PositionMap, build_position_map
from services.investment.snapshots import fetch_account_snapshots, operations_by_account
from services.tinkoff.client import TinkoffClient
from utils.common_helpers import unique

logger = logging.getLogger(__name__)

PricedPositionMap = Dict[str, List[PositionWithPrices]]


class PositionNotFoundError(LookupError):
    """The instrument is neither held nor present in the operation history."""


class InvestmentService:
    """
    Aggregation entry point for one brokerage credential.

    Cheap to construct: build one per request around the process-wide cache.
    Every `account_ids=None` argument means "all accounts of the credential";
    results keep the order of the account ids.
    """

    def __init__(
        self,
        client: TinkoffClient,
        cache: ResultCache,
        settings: Optional[Settings] = None,
    ):
        self.client = client
        self.cache = cache
        self.settings = settings or get_settings()

    # -----------------------
    # Accounts
    # -----------------------

    async def get_accounts(self) -> List[Account]:
        return await self.cache.get_or_compute(
            self.client.key_for("accounts"),
            self.client.accounts,
            self.settings.cache_default_ttl_sec,
        )

    async def get_account_ids(self) -> List[str]:
        accounts = await self.get_accounts()
        return [a.brokerAccountId for a in accounts]

    async def _account_ids(self, account_ids: Optional[Sequence[str]]) -> List[str]:
        if account_ids:
            return unique(account_ids)
        return await self.get_account_ids()

    # -----------------------
    # Building blocks
    # -----------------------

    async def get_positions_with_operations(
        self, account_ids: Sequence[str]
    ) -> Tuple[PositionMap, Dict[str, List[Operation]]]:
        snapshots = await fetch_account_snapshots(
            self.client,
            self.cache,
            account_ids,
            operations_from=self.settings.operations_from,
            ttl_seconds=self.settings.cache_default_ttl_sec,
        )
        position_map = build_position_map(snapshots, self.settings.base_currency)
        return position_map, operations_by_account(snapshots)

    async def get_currencies_info(self, currencies: Iterable[Optional[str]]) -> List[CurrencyInfo]:
        return await prices.get_currencies_info(
            self.client, self.cache, currencies, self.settings.last_price_ttl_sec
        )

    async def _lookup_instrument(self, figi: str) -> Optional[MarketInstrument]:
        # instrument metadata does not move like prices do
        return await self.cache.get_or_compute(
            self.client.key_for("instrument", figi),
            lambda: self.client.search_by_figi(figi),
            self.settings.cache_default_ttl_sec,
        )

    async def _price(
        self,
        position_map: PositionMap,
        operations: Dict[str, List[Operation]],
        currencies_info: List[CurrencyInfo],
    ) -> PricedPositionMap:
        last_prices = await prices.resolve_last_prices(
            self.client, self.cache, position_map, currencies_info, self.settings.last_price_ttl_sec
        )
        return price_position_map(position_map, operations, last_prices)

    @staticmethod
    def _currencies_of(operations: Dict[str, List[Operation]]) -> List[str]:
        return unique(op.currency for ops in operations.values() for op in ops)

    # -----------------------
    # Queries
    # -----------------------

    async def get_current_positions(self, account_ids: Optional[Sequence[str]] = None) -> PricedPositionMap:
        ids = await self._account_ids(account_ids)
        position_map, operations = await self.get_positions_with_operations(ids)
        currencies_info = await self.get_currencies_info(self._currencies_of(operations))
        result = await self._price(position_map, operations, currencies_info)
        logger.info("current positions built instruments=%d accounts=%d", len(result), len(ids))
        return result

    async def get_historic_positions(self, account_ids: Optional[Sequence[str]] = None) -> PricedPositionMap:
        ids = await self._account_ids(account_ids)
        position_map, operations = await self.get_positions_with_operations(ids)
        record_map, historic = await reconstruct_historic(position_map, operations, self._lookup_instrument)
        currencies_info = await self.get_currencies_info(self._currencies_of(historic))
        result = await self._price(record_map, historic, currencies_info)
        logger.info("historic positions built instruments=%d accounts=%d", len(result), len(ids))
        return result

    async def get_total(self, account_ids: Optional[Sequence[str]] = None) -> Totals:
        ids = await self._account_ids(account_ids)
        position_map, operations = await self.get_positions_with_operations(ids)
        currencies_info = await self.get_currencies_info(self._currencies_of(operations))
        last_prices = await prices.resolve_last_prices(
            self.client, self.cache, position_map, currencies_info, self.settings.last_price_ttl_sec
        )
        return compute_totals(position_map, operations, last_prices, currencies_info)

    async def get_position_details(
        self, figi: str, account_ids: Optional[Sequence[str]] = None
    ) -> PositionDetails:
        """Priced rows of one instrument, held now or only in the past, with its trades."""
        ids = await self._account_ids(account_ids)
        position_map, operations = await self.get_positions_with_operations(ids)

        if figi in position_map:
            subset = {figi: position_map[figi]}
            subset_operations = operations
        else:
            only_figi = {a: [op for op in ops if op.figi == figi] for a, ops in operations.items()}
            subset, subset_operations = await reconstruct_historic(
                position_map, only_figi, self._lookup_instrument
            )
            if figi not in subset:
                raise PositionNotFoundError(figi)

        currencies_info = await self.get_currencies_info(self._currencies_of(subset_operations))
        priced = await self._price(subset, subset_operations, currencies_info)
        history = sorted(
            (op for ops in operations.values() for op in operations_for(figi, ops)),
            key=lambda o: o.date,
        )
        return PositionDetails(figi=figi, positions=priced[figi], operations=history)
