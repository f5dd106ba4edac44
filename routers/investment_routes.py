# routers/investment_routes.py
from __future__ import annotations

import logging
from typing import Annotated, Awaitable, Dict, List, Optional, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request

from config.settings import Settings, get_settings
from schemas.investment import (
    Account,
    CurrencyInfo,
    PositionDetails,
    PositionWithPrices,
    Totals,
)
from services.auth import get_bearer_token
from services.cache.result_cache import ResultCache, get_result_cache
from services.investment.investment_service import InvestmentService, PositionNotFoundError
from services.tinkoff.client import MissingCredentialError, TinkoffApiError, build_client
from utils.common_helpers import split_csv

logger = logging.getLogger(__name__)

T = TypeVar("T")

ID_PATTERN = r"^[A-Za-z0-9]+$"

AccountIdPath = Annotated[str, Path(pattern=ID_PATTERN, max_length=64)]
FigiPath = Annotated[str, Path(pattern=ID_PATTERN, max_length=32)]


async def _run(request: Request, call: Awaitable[T]) -> T:
    """Await a service call and map failures to HTTP errors; no partial results."""
    path = request.scope.get("path", "")
    try:
        return await call
    except HTTPException:
        raise
    except TinkoffApiError as e:
        logger.warning("%s: brokerage call failed status=%s", path, e.status_code)
        raise HTTPException(status_code=502, detail="Brokerage API call failed")
    except PositionNotFoundError:
        raise HTTPException(status_code=404, detail="Position not found")
    except Exception as e:
        logger.exception("%s: %s", path, e)
        raise HTTPException(status_code=500, detail="Unexpected error")


def _account_filter(broker_account_id: Optional[str]) -> Optional[List[str]]:
    return [broker_account_id] if broker_account_id else None


def create_router(sandbox: bool) -> APIRouter:
    """Routes bound to one brokerage environment (real or sandbox)."""
    router = APIRouter()

    def get_investment_service(
        token: str = Depends(get_bearer_token),
        cache: ResultCache = Depends(get_result_cache),
        settings: Settings = Depends(get_settings),
    ) -> InvestmentService:
        try:
            client = build_client(token, sandbox=sandbox, settings=settings)
        except MissingCredentialError:
            raise HTTPException(status_code=401, detail="No auth token")
        return InvestmentService(client, cache, settings)

    @router.get("/accounts", response_model=List[Account])
    async def accounts(request: Request, service: InvestmentService = Depends(get_investment_service)):
        return await _run(request, service.get_accounts())

    @router.get("/currencyInfo", response_model=List[CurrencyInfo])
    async def currency_info(
        request: Request,
        currencies: str = Query("", alias="list", description="Comma separated, e.g. USD,EUR"),
        service: InvestmentService = Depends(get_investment_service),
    ):
        return await _run(request, service.get_currencies_info(split_csv(currencies.upper())))

    # -----------------------
    # Current positions
    # -----------------------

    @router.get("/portfolio", response_model=Dict[str, List[PositionWithPrices]])
    async def portfolio(request: Request, service: InvestmentService = Depends(get_investment_service)):
        return await _run(request, service.get_current_positions())

    @router.get("/portfolio/{brokerAccountId}", response_model=Dict[str, List[PositionWithPrices]])
    async def portfolio_for_account(
        request: Request,
        brokerAccountId: AccountIdPath,
        service: InvestmentService = Depends(get_investment_service),
    ):
        return await _run(request, service.get_current_positions(_account_filter(brokerAccountId)))

    # -----------------------
    # Position details
    # -----------------------

    @router.get("/positionTotalDetails/{figi}", response_model=PositionDetails)
    async def position_details(
        request: Request,
        figi: FigiPath,
        service: InvestmentService = Depends(get_investment_service),
    ):
        return await _run(request, service.get_position_details(figi))

    @router.get("/positionTotalDetails/{brokerAccountId}/{figi}", response_model=PositionDetails)
    async def position_details_for_account(
        request: Request,
        brokerAccountId: AccountIdPath,
        figi: FigiPath,
        service: InvestmentService = Depends(get_investment_service),
    ):
        return await _run(request, service.get_position_details(figi, _account_filter(brokerAccountId)))

    # -----------------------
    # Historic positions
    # -----------------------

    @router.get("/historicPositions", response_model=Dict[str, List[PositionWithPrices]])
    async def historic_positions(request: Request, service: InvestmentService = Depends(get_investment_service)):
        return await _run(request, service.get_historic_positions())

    @router.get("/historicPositions/{brokerAccountId}", response_model=Dict[str, List[PositionWithPrices]])
    async def historic_positions_for_account(
        request: Request,
        brokerAccountId: AccountIdPath,
        service: InvestmentService = Depends(get_investment_service),
    ):
        return await _run(request, service.get_historic_positions(_account_filter(brokerAccountId)))

    # -----------------------
    # Totals
    # -----------------------

    @router.get("/total", response_model=Totals)
    async def total(request: Request, service: InvestmentService = Depends(get_investment_service)):
        return await _run(request, service.get_total())

    @router.get("/total/{brokerAccountId}", response_model=Totals)
    async def total_for_account(
        request: Request,
        brokerAccountId: AccountIdPath,
        service: InvestmentService = Depends(get_investment_service),
    ):
        return await _run(request, service.get_total(_account_filter(brokerAccountId)))

    return router


prod_router = create_router(sandbox=False)
sandbox_router = create_router(sandbox=True)
