from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from vibecredits.core.database import get_db
from vibecredits.core.errors import CreditLedgerError, to_http_exception
from vibecredits.core.security import CurrentUser, get_current_user
from vibecredits.schemas.credits import (
    BalanceResponse,
    CreditTransactionOut,
    PaginationOut,
    TransactionListResponse,
)
from vibecredits.services.cache import get_cached_balance, invalidate_user_credits, load_balance
from vibecredits.services.transactions import list_credit_transactions


router = APIRouter(dependencies=[Depends(get_current_user)])


@router.get("/credits/balance", response_model=BalanceResponse)
async def credits_balance(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BalanceResponse:
    try:
        snapshot, from_cache = get_cached_balance(db, current_user.id)
    except CreditLedgerError as exc:
        raise to_http_exception(exc)
    return BalanceResponse(**snapshot, cached=from_cache)


@router.get("/credits/balance/live", response_model=BalanceResponse)
async def credits_balance_live(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BalanceResponse:
    try:
        snapshot = load_balance(db, current_user.id)
    except CreditLedgerError as exc:
        raise to_http_exception(exc)
    return BalanceResponse(**snapshot, cached=False)


@router.post("/credits/invalidate-cache")
async def credits_invalidate_cache(current_user: CurrentUser = Depends(get_current_user)) -> dict:
    dropped = invalidate_user_credits(current_user.id, reason="user_request")
    return {"success": True, "invalidated": dropped}


@router.get("/credits/transactions", response_model=TransactionListResponse)
async def credits_transactions(
    page: int = Query(1),
    limit: int = Query(20),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> TransactionListResponse:
    result = list_credit_transactions(db, current_user.id, page=page, limit=limit)
    return TransactionListResponse(
        items=[CreditTransactionOut.from_row(r) for r in result.items],
        pagination=PaginationOut(**result.pagination()),
    )
