from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session

from vibecredits.core.clock import utcnow
from vibecredits.core.database import get_db
from vibecredits.core.errors import CreditLedgerError, to_http_exception
from vibecredits.core.security import CurrentUser, require_admin
from vibecredits.models.credit_transaction import CreditTransaction
from vibecredits.models.user import User
from vibecredits.schemas.credits import (
    CreditTransactionOut,
    PaginationOut,
    RenewalSummaryResponse,
    TransactionListResponse,
)
from vibecredits.services.balance import available_for_user
from vibecredits.services.credits import adjust_credits, get_user, reconcile_user_credits
from vibecredits.services.renewal import force_renew_user, renew_monthly_credits
from vibecredits.services.transactions import list_credit_transactions, recalculate_balance_snapshots


router = APIRouter(dependencies=[Depends(require_admin)])


class RenewRequest(BaseModel):
    reason: str


class AdjustRequest(BaseModel):
    pool: str
    operation: str
    amount: int
    reason: str


class RecalculateRequest(BaseModel):
    user_id: str | None = None


def _clean_user_id(user_id: str) -> str:
    user_id = (user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=400, detail="Invalid user_id")
    return user_id


@router.post("/admin/credits/cron/execute", response_model=RenewalSummaryResponse)
async def admin_execute_renewal(
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
) -> RenewalSummaryResponse:
    summary = renew_monthly_credits(db)
    return RenewalSummaryResponse(
        success=True,
        timestamp=utcnow().isoformat(),
        executed_by=admin.email or admin.id,
        **summary.as_dict(),
    )


@router.post("/admin/credits/users/{user_id}/renew")
async def admin_renew_user(
    user_id: str,
    body: RenewRequest,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
) -> dict:
    user_id = _clean_user_id(user_id)
    try:
        result = force_renew_user(db, user_id, body.reason, actor=admin.as_actor())
    except CreditLedgerError as exc:
        raise to_http_exception(exc)
    return {"success": True, "user_id": user_id, **result}


@router.post("/admin/credits/users/{user_id}/adjust")
async def admin_adjust_user_credits(
    user_id: str,
    body: AdjustRequest,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
) -> dict:
    user_id = _clean_user_id(user_id)
    try:
        result = adjust_credits(
            db,
            user_id,
            pool=body.pool,
            operation=body.operation,
            amount=body.amount,
            reason=body.reason,
            actor=admin.as_actor(),
        )
    except CreditLedgerError as exc:
        raise to_http_exception(exc)
    return {"success": True, "user_id": user_id, **result}


@router.post("/admin/credits/users/{user_id}/reconcile")
async def admin_reconcile_user(user_id: str, db: Session = Depends(get_db)) -> dict:
    user_id = _clean_user_id(user_id)
    try:
        result = reconcile_user_credits(db, user_id)
    except CreditLedgerError as exc:
        raise to_http_exception(exc)
    return {"success": True, **result}


@router.get("/admin/users/{user_id}/transactions", response_model=TransactionListResponse)
async def admin_user_transactions(
    user_id: str,
    page: int = Query(1),
    limit: int = Query(20),
    db: Session = Depends(get_db),
) -> TransactionListResponse:
    user_id = _clean_user_id(user_id)
    try:
        get_user(db, user_id)
    except CreditLedgerError as exc:
        raise to_http_exception(exc)
    result = list_credit_transactions(db, user_id, page=page, limit=limit)
    return TransactionListResponse(
        items=[CreditTransactionOut.from_row(r) for r in result.items],
        pagination=PaginationOut(**result.pagination()),
    )


@router.post("/admin/credit-transactions/recalculate")
async def admin_recalculate_snapshots(
    body: RecalculateRequest | None = None,
    db: Session = Depends(get_db),
) -> dict:
    user_id = ((body.user_id if body else None) or "").strip() or None
    result = recalculate_balance_snapshots(db, user_id=user_id)
    return {"success": True, **result}


@router.get("/admin/credits/dashboard")
async def admin_credits_dashboard(db: Session = Depends(get_db)) -> dict:
    users = int(db.query(func.count(User.id)).scalar() or 0)

    by_status: dict[str, int] = {}
    for status, count in db.query(User.subscription_status, func.count(User.id)).group_by(User.subscription_status).all():
        by_status[str(status or "NONE")] = int(count or 0)

    by_cycle: dict[str, int] = {}
    for cycle, count in db.query(User.billing_cycle, func.count(User.id)).group_by(User.billing_cycle).all():
        by_cycle[str(cycle or "NONE")] = int(count or 0)

    by_source: dict[str, dict[str, int]] = {}
    rows = (
        db.query(CreditTransaction.source, func.count(CreditTransaction.id), func.coalesce(func.sum(CreditTransaction.amount), 0))
        .group_by(CreditTransaction.source)
        .all()
    )
    for source, count, total in rows:
        by_source[str(source)] = {"count": int(count or 0), "amount": int(total or 0)}

    total_available = 0
    for user in db.query(User).all():
        total_available += available_for_user(user)

    return {
        "users": users,
        "users_by_status": by_status,
        "users_by_billing_cycle": by_cycle,
        "transactions_by_source": by_source,
        "total_available_credits": total_available,
        "generated_at": utcnow().isoformat(),
    }
