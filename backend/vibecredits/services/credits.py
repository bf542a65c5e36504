from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import case
from sqlalchemy.orm import Session

from vibecredits.core.clock import utcnow
from vibecredits.core.errors import InsufficientCreditsError, InvalidCreditOperation, UserNotFoundError
from vibecredits.models.credit_transaction import (
    SOURCE_ADMIN_ADJUSTMENT,
    SOURCE_CONSUMPTION,
    SOURCE_PURCHASE,
    SOURCE_SUBSCRIPTION_GRANT,
    TYPE_CREDIT,
    TYPE_DEBIT,
    CreditTransaction,
)
from vibecredits.models.user import (
    BILLING_MONTHLY,
    BILLING_YEARLY,
    PLAN_GOLD,
    PLAN_PREMIUM,
    PLAN_STARTER,
    STATUS_ACTIVE,
    SUBSCRIPTION_STATUSES,
    User,
)
from vibecredits.services.balance import available_for_user, counters_for_user
from vibecredits.services.events import emit_credits_changed
from vibecredits.services.transactions import find_transaction_by_reference, record_credit_transaction


logger = logging.getLogger(__name__)


PLAN_MONTHLY_CREDITS: dict[str, int] = {
    PLAN_STARTER: 500,
    PLAN_PREMIUM: 1200,
    PLAN_GOLD: 2500,
}

POOL_PLAN = "PLAN"
POOL_PURCHASED = "PURCHASED"
OPERATION_ADD = "ADD"
OPERATION_REMOVE = "REMOVE"
MIN_REASON_LENGTH = 10


def credits_limit_for_plan(plan: str, billing_cycle: str) -> int:
    plan_key = (plan or "").strip().upper()
    if plan_key not in PLAN_MONTHLY_CREDITS:
        raise InvalidCreditOperation(f"unknown plan: {plan}")
    monthly = int(PLAN_MONTHLY_CREDITS[plan_key])
    # Yearly subscribers receive the whole year's allowance up front.
    if (billing_cycle or "").strip().upper() == BILLING_YEARLY:
        return monthly * 12
    return monthly


def get_user(db: Session, user_id: str, for_update: bool = False) -> User:
    query = db.query(User).filter(User.id == user_id)
    if for_update:
        query = query.with_for_update()
    user = query.first()
    if user is None:
        raise UserNotFoundError(user_id)
    return user


def get_or_create_user(db: Session, user_id: str, email: str | None = None, role: str = "user") -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        user = User(
            id=user_id,
            email=(email or ""),
            role=role,
            credits_limit=0,
            credits_used=0,
            credits_balance=0,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
    return user


def _entry_type(delta: int) -> str:
    return TYPE_CREDIT if delta >= 0 else TYPE_DEBIT


def consume_credits(
    db: Session,
    user_id: str,
    amount: int,
    description: str,
    reference_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> CreditTransaction:
    """Debit ``amount`` credits, subscription credits first, then purchased ones.

    The ceiling check and both counter changes happen in one conditional
    UPDATE, so concurrent generations cannot overspend the same credits.
    """
    amount = int(amount)
    if amount <= 0:
        raise InvalidCreditOperation("amount must be positive")

    plan_available = case(
        (User.credits_limit > User.credits_used, User.credits_limit - User.credits_used),
        else_=0,
    )
    from_plan = case((plan_available >= amount, amount), else_=plan_available)
    # Over-consumed plan credits are netted against the purchased balance.
    available = (User.credits_limit - User.credits_used) + User.credits_balance

    try:
        updated = (
            db.query(User)
            .filter(User.id == user_id)
            .filter(available >= amount)
            .update(
                {
                    User.credits_used: User.credits_used + from_plan,
                    User.credits_balance: User.credits_balance - (amount - from_plan),
                },
                synchronize_session=False,
            )
        )
        if not updated:
            db.rollback()
            user = get_user(db, user_id)
            logger.info(
                "credits.consume.insufficient user_id=%s required=%s available=%s",
                user_id,
                amount,
                available_for_user(user),
            )
            raise InsufficientCreditsError(user_id, amount, available_for_user(user))

        entry = record_credit_transaction(
            db,
            user_id=user_id,
            type_=TYPE_DEBIT,
            source=SOURCE_CONSUMPTION,
            amount=-amount,
            description=description,
            reference_id=reference_id,
            metadata=metadata,
            commit=False,
        )
        db.commit()
        db.refresh(entry)
    except (InsufficientCreditsError, UserNotFoundError):
        raise
    except Exception:
        db.rollback()
        raise

    emit_credits_changed(user_id, SOURCE_CONSUMPTION)
    return entry


def grant_purchased_credits(
    db: Session,
    user_id: str,
    credits: int,
    reference_id: str,
    description: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> CreditTransaction:
    """Credit a confirmed credit-package purchase exactly once per ``reference_id``."""
    credits = int(credits)
    if credits <= 0:
        raise InvalidCreditOperation("credits must be positive")
    reference_id = str(reference_id or "").strip()
    if not reference_id:
        raise InvalidCreditOperation("reference_id is required")

    try:
        get_user(db, user_id, for_update=True)
        already = find_transaction_by_reference(db, user_id, SOURCE_PURCHASE, reference_id)
        if already is not None:
            db.rollback()
            logger.info("credits.purchase.duplicate user_id=%s reference_id=%s", user_id, reference_id)
            return already

        db.query(User).filter(User.id == user_id).update(
            {User.credits_balance: User.credits_balance + credits},
            synchronize_session=False,
        )
        entry = record_credit_transaction(
            db,
            user_id=user_id,
            type_=TYPE_CREDIT,
            source=SOURCE_PURCHASE,
            amount=credits,
            description=(description or f"Credit package purchase ({credits} credits)"),
            reference_id=reference_id,
            metadata=metadata,
            commit=False,
        )
        db.commit()
        db.refresh(entry)
    except UserNotFoundError:
        db.rollback()
        raise
    except Exception:
        db.rollback()
        raise

    emit_credits_changed(user_id, SOURCE_PURCHASE)
    return entry


def activate_subscription(
    db: Session,
    user_id: str,
    plan: str,
    billing_cycle: str,
    now: datetime | None = None,
    reference_id: str | None = None,
) -> CreditTransaction:
    now = now or utcnow()
    plan_key = (plan or "").strip().upper()
    cycle = (billing_cycle or "").strip().upper()
    if cycle not in {BILLING_MONTHLY, BILLING_YEARLY}:
        raise InvalidCreditOperation(f"unknown billing cycle: {billing_cycle}")
    credits_limit = credits_limit_for_plan(plan_key, cycle)

    try:
        user = get_user(db, user_id, for_update=True)
        before = available_for_user(user)

        user.plan = plan_key
        user.billing_cycle = cycle
        user.subscription_status = STATUS_ACTIVE
        user.credits_limit = credits_limit
        user.credits_used = 0
        if user.subscription_started_at is None:
            user.subscription_started_at = now
        user.last_credit_renewal_at = now
        db.flush()

        delta = available_for_user(user) - before
        entry = record_credit_transaction(
            db,
            user_id=user_id,
            type_=_entry_type(delta),
            source=SOURCE_SUBSCRIPTION_GRANT,
            amount=delta,
            description=f"Subscription activated - {plan_key} ({cycle})",
            reference_id=reference_id,
            metadata={"plan": plan_key, "billing_cycle": cycle, "credits_limit": credits_limit},
            commit=False,
        )
        db.commit()
        db.refresh(entry)
    except Exception:
        db.rollback()
        raise

    logger.info(
        "credits.subscription.activated user_id=%s plan=%s cycle=%s credits_limit=%s",
        user_id,
        plan_key,
        cycle,
        credits_limit,
    )
    emit_credits_changed(user_id, SOURCE_SUBSCRIPTION_GRANT)
    return entry


def set_subscription_status(db: Session, user_id: str, status: str) -> User:
    """Change only the status; plan and counters stay as they are."""
    status = (status or "").strip().upper()
    if status not in SUBSCRIPTION_STATUSES:
        raise InvalidCreditOperation(f"unknown subscription status: {status}")
    try:
        user = get_user(db, user_id, for_update=True)
        user.subscription_status = status
        db.commit()
        db.refresh(user)
    except Exception:
        db.rollback()
        raise
    logger.info("credits.subscription.status user_id=%s status=%s", user_id, status)
    return user


def adjust_credits(
    db: Session,
    user_id: str,
    pool: str,
    operation: str,
    amount: int,
    reason: str,
    actor: dict[str, Any] | None = None,
) -> dict[str, Any]:
    pool = (pool or "").strip().upper()
    operation = (operation or "").strip().upper()
    amount = int(amount or 0)
    reason = (reason or "").strip()
    if pool not in {POOL_PLAN, POOL_PURCHASED}:
        raise InvalidCreditOperation("Invalid pool. Must be PLAN or PURCHASED")
    if operation not in {OPERATION_ADD, OPERATION_REMOVE}:
        raise InvalidCreditOperation("Invalid operation. Must be ADD or REMOVE")
    if amount <= 0:
        raise InvalidCreditOperation("Amount must be greater than 0")
    if len(reason) < MIN_REASON_LENGTH:
        raise InvalidCreditOperation(f"Reason is required (minimum {MIN_REASON_LENGTH} characters)")

    try:
        user = get_user(db, user_id, for_update=True)
        before = counters_for_user(user)

        if pool == POOL_PLAN:
            if operation == OPERATION_ADD:
                user.credits_used = max(0, before.credits_used - amount)
            else:
                user.credits_used = max(before.credits_used, min(before.credits_limit, before.credits_used + amount))
        else:
            if operation == OPERATION_ADD:
                user.credits_balance = before.credits_balance + amount
            else:
                user.credits_balance = max(0, before.credits_balance - amount)
        db.flush()

        after = counters_for_user(user)
        delta = after.available - before.available
        entry = record_credit_transaction(
            db,
            user_id=user_id,
            type_=(TYPE_CREDIT if operation == OPERATION_ADD else TYPE_DEBIT),
            source=SOURCE_ADMIN_ADJUSTMENT,
            amount=delta,
            description=f"Manual adjustment ({operation} {pool}) - {reason}",
            metadata={
                "pool": pool,
                "operation": operation,
                "requested_amount": amount,
                "reason": reason,
                "admin_id": (actor or {}).get("id"),
                "admin_email": (actor or {}).get("email"),
            },
            commit=False,
        )
        db.commit()
        db.refresh(entry)
    except Exception:
        db.rollback()
        raise

    logger.info(
        "credits.adjust user_id=%s pool=%s operation=%s amount=%s applied=%s admin=%s",
        user_id,
        pool,
        operation,
        amount,
        delta,
        (actor or {}).get("email"),
    )
    emit_credits_changed(user_id, SOURCE_ADMIN_ADJUSTMENT)
    return {
        "pool": pool,
        "operation": operation,
        "amount": amount,
        "applied": delta,
        "reason": reason,
        "transaction_id": entry.id,
        "before": {
            "credits_limit": before.credits_limit,
            "credits_used": before.credits_used,
            "credits_balance": before.credits_balance,
            "available": before.available,
        },
        "after": {
            "credits_limit": after.credits_limit,
            "credits_used": after.credits_used,
            "credits_balance": after.credits_balance,
            "available": after.available,
        },
    }


def reconcile_user_credits(db: Session, user_id: str) -> dict[str, Any]:
    """Compare the live balance with the newest ledger snapshot and drop the cached copy."""
    user = get_user(db, user_id)
    counters = counters_for_user(user)
    last = (
        db.query(CreditTransaction)
        .filter(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        .first()
    )
    ledger_balance = int(last.balance_after) if last is not None else None
    drift = (counters.available - ledger_balance) if ledger_balance is not None else 0
    if drift:
        logger.warning(
            "credits.reconcile.drift user_id=%s available=%s ledger_balance=%s",
            user_id,
            counters.available,
            ledger_balance,
        )
    emit_credits_changed(user_id, "reconcile")
    return {
        "user_id": user_id,
        "credits_limit": counters.credits_limit,
        "credits_used": counters.credits_used,
        "credits_balance": counters.credits_balance,
        "plan_available": counters.plan_available,
        "available": counters.available,
        "ledger_balance_after": ledger_balance,
        "drift": drift,
    }
