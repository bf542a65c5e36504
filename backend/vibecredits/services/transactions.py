"""Credit transaction log: append, page through, repair snapshots."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from vibecredits.core.clock import utcnow
from vibecredits.core.errors import InvalidCreditOperation, UserNotFoundError
from vibecredits.core.settings import settings
from vibecredits.models.credit_transaction import (
    TRANSACTION_SOURCES,
    TRANSACTION_TYPES,
    TYPE_CREDIT,
    TYPE_DEBIT,
    CreditTransaction,
)
from vibecredits.models.user import User
from vibecredits.services.balance import available_for_user


logger = logging.getLogger(__name__)


@dataclass
class TransactionPage:
    items: list[CreditTransaction] = field(default_factory=list)
    total_records: int = 0
    total_pages: int = 0
    current_page: int = 1
    records_per_page: int = 20

    @property
    def has_next_page(self) -> bool:
        return self.current_page < self.total_pages

    @property
    def has_prev_page(self) -> bool:
        return self.current_page > 1

    def pagination(self) -> dict[str, Any]:
        return {
            "current_page": self.current_page,
            "total_pages": self.total_pages,
            "total_records": self.total_records,
            "records_per_page": self.records_per_page,
            "has_next_page": self.has_next_page,
            "has_prev_page": self.has_prev_page,
        }


def normalize_pagination(page: int | None = None, limit: int | None = None) -> tuple[int, int]:
    page = max(1, int(page or 1))
    limit = int(limit or settings.transactions_default_page_size)
    limit = max(1, min(limit, settings.transactions_max_page_size))
    return page, limit


def _validate_entry(type_: str, source: str, amount: int) -> None:
    if type_ not in TRANSACTION_TYPES:
        raise InvalidCreditOperation(f"invalid transaction type: {type_}")
    if source not in TRANSACTION_SOURCES:
        raise InvalidCreditOperation(f"invalid transaction source: {source}")
    if type_ == TYPE_CREDIT and amount < 0:
        raise InvalidCreditOperation("credit entries must have a non-negative amount")
    if type_ == TYPE_DEBIT and amount > 0:
        raise InvalidCreditOperation("debit entries must have a non-positive amount")


def record_credit_transaction(
    db: Session,
    user_id: str,
    type_: str,
    source: str,
    amount: int,
    description: str | None = None,
    reference_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    commit: bool = True,
) -> CreditTransaction:
    """Append a ledger entry for a change already applied to the user's counters.

    ``balance_after`` is recomputed from the counters as they stand in this
    session, so callers must mutate (or conditionally update) the user row
    first. With ``commit=False`` the entry joins the caller's transaction.
    """
    amount = int(amount)
    _validate_entry(type_, source, amount)

    user = db.query(User).filter(User.id == user_id).populate_existing().first()
    if user is None:
        raise UserNotFoundError(user_id)

    entry = CreditTransaction(
        user_id=user_id,
        type=type_,
        source=source,
        amount=amount,
        description=(description or None),
        reference_id=(str(reference_id) if reference_id else None),
        balance_after=available_for_user(user),
        created_at=utcnow(),
        event_metadata=(metadata or None),
    )
    db.add(entry)
    if commit:
        db.commit()
        db.refresh(entry)
    else:
        db.flush()
    logger.info(
        "transactions.record user_id=%s type=%s source=%s amount=%s balance_after=%s",
        user_id,
        type_,
        source,
        amount,
        entry.balance_after,
    )
    return entry


def list_credit_transactions(
    db: Session,
    user_id: str,
    page: int | None = 1,
    limit: int | None = None,
) -> TransactionPage:
    page, limit = normalize_pagination(page, limit)
    query = db.query(CreditTransaction).filter(CreditTransaction.user_id == user_id)
    total = int(query.count() or 0)
    rows = (
        query.order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return TransactionPage(
        items=rows,
        total_records=total,
        total_pages=(math.ceil(total / limit) if total else 0),
        current_page=page,
        records_per_page=limit,
    )


def find_transaction_by_reference(
    db: Session,
    user_id: str,
    source: str,
    reference_id: str,
) -> CreditTransaction | None:
    return (
        db.query(CreditTransaction)
        .filter(
            CreditTransaction.user_id == user_id,
            CreditTransaction.source == source,
            CreditTransaction.reference_id == str(reference_id),
        )
        .first()
    )


def recalculate_balance_snapshots(db: Session, user_id: str | None = None) -> dict[str, int]:
    """Rewrite ``balance_after`` on every entry, newest first.

    The newest entry gets the user's current computed balance; each older one
    gets the running balance minus the amounts recorded after it.
    """
    query = db.query(CreditTransaction.user_id).distinct()
    if user_id:
        query = query.filter(CreditTransaction.user_id == user_id)
    user_ids = [row[0] for row in query.all() if row[0]]

    processed_users = 0
    processed_transactions = 0
    try:
        for uid in user_ids:
            user = db.query(User).filter(User.id == uid).first()
            if user is None:
                continue
            running = available_for_user(user)
            rows = (
                db.query(CreditTransaction)
                .filter(CreditTransaction.user_id == uid)
                .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
                .all()
            )
            for row in rows:
                row.balance_after = running
                running -= int(row.amount or 0)
                processed_transactions += 1
            processed_users += 1
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "transactions.recalculate users=%s transactions=%s",
        processed_users,
        processed_transactions,
    )
    return {"processed_users": processed_users, "processed_transactions": processed_transactions}
