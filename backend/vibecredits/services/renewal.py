"""Monthly credit renewal.

MONTHLY subscribers get ``credits_used`` reset once per billing cycle, on the
calendar day their subscription started (clamped to the month's last day).
``last_credit_renewal_at`` is the per-user cycle marker: a user is due only
while the marker predates the current cycle start, and the reset is applied by
a conditional UPDATE on that same predicate, so overlapping runs renew each
user at most once per cycle. YEARLY subscribers are never touched here.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from vibecredits.core.clock import as_utc, utcnow
from vibecredits.core.errors import InvalidCreditOperation
from vibecredits.models.credit_transaction import SOURCE_RENEWAL, TYPE_CREDIT, CreditTransaction
from vibecredits.models.user import BILLING_MONTHLY, STATUS_ACTIVE, User
from vibecredits.services.balance import CreditCounters, available_for_user, counters_for_user
from vibecredits.services.credits import MIN_REASON_LENGTH, get_user
from vibecredits.services.events import emit_credits_changed
from vibecredits.services.transactions import record_credit_transaction


logger = logging.getLogger(__name__)


SKIP_NO_SUBSCRIPTION = "no_subscription"
SKIP_NOT_MONTHLY = "not_monthly"
SKIP_NOT_ACTIVE = "not_active"
SKIP_NOT_DUE = "not_due"
SKIP_ALREADY_RENEWED = "already_renewed"


@dataclass
class RenewalSummary:
    executed_at: datetime
    total_processed: int = 0
    renewed_user_ids: list[str] = field(default_factory=list)
    skipped_users: list[dict[str, str]] = field(default_factory=list)
    failed_users: list[dict[str, str]] = field(default_factory=list)

    @property
    def total_renewed(self) -> int:
        return len(self.renewed_user_ids)

    @property
    def total_skipped(self) -> int:
        return len(self.skipped_users)

    @property
    def total_failed(self) -> int:
        return len(self.failed_users)

    def as_dict(self) -> dict[str, Any]:
        return {
            "executed_at": self.executed_at.isoformat(),
            "total_processed": self.total_processed,
            "total_renewed": self.total_renewed,
            "total_skipped": self.total_skipped,
            "total_failed": self.total_failed,
            "renewed_user_ids": list(self.renewed_user_ids),
            "skipped_users": [dict(s) for s in self.skipped_users],
            "failed_users": [dict(f) for f in self.failed_users],
        }


def cycle_anchor_date(anchor_day: int, year: int, month: int) -> date:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(int(anchor_day), last_day))


def current_cycle_start(anchor: date | datetime, today: date | datetime) -> date:
    """Most recent renewal date on or before ``today`` for the given anchor."""
    if isinstance(today, datetime):
        today = as_utc(today).date()
    if isinstance(anchor, datetime):
        anchor = as_utc(anchor).date()

    candidate = cycle_anchor_date(anchor.day, today.year, today.month)
    if candidate <= today:
        return candidate
    if today.month == 1:
        return cycle_anchor_date(anchor.day, today.year - 1, 12)
    return cycle_anchor_date(anchor.day, today.year, today.month - 1)


def _cycle_start_datetime(cycle_start: date) -> datetime:
    return datetime.combine(cycle_start, time.min, tzinfo=timezone.utc)


def renewal_marker(user: User) -> datetime | None:
    return as_utc(user.last_credit_renewal_at) or as_utc(user.subscription_started_at)


def is_renewal_due(user: User, now: datetime | None = None) -> tuple[bool, str | None]:
    """Return ``(due, skip_reason)``; ``skip_reason`` is None when due."""
    now = as_utc(now or utcnow())
    if not user.billing_cycle or not user.subscription_status or user.subscription_started_at is None:
        return False, SKIP_NO_SUBSCRIPTION
    if (user.billing_cycle or "").upper() != BILLING_MONTHLY:
        return False, SKIP_NOT_MONTHLY
    if (user.subscription_status or "").upper() != STATUS_ACTIVE:
        return False, SKIP_NOT_ACTIVE

    cycle_start = current_cycle_start(as_utc(user.subscription_started_at), now)
    marker = renewal_marker(user)
    if marker is not None and marker.date() >= cycle_start:
        return False, SKIP_NOT_DUE
    return True, None


def _apply_conditional_reset(db: Session, user_id: str, cycle_start: date, now: datetime) -> int:
    cycle_start_at = _cycle_start_datetime(cycle_start)
    return (
        db.query(User)
        .filter(User.id == user_id)
        .filter(func.upper(User.billing_cycle) == BILLING_MONTHLY)
        .filter(func.upper(User.subscription_status) == STATUS_ACTIVE)
        .filter(
            or_(
                func.coalesce(User.last_credit_renewal_at, User.subscription_started_at).is_(None),
                func.coalesce(User.last_credit_renewal_at, User.subscription_started_at) < cycle_start_at,
            )
        )
        .update(
            {User.credits_used: 0, User.last_credit_renewal_at: now},
            synchronize_session=False,
        )
    )


def renew_user_credits(db: Session, user: User, now: datetime | None = None) -> CreditTransaction | None:
    """Renew one user if still due; ``None`` when another run got there first.

    ``credits_limit`` and ``credits_balance`` are left untouched.
    """
    now = as_utc(now or utcnow())
    user_id = user.id
    cycle_start = current_cycle_start(as_utc(user.subscription_started_at), now)
    before = counters_for_user(user)
    after = CreditCounters(before.credits_limit, 0, before.credits_balance)

    try:
        updated = _apply_conditional_reset(db, user_id, cycle_start, now)
        if not updated:
            db.rollback()
            return None
        entry = record_credit_transaction(
            db,
            user_id=user_id,
            type_=TYPE_CREDIT,
            source=SOURCE_RENEWAL,
            amount=max(0, after.available - before.available),
            description=f"Monthly renewal - {user.plan or 'plan'}",
            reference_id=f"renewal:{cycle_start.isoformat()}",
            metadata={
                "plan": user.plan,
                "billing_cycle": user.billing_cycle,
                "credits_limit": before.credits_limit,
                "credits_used_before": before.credits_used,
                "cycle_start": cycle_start.isoformat(),
            },
            commit=False,
        )
        db.commit()
        db.refresh(entry)
    except Exception:
        db.rollback()
        raise

    emit_credits_changed(user_id, SOURCE_RENEWAL)
    return entry


def _renewal_candidates(db: Session) -> list[User]:
    # Anything subscription-shaped is scanned so ineligible users show up as skipped.
    return (
        db.query(User)
        .filter(
            or_(
                User.billing_cycle.isnot(None),
                User.subscription_status.isnot(None),
                User.plan.isnot(None),
            )
        )
        .order_by(User.id.asc())
        .all()
    )


def renew_monthly_credits(db: Session, now: datetime | None = None) -> RenewalSummary:
    """Sweep all subscribers and renew those due in the current cycle.

    A failure for one user is rolled back, logged and reported in the summary;
    the sweep continues with the next user.
    """
    now = as_utc(now or utcnow())
    summary = RenewalSummary(executed_at=now)
    candidates = _renewal_candidates(db)
    user_ids = [u.id for u in candidates]
    logger.info("renewal.sweep.start candidates=%s now=%s", len(user_ids), now.isoformat())

    for user_id in user_ids:
        summary.total_processed += 1
        try:
            user = db.query(User).filter(User.id == user_id).populate_existing().first()
            if user is None:
                summary.skipped_users.append({"user_id": user_id, "reason": SKIP_NO_SUBSCRIPTION})
                continue
            due, reason = is_renewal_due(user, now)
            if not due:
                summary.skipped_users.append({"user_id": user_id, "reason": reason or SKIP_NOT_DUE})
                continue
            entry = renew_user_credits(db, user, now)
            if entry is None:
                summary.skipped_users.append({"user_id": user_id, "reason": SKIP_ALREADY_RENEWED})
                continue
            summary.renewed_user_ids.append(user_id)
            logger.info("renewal.user.renewed user_id=%s restored=%s", user_id, entry.amount)
        except Exception as exc:
            db.rollback()
            logger.exception("renewal.user.error user_id=%s", user_id)
            summary.failed_users.append({"user_id": user_id, "error": type(exc).__name__})

    logger.info(
        "renewal.sweep.done processed=%s renewed=%s skipped=%s failed=%s",
        summary.total_processed,
        summary.total_renewed,
        summary.total_skipped,
        summary.total_failed,
    )
    return summary


def force_renew_user(
    db: Session,
    user_id: str,
    reason: str,
    actor: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Admin renewal outside the schedule; skips the due-date check only."""
    reason = (reason or "").strip()
    if len(reason) < MIN_REASON_LENGTH:
        raise InvalidCreditOperation(f"Reason is required (minimum {MIN_REASON_LENGTH} characters)")
    now = as_utc(now or utcnow())

    try:
        user = get_user(db, user_id, for_update=True)
        if not user.plan or (user.subscription_status or "").upper() != STATUS_ACTIVE:
            raise InvalidCreditOperation("User does not have an active plan")

        before = counters_for_user(user)
        previous_renewal_at = as_utc(user.last_credit_renewal_at)
        user.credits_used = 0
        user.last_credit_renewal_at = now
        db.flush()

        entry = record_credit_transaction(
            db,
            user_id=user_id,
            type_=TYPE_CREDIT,
            source=SOURCE_RENEWAL,
            amount=max(0, available_for_user(user) - before.available),
            description=f"Manual renewal - {user.plan}",
            metadata={
                "plan": user.plan,
                "billing_cycle": user.billing_cycle,
                "credits_limit": before.credits_limit,
                "credits_used_before": before.credits_used,
                "reason": reason,
                "admin_id": (actor or {}).get("id"),
                "admin_email": (actor or {}).get("email"),
            },
            commit=False,
        )
        db.commit()
        db.refresh(entry)
        db.refresh(user)
    except Exception:
        db.rollback()
        raise

    logger.info(
        "renewal.user.forced user_id=%s admin=%s restored=%s",
        user_id,
        (actor or {}).get("email"),
        entry.amount,
    )
    emit_credits_changed(user_id, SOURCE_RENEWAL)
    after = counters_for_user(user)
    return {
        "renewed": True,
        "transaction_id": entry.id,
        "reason": reason,
        "credits": {
            "previous": {"used": before.credits_used, "limit": before.credits_limit, "available": before.available},
            "current": {"used": after.credits_used, "limit": after.credits_limit, "available": after.available},
        },
        "dates": {
            "previous_renewal_at": (previous_renewal_at.isoformat() if previous_renewal_at else None),
            "current_renewal_at": now.isoformat(),
        },
    }
