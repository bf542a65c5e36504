from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from vibecredits.core.database import Base


PLAN_STARTER = "STARTER"
PLAN_PREMIUM = "PREMIUM"
PLAN_GOLD = "GOLD"

BILLING_MONTHLY = "MONTHLY"
BILLING_YEARLY = "YEARLY"

STATUS_ACTIVE = "ACTIVE"
STATUS_CANCELLED = "CANCELLED"
STATUS_PAST_DUE = "PAST_DUE"
STATUS_OVERDUE = "OVERDUE"
STATUS_EXPIRED = "EXPIRED"
STATUS_PENDING = "PENDING"

SUBSCRIPTION_STATUSES: set[str] = {
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_PAST_DUE,
    STATUS_OVERDUE,
    STATUS_EXPIRED,
    STATUS_PENDING,
}


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, index=True)
    email = Column(String, index=True)
    role = Column(String, default="user")

    plan = Column(String, index=True, nullable=True)
    billing_cycle = Column(String, index=True, nullable=True)
    subscription_status = Column(String, index=True, nullable=True)
    # Day-of-month anchor for monthly renewals.
    subscription_started_at = Column(DateTime(timezone=True), nullable=True)
    last_credit_renewal_at = Column(DateTime(timezone=True), nullable=True)

    credits_limit = Column(Integer, nullable=False, default=0)
    credits_used = Column(Integer, nullable=False, default=0)
    credits_balance = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
