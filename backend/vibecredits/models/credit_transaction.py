from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String

from vibecredits.core.database import Base
from vibecredits.core.clock import utcnow


TYPE_CREDIT = "CREDIT"
TYPE_DEBIT = "DEBIT"
TRANSACTION_TYPES: set[str] = {TYPE_CREDIT, TYPE_DEBIT}

SOURCE_SUBSCRIPTION_GRANT = "SUBSCRIPTION_GRANT"
SOURCE_PURCHASE = "PURCHASE"
SOURCE_CONSUMPTION = "CONSUMPTION"
SOURCE_RENEWAL = "RENEWAL"
SOURCE_ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"
TRANSACTION_SOURCES: set[str] = {
    SOURCE_SUBSCRIPTION_GRANT,
    SOURCE_PURCHASE,
    SOURCE_CONSUMPTION,
    SOURCE_RENEWAL,
    SOURCE_ADMIN_ADJUSTMENT,
}


class CreditTransaction(Base):
    """Append-only audit record of one credit-affecting event."""

    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String, nullable=False, index=True)
    source = Column(String, nullable=False, index=True)
    # Positive for CREDIT entries, negative for DEBIT entries.
    amount = Column(Integer, nullable=False)
    description = Column(String, nullable=True)
    reference_id = Column(String, nullable=True, index=True)
    balance_after = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    event_metadata = Column("metadata", JSON, nullable=True)
