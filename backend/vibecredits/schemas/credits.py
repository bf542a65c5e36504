from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class BalanceResponse(BaseModel):
    credits_limit: int
    credits_used: int
    credits_balance: int
    available: int
    cached: bool = False


class CreditTransactionOut(BaseModel):
    id: int
    user_id: str
    type: str
    source: str
    amount: int
    description: Optional[str] = None
    reference_id: Optional[str] = None
    balance_after: int
    created_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def from_row(cls, row: Any) -> "CreditTransactionOut":
        return cls(
            id=row.id,
            user_id=row.user_id,
            type=row.type,
            source=row.source,
            amount=int(row.amount or 0),
            description=row.description,
            reference_id=row.reference_id,
            balance_after=int(row.balance_after or 0),
            created_at=row.created_at,
            metadata=(row.event_metadata if isinstance(row.event_metadata, dict) else None),
        )


class PaginationOut(BaseModel):
    current_page: int
    total_pages: int
    total_records: int
    records_per_page: int
    has_next_page: bool
    has_prev_page: bool


class TransactionListResponse(BaseModel):
    items: List[CreditTransactionOut]
    pagination: PaginationOut


class SkippedUserOut(BaseModel):
    user_id: str
    reason: str


class FailedUserOut(BaseModel):
    user_id: str
    error: str


class RenewalSummaryResponse(BaseModel):
    success: bool = True
    timestamp: str
    executed_at: str
    total_processed: int
    total_renewed: int
    total_skipped: int
    total_failed: int
    renewed_user_ids: List[str]
    skipped_users: List[SkippedUserOut]
    failed_users: List[FailedUserOut]
    executed_by: Optional[str] = None
