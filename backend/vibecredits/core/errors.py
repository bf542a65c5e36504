from fastapi import HTTPException


class CreditLedgerError(Exception):
    """Base class for ledger failures that callers are expected to handle."""


class UserNotFoundError(CreditLedgerError, LookupError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"user not found: {user_id}")
        self.user_id = user_id


class InsufficientCreditsError(CreditLedgerError):
    def __init__(self, user_id: str, required: int, available: int) -> None:
        super().__init__("insufficient_credits")
        self.user_id = user_id
        self.required = int(required)
        self.available = int(available)


class InvalidCreditOperation(CreditLedgerError, ValueError):
    pass


def to_http_exception(exc: CreditLedgerError) -> HTTPException:
    if isinstance(exc, UserNotFoundError):
        return HTTPException(status_code=404, detail="User not found")
    if isinstance(exc, InsufficientCreditsError):
        return HTTPException(
            status_code=402,
            detail={
                "error": "insufficient_credits",
                "required": exc.required,
                "available": exc.available,
            },
        )
    return HTTPException(status_code=400, detail=str(exc) or "Invalid request")
