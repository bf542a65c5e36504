import logging
import time
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from vibecredits.core.errors import UserNotFoundError
from vibecredits.core.settings import settings
from vibecredits.models.user import User
from vibecredits.services.balance import balance_snapshot
from vibecredits.services.events import subscribe_credits_changed


logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    expires_at: float
    value: Any


class TTLCache:
    def __init__(self, *, max_items: int = 5000, ttl_s: int = 60) -> None:
        self._max_items = max(1, int(max_items or 1))
        self._ttl_s = max(1, int(ttl_s or 1))
        self._items: dict[str, _Entry] = {}

    def get(self, key: str) -> Any | None:
        entry = self._items.get(key)
        if entry is None:
            return None
        if entry.expires_at <= time.time():
            self._items.pop(key, None)
            return None
        return entry.value

    def set(self, key: str, value: Any) -> None:
        self._evict_if_needed()
        self._items[key] = _Entry(expires_at=time.time() + self._ttl_s, value=value)

    def delete(self, key: str) -> bool:
        return self._items.pop(key, None) is not None

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def _evict_if_needed(self) -> None:
        if len(self._items) < self._max_items:
            return
        now = time.time()
        for k in list(self._items.keys()):
            if self._items.get(k) and self._items[k].expires_at <= now:
                self._items.pop(k, None)
        while len(self._items) >= self._max_items and self._items:
            self._items.pop(next(iter(self._items)), None)


_BALANCE_CACHE = TTLCache(
    max_items=settings.balance_cache_max_items,
    ttl_s=settings.balance_cache_ttl_seconds,
)


def balance_cache_key(user_id: str) -> str:
    return f"user-{user_id}-credits"


def load_balance(db: Session, user_id: str) -> dict[str, int]:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise UserNotFoundError(user_id)
    return balance_snapshot(user)


def get_cached_balance(db: Session, user_id: str) -> tuple[dict[str, int], bool]:
    """Return ``(snapshot, from_cache)`` for a user's balance."""
    key = balance_cache_key(user_id)
    cached = _BALANCE_CACHE.get(key)
    if isinstance(cached, dict):
        return dict(cached), True
    snapshot = load_balance(db, user_id)
    _BALANCE_CACHE.set(key, dict(snapshot))
    return snapshot, False


def invalidate_user_credits(user_id: str, reason: str = "manual") -> bool:
    dropped = _BALANCE_CACHE.delete(balance_cache_key(user_id))
    logger.debug("cache.balance.invalidate user_id=%s reason=%s dropped=%s", user_id, reason, dropped)
    return dropped


def clear_balance_cache() -> None:
    _BALANCE_CACHE.clear()


subscribe_credits_changed(invalidate_user_credits)
