from __future__ import annotations

import logging
from typing import Callable


logger = logging.getLogger(__name__)

CreditsChangedListener = Callable[[str, str], None]

_listeners: list[CreditsChangedListener] = []


def subscribe_credits_changed(listener: CreditsChangedListener) -> None:
    if listener not in _listeners:
        _listeners.append(listener)


def unsubscribe_credits_changed(listener: CreditsChangedListener) -> None:
    if listener in _listeners:
        _listeners.remove(listener)


def emit_credits_changed(user_id: str, reason: str) -> None:
    """Notify listeners that a user's counters or ledger changed.

    Called after the change is committed. A failing listener is logged and
    skipped so the credit operation itself still succeeds.
    """
    for listener in list(_listeners):
        try:
            listener(user_id, reason)
        except Exception:
            logger.exception("credits.changed.listener_error user_id=%s reason=%s", user_id, reason)
