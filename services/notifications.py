"""
Ledger change notifications.

The reconciler publishes every successfully written ledger state here. Whatever
transport the deployment uses (polling endpoint, push, websocket) subscribes a
callback; a failing callback is logged and never undoes the write.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List

from domain.ledger import CreditLedgerState

logger = logging.getLogger(__name__)

LedgerListener = Callable[[CreditLedgerState], None]


class LedgerNotifier:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: List[LedgerListener] = []

    def subscribe(self, listener: LedgerListener) -> Callable[[], None]:
        """Register `listener`; returns a function that unsubscribes it."""

        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, state: CreditLedgerState) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(state)
            except Exception:
                logger.exception("Ledger listener failed for student %s", state.student_id)


__all__ = ["LedgerListener", "LedgerNotifier"]
