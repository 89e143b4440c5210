from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Callable, Dict, List


@dataclass(frozen=True)
class RecordChanged:
    table: str
    action: str
    record: Dict[str, Any] = field(default_factory=dict)


ChangeHandler = Callable[[RecordChanged], None]
ChangePredicate = Callable[[Dict[str, Any]], bool]


def column_equals(column: str, value: Any) -> ChangePredicate:
    expected = str(value)
    return lambda record: str(record.get(column)) == expected


@dataclass(eq=False)
class _Subscription:
    table: str
    predicate: ChangePredicate | None
    handler: ChangeHandler
    active: bool = True


class ChangeFeed:
    """Row-change notifications for observers outside the write path.

    Repositories publish after each write. Subscribers only observe: a
    failing handler is logged and the write that triggered it proceeds.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._subscriptions: Dict[str, List[_Subscription]] = {}
        self._logger = logging.getLogger("gestao_ebd")

    def on_change(
        self,
        table: str,
        predicate: ChangePredicate | None,
        handler: ChangeHandler,
    ) -> Callable[[], None]:
        subscription = _Subscription(table=table, predicate=predicate, handler=handler)
        with self._lock:
            self._subscriptions.setdefault(table, []).append(subscription)

        def unsubscribe() -> None:
            with self._lock:
                subscription.active = False
                current = self._subscriptions.get(table, [])
                if subscription in current:
                    current.remove(subscription)

        return unsubscribe

    @contextlib.contextmanager
    def subscription(self, table: str, predicate: ChangePredicate | None, handler: ChangeHandler):
        unsubscribe = self.on_change(table, predicate, handler)
        try:
            yield unsubscribe
        finally:
            unsubscribe()

    def publish(self, event: RecordChanged) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions.get(event.table, []))
        for subscription in subscriptions:
            if not subscription.active:
                continue
            try:
                if subscription.predicate is not None and not subscription.predicate(event.record):
                    continue
                subscription.handler(event)
            except Exception:  # noqa: BLE001
                self._logger.exception(
                    "change_handler_failed",
                    extra={"table": event.table, "action": event.action, "record_id": event.record.get("id")},
                )

    def subscriber_count(self, table: str | None = None) -> int:
        with self._lock:
            if table is not None:
                return len(self._subscriptions.get(table, []))
            return sum(len(items) for items in self._subscriptions.values())
