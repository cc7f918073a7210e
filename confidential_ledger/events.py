"""
events.py - Lending Event Log

One LendingEvent is appended for every committed lending operation. Events
are the public trail off-ledger indexers consume: they carry plaintext
amounts for deposit, borrow, repay and withdraw (the same amounts the value
transfers already reveal) and never carry ciphertexts.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


# Event kinds
POOL_INITIALIZED = "POOL_INITIALIZED"
POSITION_OPENED = "POSITION_OPENED"
COLLATERAL_DEPOSITED = "COLLATERAL_DEPOSITED"
BORROWED = "BORROWED"
REPAID = "REPAID"
COLLATERAL_WITHDRAWN = "COLLATERAL_WITHDRAWN"
POSITION_LIQUIDATED = "POSITION_LIQUIDATED"
POSITION_CLOSED = "POSITION_CLOSED"

EVENT_KINDS = frozenset({
    POOL_INITIALIZED, POSITION_OPENED, COLLATERAL_DEPOSITED, BORROWED,
    REPAID, COLLATERAL_WITHDRAWN, POSITION_LIQUIDATED, POSITION_CLOSED,
})


@dataclass(frozen=True, slots=True)
class LendingEvent:
    """
    Record of a committed lending operation.

    Attributes:
        kind: One of EVENT_KINDS
        pool: Pool address
        position: Position address (None for POOL_INITIALIZED)
        owner: Position owner, or the pool authority for POOL_INITIALIZED
        amount: Plaintext amount moved (swept amount for liquidations, else 0)
        timestamp: Ledger logical time of the operation
        liquidator: Set only for POSITION_LIQUIDATED
        exec_id: exec_id of the ledger transaction that committed it
    """
    kind: str
    pool: str
    position: Optional[str]
    owner: str
    amount: int
    timestamp: datetime
    liquidator: Optional[str] = None
    exec_id: Optional[str] = None

    def __post_init__(self):
        if self.kind not in EVENT_KINDS:
            raise ValueError(f"Unknown event kind: {self.kind}")
        if self.amount < 0:
            raise ValueError(f"Event amount cannot be negative: {self.amount}")


Subscriber = Callable[[LendingEvent], None]


class EventLog:
    """
    Append-only sequence of LendingEvents with synchronous subscribers.

    A subscriber that raises does not stop the append or the other
    subscribers; the failure is logged.
    """

    def __init__(self):
        self._events: List[LendingEvent] = []
        self._subscribers: List[Subscriber] = []

    def append(self, event: LendingEvent) -> None:
        self._events.append(event)
        logger.debug("Event %s position=%s amount=%d", event.kind, event.position, event.amount)
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception:
                logger.exception("Event subscriber %r failed on %s", subscriber, event.kind)

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a callback for future events. Returns an unsubscribe function."""
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    @property
    def events(self) -> List[LendingEvent]:
        return list(self._events)

    def of_kind(self, kind: str) -> List[LendingEvent]:
        return [e for e in self._events if e.kind == kind]

    def for_position(self, position: str) -> List[LendingEvent]:
        return [e for e in self._events if e.position == position]

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self):
        return iter(list(self._events))
