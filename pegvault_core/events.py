"""
Event log for PegVault.

Mirrors contract event emission: every accepted operation appends one or
more records carrying the literal before/after values.  Records are for
audit and indexing only; no behaviour depends on them.

When an operation is rolled back, the events it emitted are truncated
away together with the rest of its state changes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


PRICE_EVENTS = ("PriceUpdated", "PriceForceUpdated")


@dataclass
class Event:
    """A single emitted record."""
    seq: int
    name: str
    contract: str            # address of the emitting component
    timestamp: int
    fields: dict[str, Any] = field(default_factory=dict)

    def __getitem__(self, key: str) -> Any:
        return self.fields[key]

    def to_dict(self) -> dict:
        return {
            "seq": self.seq,
            "name": self.name,
            "contract": self.contract,
            "timestamp": self.timestamp,
            "fields": dict(self.fields),
        }


class EventLog:
    """Append-only event store with rollback support."""

    def __init__(self):
        self._events: list[Event] = []

    def __len__(self) -> int:
        return len(self._events)

    def emit(self, name: str, contract: str, timestamp: int,
             **fields: Any) -> Event:
        ev = Event(
            seq=len(self._events),
            name=name,
            contract=contract,
            timestamp=timestamp,
            fields=fields,
        )
        self._events.append(ev)
        return ev

    def truncate(self, length: int) -> None:
        """Drop every event emitted after *length* (used on rollback)."""
        del self._events[length:]

    def query(self, name: str | None = None, contract: str | None = None,
              since: int | None = None) -> list[Event]:
        out = []
        for ev in self._events:
            if name is not None and ev.name != name:
                continue
            if contract is not None and ev.contract != contract:
                continue
            if since is not None and ev.timestamp < since:
                continue
            out.append(ev)
        return out

    def last(self, name: str | None = None) -> Event | None:
        for ev in reversed(self._events):
            if name is None or ev.name == name:
                return ev
        return None

    def price_history(self, contract: str,
                      since: int | None = None) -> list[tuple[int, int]]:
        """
        Return ``(timestamp, rate)`` points for every accepted oracle
        update of *contract*, oldest first.
        """
        return [
            (ev.timestamp, ev.fields["new_rate"])
            for ev in self._events
            if ev.name in PRICE_EVENTS and ev.contract == contract
            and (since is None or ev.timestamp >= since)
        ]

    def to_list(self, limit: int | None = None) -> list[dict]:
        events = self._events if limit is None else self._events[-limit:]
        return [e.to_dict() for e in events]
