"""
Host model for PegVault components.

The vault, oracle and token ledgers were designed for a host that runs
every external call as one indivisible, globally ordered transaction and
supplies a non-decreasing block time.  ``Chain`` provides those same
guarantees in-process:

  - ``now()``     integer seconds, never moves backwards
  - ``atomic()``  serialises operations behind one re-entrant lock and
                  restores every registered component (and the event
                  log) if the operation raises
  - address book  components register under their address so that
                  address-valued settings (push targets) can be resolved

Usage:
    chain = Chain(clock=ManualClock(1_700_000_000))
    with chain.atomic("vault.buy"):
        ...
"""

from __future__ import annotations

import contextlib
import copy
import logging
import threading
import time
from typing import Any, Callable, Iterator

from pegvault_core.errors import VaultError
from pegvault_core.events import EventLog

logger = logging.getLogger("pegvault.chain")

ZERO_ADDRESS = ""


class ManualClock:
    """Deterministic clock for tests and simulations."""

    def __init__(self, start: int = 1_700_000_000):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: int) -> int:
        self.value += seconds
        return self.value

    def set(self, value: int) -> None:
        self.value = value


class Chain:
    """
    Single-writer host for a set of components.

    A component takes part in rollback by listing the attribute names that
    hold its mutable state in ``_STATE_FIELDS``.
    """

    def __init__(self, clock: Callable[[], float] | None = None):
        self._clock = clock or time.time
        self._last_now = 0
        self._lock = threading.RLock()
        self._depth = 0
        self._contracts: dict[str, Any] = {}
        self.events = EventLog()

    # ── time ─────────────────────────────────────────────────────

    def now(self) -> int:
        with self._lock:
            t = int(self._clock())
            if t < self._last_now:
                t = self._last_now
            self._last_now = t
            return t

    # ── address book ─────────────────────────────────────────────

    def register(self, component: Any) -> None:
        address = getattr(component, "address", ZERO_ADDRESS)
        if not address:
            raise ValueError("component must have a non-empty address")
        if address in self._contracts:
            raise ValueError(f"address {address} already registered")
        self._contracts[address] = component
        logger.debug(f"Registered {type(component).__name__} at {address}")

    def contract_at(self, address: str) -> Any | None:
        return self._contracts.get(address)

    @property
    def contracts(self) -> dict[str, Any]:
        return dict(self._contracts)

    def emit(self, name: str, contract: str, **fields: Any):
        ev = self.events.emit(name, contract, self.now(), **fields)
        logger.debug(f"{name} from {contract}", extra={"event": ev.to_dict()})
        return ev

    # ── atomicity ────────────────────────────────────────────────

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def _snapshot(self) -> dict:
        state = {}
        for address, component in self._contracts.items():
            fields = getattr(component, "_STATE_FIELDS", ())
            state[address] = {
                name: copy.deepcopy(getattr(component, name)) for name in fields
            }
        return {"contracts": state, "events": len(self.events)}

    def _restore(self, snap: dict) -> None:
        for address, fields in snap["contracts"].items():
            component = self._contracts.get(address)
            if component is None:
                continue
            for name, value in fields.items():
                setattr(component, name, value)
        self.events.truncate(snap["events"])

    @contextlib.contextmanager
    def atomic(self, label: str = "tx") -> Iterator[None]:
        """
        Run the enclosed block as one transaction.

        Nested scopes join the outermost one; only the outermost scope
        snapshots and restores.
        """
        with self._lock:
            outermost = self._depth == 0
            snap = self._snapshot() if outermost else None
            self._depth += 1
            try:
                yield
            except BaseException as exc:
                if outermost:
                    self._restore(snap)
                    log = logger.info if isinstance(exc, VaultError) else logger.warning
                    log(f"Rolled back {label}: {type(exc).__name__}: {exc}")
                raise
            finally:
                self._depth -= 1
