"""
TRX/USD price oracle for PegVault.

Holds the current price (USD per TRX, scaled by 1e6) and pushes every
accepted price into the vault's mirrored copy.  Updates go through a
bounded protocol:

  - update_price:       updater or owner; rate-limited by
                        ``min_update_interval`` and bounded by
                        ``max_deviation_bps`` relative to the current price
  - force_update_price: owner only; skips interval and deviation checks
                        (emergency override), still rejects zero

The push to the vault happens inside the same atomic scope as the local
update: if the vault refuses, neither copy changes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pegvault_core.access import OracleAccessPolicy
from pegvault_core.chain import Chain
from pegvault_core.errors import (
    DeviationExceeded,
    DeviationTooHigh,
    InvalidInput,
    InvalidPrice,
    PushFailed,
    TooSoon,
    VaultError,
)
from pegvault_core.ownership import OwnableMixin, Ownership
from pegvault_core.precision import (
    DEFAULT_MAX_DEVIATION_BPS,
    DEFAULT_MIN_UPDATE_INTERVAL,
    MAX_DEVIATION_CEILING_BPS,
    deviation_bps,
    exceeds_deviation,
    format_price,
)

logger = logging.getLogger("pegvault.oracle")


@dataclass
class PriceState:
    """A price cell: scaled rate plus the time it was last written."""
    rate: int
    last_update_time: int

    def __post_init__(self) -> None:
        if self.rate <= 0:
            raise InvalidPrice("price must be positive")

    def to_dict(self) -> dict:
        return {
            "rate": self.rate,
            "display": format_price(self.rate),
            "last_update_time": self.last_update_time,
        }


@dataclass
class OracleConfig:
    max_deviation_bps: int = DEFAULT_MAX_DEVIATION_BPS
    min_update_interval: int = DEFAULT_MIN_UPDATE_INTERVAL

    def to_dict(self) -> dict:
        return {
            "max_deviation_bps": self.max_deviation_bps,
            "min_update_interval": self.min_update_interval,
        }


def check_price_bounds(state: PriceState, new_rate: int, now: int,
                       max_deviation_bps: int, min_interval: int) -> None:
    """
    Shared gate for bounded price writes.  Raises ``TooSoon`` or
    ``DeviationExceeded``; the caller has already rejected zero.
    A cell that was never written (time 0) is not rate-limited.
    """
    ready_at = state.last_update_time + min_interval
    if state.last_update_time and now < ready_at:
        raise TooSoon(
            f"price updated {now - state.last_update_time}s ago, "
            f"minimum interval is {min_interval}s", retry_at=ready_at)
    if exceeds_deviation(state.rate, new_rate, max_deviation_bps):
        raise DeviationExceeded(
            f"move of {deviation_bps(state.rate, new_rate)} bps exceeds "
            f"{max_deviation_bps} bps")


class PriceOracle(OwnableMixin):
    """Access-controlled, rate-limited TRX/USD price source."""

    _STATE_FIELDS = ("price", "config", "access", "vault")

    def __init__(self, chain: Chain, address: str, owner: str, vault: str,
                 initial_price: int,
                 max_deviation_bps: int = DEFAULT_MAX_DEVIATION_BPS,
                 min_update_interval: int = DEFAULT_MIN_UPDATE_INTERVAL):
        if initial_price <= 0:
            raise InvalidPrice("initial price must be positive")
        if max_deviation_bps < 0 or max_deviation_bps > MAX_DEVIATION_CEILING_BPS:
            raise DeviationTooHigh(
                f"max deviation must be 0-{MAX_DEVIATION_CEILING_BPS} bps")
        if min_update_interval < 0:
            raise InvalidInput("min update interval cannot be negative")
        self.chain = chain
        self.address = address
        self.vault = vault
        # Never updated yet: the first bounded update is not rate-limited.
        self.price = PriceState(initial_price, 0)
        self.config = OracleConfig(max_deviation_bps, min_update_interval)
        self.access = OracleAccessPolicy(Ownership(owner))
        chain.register(self)

    # ── queries ──────────────────────────────────────────────────

    def get_price(self) -> int:
        return self.price.rate

    @property
    def last_update_time(self) -> int:
        return self.price.last_update_time

    @property
    def updaters(self) -> set[str]:
        return set(self.access.updaters)

    def is_updater(self, address: str) -> bool:
        return self.access.is_updater(address)

    def next_update_allowed_at(self) -> int:
        return self.price.last_update_time + self.config.min_update_interval

    def price_history(self, since: int | None = None) -> list[tuple[int, int]]:
        return self.chain.events.price_history(self.address, since)

    # ── price updates ────────────────────────────────────────────

    def _push(self, new_rate: int) -> None:
        target = self.chain.contract_at(self.vault)
        push = getattr(target, "update_trx_price", None)
        if push is None:
            raise PushFailed(f"no price receiver at {self.vault or '<zero>'}")
        try:
            push(self.address, new_rate)
        except VaultError as exc:
            raise PushFailed(
                f"vault rejected price push: {type(exc).__name__}: {exc}"
            ) from exc

    def _write(self, caller: str, new_rate: int, event: str) -> int:
        old = self.price.rate
        self.price = PriceState(new_rate, self.chain.now())
        self._push(new_rate)
        self.chain.emit(event, self.address,
                        new_rate=new_rate, old_rate=old, updater=caller)
        return old

    def update_price(self, caller: str, new_rate: int) -> None:
        with self.chain.atomic("oracle.update_price"):
            self.access.require_updater(caller)
            if new_rate <= 0:
                raise InvalidPrice("price must be positive")
            check_price_bounds(
                self.price, new_rate, self.chain.now(),
                self.config.max_deviation_bps, self.config.min_update_interval)
            old = self._write(caller, new_rate, "PriceUpdated")
        logger.info(
            f"Price {format_price(old)} -> {format_price(new_rate)} "
            f"by {caller}")

    def force_update_price(self, caller: str, new_rate: int) -> None:
        with self.chain.atomic("oracle.force_update_price"):
            self.access.require_owner(caller)
            if new_rate <= 0:
                raise InvalidPrice("price must be positive")
            old = self._write(caller, new_rate, "PriceForceUpdated")
        logger.warning(
            f"Price FORCED {format_price(old)} -> {format_price(new_rate)} "
            f"by {caller}")

    # ── administration ───────────────────────────────────────────

    def add_updater(self, caller: str, updater: str) -> None:
        with self.chain.atomic("oracle.add_updater"):
            self.access.add_updater(caller, updater)
            self.chain.emit("UpdaterAdded", self.address, updater=updater)
        logger.info(f"Updater added: {updater}")

    def remove_updater(self, caller: str, updater: str) -> None:
        with self.chain.atomic("oracle.remove_updater"):
            self.access.remove_updater(caller, updater)
            self.chain.emit("UpdaterRemoved", self.address, updater=updater)
        logger.info(f"Updater removed: {updater}")

    def set_max_deviation(self, caller: str, bps: int) -> None:
        with self.chain.atomic("oracle.set_max_deviation"):
            self.access.require_owner(caller)
            if bps < 0 or bps > MAX_DEVIATION_CEILING_BPS:
                raise DeviationTooHigh(
                    f"max deviation must be 0-{MAX_DEVIATION_CEILING_BPS} bps")
            old = self.config.max_deviation_bps
            self.config.max_deviation_bps = bps
            self.chain.emit("MaxDeviationUpdated", self.address, old=old, new=bps)

    def set_min_interval(self, caller: str, seconds: int) -> None:
        with self.chain.atomic("oracle.set_min_interval"):
            self.access.require_owner(caller)
            if seconds < 0:
                raise InvalidInput("interval cannot be negative")
            old = self.config.min_update_interval
            self.config.min_update_interval = seconds
            self.chain.emit("MinIntervalUpdated", self.address,
                            old=old, new=seconds)

    def set_vault(self, caller: str, vault: str) -> None:
        # The target is not checked for a price receiver; a wrong address
        # only shows up when the next push fails.
        with self.chain.atomic("oracle.set_vault"):
            self.access.require_owner(caller)
            old = self.vault
            self.vault = vault
            self.chain.emit("VaultChanged", self.address, old=old, new=vault)
        logger.info(f"Push target changed {old} -> {vault}")

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "vault": self.vault,
            "price": self.price.to_dict(),
            "config": self.config.to_dict(),
            "next_update_allowed_at": self.next_update_allowed_at(),
            **self.access.to_dict(),
        }
