"""
Access-control policies, one per component.

Each component asks its policy before doing anything privileged, so the
whole authorization surface of a component is readable in one place and
can be tested without the component around it.

All role holders are plain addresses compared by equality; the zero
address ("") never matches any role.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from pegvault_core.errors import (
    AlreadyUpdater,
    NotAnUpdater,
    Unauthorized,
    ZeroAddress,
)
from pegvault_core.ownership import Ownership

PATH_ORACLE = "oracle"
PATH_OWNER = "owner"


@dataclass
class AccessPolicy:
    ownership: Ownership

    def require_owner(self, caller: str) -> None:
        self.ownership.require_owner(caller)

    def to_dict(self) -> dict:
        return self.ownership.to_dict()


@dataclass
class OracleAccessPolicy(AccessPolicy):
    """Owner plus a set of price updaters (the owner is always an updater)."""
    updaters: set[str] = field(default_factory=set)

    def is_updater(self, address: str) -> bool:
        return address in self.updaters or self.ownership.is_owner(address)

    def require_updater(self, caller: str) -> None:
        if not self.is_updater(caller):
            raise Unauthorized(f"{caller or '<zero>'} is not an authorized updater")

    def add_updater(self, caller: str, updater: str) -> None:
        self.require_owner(caller)
        if not updater:
            raise ZeroAddress("updater cannot be the zero address")
        if updater in self.updaters:
            raise AlreadyUpdater(f"{updater} is already an updater")
        self.updaters.add(updater)

    def remove_updater(self, caller: str, updater: str) -> None:
        self.require_owner(caller)
        if updater not in self.updaters:
            raise NotAnUpdater(f"{updater} is not an updater")
        self.updaters.discard(updater)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["updaters"] = sorted(self.updaters)
        return d


@dataclass
class VaultAccessPolicy(AccessPolicy):
    """Owner, the designated price source, and the fee collector."""
    price_oracle: str = ""
    fee_collector: str = ""

    def price_path(self, caller: str) -> str:
        """
        Which gate a price write from *caller* goes through.

        The oracle push is checked first, so an owner that is also the
        configured oracle address uses the unbounded push path.
        """
        if caller and caller == self.price_oracle:
            return PATH_ORACLE
        if self.ownership.is_owner(caller):
            return PATH_OWNER
        raise Unauthorized(f"{caller or '<zero>'} may not update the price")

    def require_fee_collector_or_owner(self, caller: str) -> None:
        if caller and caller == self.fee_collector:
            return
        if self.ownership.is_owner(caller):
            return
        raise Unauthorized(f"{caller or '<zero>'} may not collect fees")

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["price_oracle"] = self.price_oracle
        d["fee_collector"] = self.fee_collector
        return d


@dataclass
class LedgerAccessPolicy(AccessPolicy):
    """Mint/burn are reserved for one vault identity plus the owner."""
    vault: str = ""

    def can_mint(self, caller: str) -> bool:
        if caller and caller == self.vault:
            return True
        return self.ownership.is_owner(caller)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["vault"] = self.vault
        return d
