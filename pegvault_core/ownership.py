"""
Two-step ownership handoff.

States:
    active   — ``owner`` set, no candidate
    pending  — ``owner`` set, ``pending_owner`` proposed but not accepted

Transitions:
    propose(caller, candidate)   caller must be the current owner
    accept(caller)               caller must be the pending candidate

A second proposal simply replaces the candidate.  The owner keeps full
authority until the candidate accepts.
"""

from __future__ import annotations

from dataclasses import dataclass

from pegvault_core.errors import Unauthorized, ZeroAddress

STATE_ACTIVE = "active"
STATE_PENDING = "pending"


@dataclass
class Ownership:
    owner: str
    pending_owner: str = ""

    def __post_init__(self) -> None:
        if not self.owner:
            raise ZeroAddress("owner cannot be the zero address")

    @property
    def state(self) -> str:
        return STATE_PENDING if self.pending_owner else STATE_ACTIVE

    def is_owner(self, address: str) -> bool:
        return bool(address) and address == self.owner

    def require_owner(self, caller: str) -> None:
        if not self.is_owner(caller):
            raise Unauthorized(f"{caller or '<zero>'} is not the owner")

    def propose(self, caller: str, candidate: str) -> tuple[str, str]:
        """Start a handoff.  Returns ``(owner, candidate)``."""
        self.require_owner(caller)
        if not candidate:
            raise ZeroAddress("new owner cannot be the zero address")
        self.pending_owner = candidate
        return self.owner, candidate

    def accept(self, caller: str) -> tuple[str, str]:
        """Complete a handoff.  Returns ``(previous_owner, new_owner)``."""
        if not self.pending_owner or caller != self.pending_owner:
            raise Unauthorized(f"{caller or '<zero>'} is not the pending owner")
        previous = self.owner
        self.owner = caller
        self.pending_owner = ""
        return previous, caller

    def to_dict(self) -> dict:
        return {
            "owner": self.owner,
            "pending_owner": self.pending_owner,
            "state": self.state,
        }


class OwnableMixin:
    """
    Adds ``transfer_ownership`` / ``accept_ownership`` to a component whose
    access policy carries an :class:`Ownership` and which has ``chain`` and
    ``address`` attributes.
    """

    @property
    def owner(self) -> str:
        return self.access.ownership.owner

    @property
    def pending_owner(self) -> str:
        return self.access.ownership.pending_owner

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        with self.chain.atomic(f"{self.address}.transfer_ownership"):
            previous, candidate = self.access.ownership.propose(caller, new_owner)
            self.chain.emit("OwnershipTransferStarted", self.address,
                            previous_owner=previous, new_owner=candidate)

    def accept_ownership(self, caller: str) -> None:
        with self.chain.atomic(f"{self.address}.accept_ownership"):
            previous, new = self.access.ownership.accept(caller)
            self.chain.emit("OwnershipTransferred", self.address,
                            previous_owner=previous, new_owner=new)
