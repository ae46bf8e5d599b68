"""
Exception types for PegVault.

Every public operation either completes or raises one of these before
any state is observably changed.  Nothing here is retried internally;
retrying is the caller's decision.
"""

from __future__ import annotations


class VaultError(Exception):
    """Base class for every rejected operation."""


# ── Authorization ────────────────────────────────────────────────────

class Unauthorized(VaultError):
    """Caller does not hold the role the operation requires."""


# ── Input validation ────────────────────────────────────────────────

class InvalidInput(VaultError):
    """Malformed or out-of-range argument."""


class ZeroAmount(InvalidInput):
    pass


class ZeroAddress(InvalidInput):
    pass


class InvalidPrice(InvalidInput):
    pass


class FeeTooHigh(InvalidInput):
    pass


class DeviationTooHigh(InvalidInput):
    pass


class AlreadyUpdater(InvalidInput):
    pass


class NotAnUpdater(InvalidInput):
    pass


# ── Price gatekeeping ───────────────────────────────────────────────

class RateLimited(VaultError):
    """Minimum interval between price updates has not elapsed."""

    def __init__(self, message: str, retry_at: int | None = None) -> None:
        self.retry_at = retry_at
        super().__init__(message)


TooSoon = RateLimited


class DeviationExceeded(VaultError):
    """Proposed price moves further than the configured bound."""


# ── Funds ───────────────────────────────────────────────────────────

class InsufficientBalance(VaultError):
    pass


class InsufficientAllowance(VaultError):
    pass


class InsufficientReserve(VaultError):
    pass


# ── Downstream calls ────────────────────────────────────────────────

class ExternalCallFailed(VaultError):
    """A mint, burn, transfer, payout or price push was refused."""


class TransferFailed(ExternalCallFailed):
    pass


class MintFailed(ExternalCallFailed):
    pass


class BurnFailed(ExternalCallFailed):
    pass


class PayoutFailed(ExternalCallFailed):
    pass


class PushFailed(ExternalCallFailed):
    pass


# ── Post-operation checks ───────────────────────────────────────────

class InvariantViolation(VaultError):
    """Raised when a post-state violates one or more invariants."""

    def __init__(self, violations: list[str]) -> None:
        self.violations = violations
        super().__init__(f"invariant violations: {'; '.join(violations)}")
