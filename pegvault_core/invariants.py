"""
Post-operation invariant checks for the vault.

Every mutating vault operation captures a snapshot before it runs and
verifies the following afterwards:

  - The mirrored price is strictly positive
  - The price timestamp never moves backwards
  - Reserve counters are non-negative
  - Pegged supply changed by exactly (minted - burned) during the operation
  - Cumulative minted / burned totals only increase

If any invariant fails the operation is rolled back and rejected.

Reserve counters are *not* compared with the vault's actual holdings
here: they are bookkeeping only and can legitimately drift when value
arrives outside the modelled operations.  ``Vault.reconcile`` reports
that drift separately.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class VaultSnapshot:
    """Snapshot of key vault fields before an operation."""
    rate: int = 0
    last_price_update: int = 0
    total_native: int = 0
    total_stable: int = 0
    total_minted: int = 0
    total_burned: int = 0
    pegged_supply: int = 0


class InvariantChecker:
    """
    Captures a pre-operation snapshot of the vault and validates
    invariants after the operation body has run.
    """

    def __init__(self):
        self._snapshot: VaultSnapshot | None = None
        self.violations: list[str] = []

    def capture(self, vault) -> None:
        """Take a snapshot of the vault state before an operation."""
        self._snapshot = VaultSnapshot(
            rate=vault.price.rate,
            last_price_update=vault.price.last_update_time,
            total_native=vault.reserves.total_native,
            total_stable=vault.reserves.total_stable,
            total_minted=vault.reserves.total_minted,
            total_burned=vault.reserves.total_burned,
            pegged_supply=vault.pegged.total_supply,
        )

    def verify(self, vault) -> tuple[bool, str]:
        """
        Verify all invariants against the current vault state.
        Returns (passed, error_message).
        """
        self.violations = []
        if self._snapshot is None:
            return True, ""

        for check in (
            self._check_price_positive,
            self._check_price_time_monotonic,
            self._check_reserves_non_negative,
            self._check_supply_delta,
            self._check_totals_monotonic,
        ):
            ok, msg = check(vault)
            if not ok:
                self.violations.append(msg)

        self._snapshot = None
        if self.violations:
            return False, "; ".join(self.violations)
        return True, ""

    def _check_price_positive(self, vault) -> tuple[bool, str]:
        if vault.price.rate <= 0:
            return False, f"Non-positive price: {vault.price.rate}"
        return True, ""

    def _check_price_time_monotonic(self, vault) -> tuple[bool, str]:
        snap = self._snapshot
        if vault.price.last_update_time < snap.last_price_update:
            return (False,
                    f"Price time went backwards: {snap.last_price_update} -> "
                    f"{vault.price.last_update_time}")
        return True, ""

    def _check_reserves_non_negative(self, vault) -> tuple[bool, str]:
        r = vault.reserves
        if r.total_native < 0:
            return False, f"Negative native reserve: {r.total_native}"
        if r.total_stable < 0:
            return False, f"Negative stable reserve: {r.total_stable}"
        return True, ""

    def _check_supply_delta(self, vault) -> tuple[bool, str]:
        """Only this operation's mints and burns may move pegged supply."""
        snap = self._snapshot
        mint_delta = vault.reserves.total_minted - snap.total_minted
        burn_delta = vault.reserves.total_burned - snap.total_burned
        expected = snap.pegged_supply + mint_delta - burn_delta
        if vault.pegged.total_supply != expected:
            return (False,
                    f"Supply mismatch: expected {expected}, "
                    f"got {vault.pegged.total_supply}")
        return True, ""

    def _check_totals_monotonic(self, vault) -> tuple[bool, str]:
        snap = self._snapshot
        if vault.reserves.total_minted < snap.total_minted:
            return False, "total_minted decreased"
        if vault.reserves.total_burned < snap.total_burned:
            return False, "total_burned decreased"
        return True, ""
