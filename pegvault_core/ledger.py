"""
Token and native-coin ledgers used by the vault.

``TokenLedger`` is a TRC-20 style balance / allowance table.  The vault
consumes it through the :class:`TokenCapability` protocol twice: once for
the pegged unit (TRST), whose mint/burn is reserved for the vault
identity, and once for the second reserve currency (USDT).

``NativeLedger`` holds TRX balances and models value transfers, including
recipients that refuse incoming value.

Mutating calls return ``True``/``False`` like their on-chain counterparts
and never apply partially.  Only malformed arguments raise.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from pegvault_core.access import LedgerAccessPolicy
from pegvault_core.chain import Chain
from pegvault_core.errors import InvalidInput, ZeroAddress
from pegvault_core.ownership import OwnableMixin, Ownership
from pegvault_core.precision import TOKEN_DECIMALS

logger = logging.getLogger("pegvault.ledger")

NATIVE_LEDGER_ADDRESS = "native"


@runtime_checkable
class TokenCapability(Protocol):
    """What the vault needs from a token ledger."""

    address: str

    def balance_of(self, account: str) -> int: ...
    def allowance(self, owner: str, spender: str) -> int: ...
    def transfer(self, caller: str, to: str, amount: int) -> bool: ...
    def transfer_from(self, caller: str, sender: str, to: str,
                      amount: int) -> bool: ...
    def mint(self, caller: str, to: str, amount: int) -> bool: ...
    def burn(self, caller: str, account: str, amount: int) -> bool: ...


def _check_amount(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise InvalidInput(f"amount must be an integer, got {amount!r}")
    if amount < 0:
        raise InvalidInput(f"amount must be non-negative, got {amount}")


class TokenLedger(OwnableMixin):
    """Balance / allowance table with vault-gated mint and burn."""

    _STATE_FIELDS = ("balances", "allowances", "total_supply", "access")

    def __init__(self, chain: Chain, address: str, name: str, symbol: str,
                 owner: str, decimals: int = TOKEN_DECIMALS):
        self.chain = chain
        self.address = address
        self.name = name
        self.symbol = symbol
        self.decimals = decimals
        self.balances: dict[str, int] = {}
        self.allowances: dict[tuple[str, str], int] = {}
        self.total_supply: int = 0
        self.access = LedgerAccessPolicy(Ownership(owner))
        chain.register(self)

    # ---- queries ----

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get((owner, spender), 0)

    @property
    def vault(self) -> str:
        return self.access.vault

    # ---- internal moves ----

    def _move(self, sender: str, to: str, amount: int) -> bool:
        if not to:
            raise ZeroAddress("cannot transfer to the zero address")
        if self.balance_of(sender) < amount:
            logger.debug(
                f"{self.symbol}: transfer refused, {sender} holds "
                f"{self.balance_of(sender)} < {amount}")
            return False
        self.balances[sender] = self.balance_of(sender) - amount
        self.balances[to] = self.balance_of(to) + amount
        self.chain.emit("Transfer", self.address,
                        sender=sender, recipient=to, amount=amount)
        return True

    # ---- TRC-20 surface ----

    def transfer(self, caller: str, to: str, amount: int) -> bool:
        _check_amount(amount)
        with self.chain.atomic(f"{self.symbol}.transfer"):
            return self._move(caller, to, amount)

    def approve(self, caller: str, spender: str, amount: int) -> bool:
        _check_amount(amount)
        if not spender:
            raise ZeroAddress("cannot approve the zero address")
        with self.chain.atomic(f"{self.symbol}.approve"):
            self.allowances[(caller, spender)] = amount
            self.chain.emit("Approval", self.address,
                            owner=caller, spender=spender, amount=amount)
            return True

    def transfer_from(self, caller: str, sender: str, to: str,
                      amount: int) -> bool:
        _check_amount(amount)
        with self.chain.atomic(f"{self.symbol}.transfer_from"):
            allowed = self.allowance(sender, caller)
            if allowed < amount:
                logger.debug(
                    f"{self.symbol}: transfer_from refused, allowance "
                    f"{allowed} < {amount}")
                return False
            if not self._move(sender, to, amount):
                return False
            self.allowances[(sender, caller)] = allowed - amount
            return True

    # ---- supply control ----

    def mint(self, caller: str, to: str, amount: int) -> bool:
        _check_amount(amount)
        if not to:
            raise ZeroAddress("cannot mint to the zero address")
        with self.chain.atomic(f"{self.symbol}.mint"):
            if not self.access.can_mint(caller):
                logger.info(f"{self.symbol}: mint refused for {caller}")
                return False
            self.balances[to] = self.balance_of(to) + amount
            self.total_supply += amount
            self.chain.emit("Transfer", self.address,
                            sender="", recipient=to, amount=amount)
            return True

    def burn(self, caller: str, account: str, amount: int) -> bool:
        _check_amount(amount)
        with self.chain.atomic(f"{self.symbol}.burn"):
            if not self.access.can_mint(caller):
                logger.info(f"{self.symbol}: burn refused for {caller}")
                return False
            if self.balance_of(account) < amount:
                return False
            self.balances[account] = self.balance_of(account) - amount
            self.total_supply -= amount
            self.chain.emit("Transfer", self.address,
                            sender=account, recipient="", amount=amount)
            return True

    def set_vault(self, caller: str, vault: str) -> None:
        if not vault:
            raise ZeroAddress("vault cannot be the zero address")
        with self.chain.atomic(f"{self.symbol}.set_vault"):
            self.access.require_owner(caller)
            old = self.access.vault
            self.access.vault = vault
            self.chain.emit("VaultIdentityChanged", self.address,
                            old=old, new=vault)
        logger.info(f"{self.symbol}: vault identity set to {vault}")

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "name": self.name,
            "symbol": self.symbol,
            "decimals": self.decimals,
            "total_supply": self.total_supply,
            "holders": sum(1 for b in self.balances.values() if b > 0),
            **self.access.to_dict(),
        }


class NativeLedger:
    """TRX balances and value transfers."""

    _STATE_FIELDS = ("balances", "rejecting")

    symbol = "TRX"

    def __init__(self, chain: Chain, address: str = NATIVE_LEDGER_ADDRESS):
        self.chain = chain
        self.address = address
        self.balances: dict[str, int] = {}
        self.rejecting: set[str] = set()
        chain.register(self)

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)

    def credit(self, account: str, amount: int) -> None:
        """Create native value out of nothing (genesis / faucet)."""
        _check_amount(amount)
        if not account:
            raise ZeroAddress("cannot credit the zero address")
        with self.chain.atomic("native.credit"):
            self.balances[account] = self.balance_of(account) + amount

    def set_rejecting(self, account: str, rejecting: bool = True) -> None:
        """Mark *account* as refusing incoming value (reverting receive)."""
        with self.chain.atomic("native.set_rejecting"):
            if rejecting:
                self.rejecting.add(account)
            else:
                self.rejecting.discard(account)

    def send(self, sender: str, recipient: str, amount: int) -> bool:
        _check_amount(amount)
        if not recipient:
            raise ZeroAddress("cannot send to the zero address")
        # Checks and debit share one critical section
        with self.chain.atomic("native.send"):
            if recipient in self.rejecting:
                logger.debug(f"TRX: {recipient} rejected incoming value")
                return False
            if self.balance_of(sender) < amount:
                return False
            self.balances[sender] = self.balance_of(sender) - amount
            self.balances[recipient] = self.balance_of(recipient) + amount
            return True

    @property
    def total(self) -> int:
        return sum(self.balances.values())
