"""
Vault — conversion and reserve engine for PegVault.

Users buy the pegged token (TRST) with TRX or USDT and sell it back for
either, at the vault's mirrored TRX/USD price:

  buy   gross_usd = amount                     (USDT, 1:1)
        gross_usd = amount * rate // 1e6       (TRX)
        fee       = gross_usd * buy_fee_bps // 10000
        minted    = gross_usd - fee

  sell  fee       = tokens * sell_fee_bps // 10000
        net       = tokens - fee
        payout    = net * 1e6 // rate          (TRX)
        payout    = net                        (USDT)
        the full ``tokens`` amount is burned

Reserve counters track inflows and outflows per currency.  Fees are not
kept in a separate bucket: they stay in the same counters users redeem
against, so ``collect_fees`` competes with redemptions for liquidity.

The mirrored price has two writers with independent gates:

  - the configured price oracle (push path, only ``price > 0`` is checked)
  - the vault owner (bypass path, gated by the vault's own
    ``min_price_update_period`` and ``max_price_deviation_bps``)

Every mutating operation runs atomically and is followed by the
invariant checks in :mod:`pegvault_core.invariants`.
"""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass
from typing import Iterator

from pegvault_core.access import PATH_OWNER, VaultAccessPolicy
from pegvault_core.chain import Chain
from pegvault_core.errors import (
    BurnFailed,
    DeviationTooHigh,
    FeeTooHigh,
    InsufficientAllowance,
    InsufficientBalance,
    InsufficientReserve,
    InvalidInput,
    InvalidPrice,
    InvariantViolation,
    MintFailed,
    PayoutFailed,
    TransferFailed,
    ZeroAddress,
    ZeroAmount,
)
from pegvault_core.invariants import InvariantChecker
from pegvault_core.ledger import NativeLedger, TokenCapability
from pegvault_core.oracle import PriceState, check_price_bounds
from pegvault_core.ownership import OwnableMixin, Ownership
from pegvault_core.precision import (
    DEFAULT_BUY_FEE_BPS,
    DEFAULT_MAX_DEVIATION_BPS,
    DEFAULT_MIN_UPDATE_INTERVAL,
    DEFAULT_SELL_FEE_BPS,
    MAX_DEVIATION_CEILING_BPS,
    MAX_FEE_BPS,
    apply_fee,
    format_amount,
    format_price,
    native_to_usd,
    usd_to_native,
)

logger = logging.getLogger("pegvault.vault")

CURRENCY_NATIVE = "native"
CURRENCY_STABLE = "stable"
CURRENCIES = (CURRENCY_NATIVE, CURRENCY_STABLE)


@dataclass
class VaultConfig:
    buy_fee_bps: int = DEFAULT_BUY_FEE_BPS
    sell_fee_bps: int = DEFAULT_SELL_FEE_BPS
    max_price_deviation_bps: int = DEFAULT_MAX_DEVIATION_BPS
    min_price_update_period: int = DEFAULT_MIN_UPDATE_INTERVAL

    def to_dict(self) -> dict:
        return {
            "buy_fee_bps": self.buy_fee_bps,
            "sell_fee_bps": self.sell_fee_bps,
            "max_price_deviation_bps": self.max_price_deviation_bps,
            "min_price_update_period": self.min_price_update_period,
        }


@dataclass
class ReserveAccounting:
    """Running counters; bookkeeping only, never reconciled automatically."""
    total_native: int = 0
    total_stable: int = 0
    total_minted: int = 0
    total_burned: int = 0

    def to_dict(self) -> dict:
        return {
            "total_native": self.total_native,
            "total_stable": self.total_stable,
            "total_minted": self.total_minted,
            "total_burned": self.total_burned,
        }


@dataclass(frozen=True)
class Quote:
    """Result of a conversion, computed exactly as the real operation does."""
    side: str            # "buy" or "sell"
    currency: str        # "native" or "stable"
    amount_in: int
    gross: int           # gross USD value (buy) or tokens in (sell)
    fee: int
    amount_out: int      # tokens minted (buy) or currency paid out (sell)
    rate: int

    def to_dict(self) -> dict:
        return {
            "side": self.side,
            "currency": self.currency,
            "amount_in": self.amount_in,
            "gross": self.gross,
            "fee": self.fee,
            "amount_out": self.amount_out,
            "rate": self.rate,
        }


def _check_fee(bps: int) -> None:
    if bps < 0 or bps > MAX_FEE_BPS:
        raise FeeTooHigh(f"fee must be 0-{MAX_FEE_BPS} bps, got {bps}")


def _check_deviation(bps: int) -> None:
    if bps < 0 or bps > MAX_DEVIATION_CEILING_BPS:
        raise DeviationTooHigh(
            f"max deviation must be 0-{MAX_DEVIATION_CEILING_BPS} bps, got {bps}")


def _check_currency(currency: str) -> None:
    if currency not in CURRENCIES:
        raise InvalidInput(f"currency must be one of {CURRENCIES}, got {currency!r}")


class Vault(OwnableMixin):
    """Buy / sell engine holding TRX and USDT reserves."""

    _STATE_FIELDS = ("price", "config", "reserves", "access")

    def __init__(self, chain: Chain, address: str, owner: str,
                 pegged: TokenCapability, stable: TokenCapability,
                 native: NativeLedger, initial_price: int, *,
                 fee_collector: str | None = None,
                 buy_fee_bps: int = DEFAULT_BUY_FEE_BPS,
                 sell_fee_bps: int = DEFAULT_SELL_FEE_BPS,
                 max_price_deviation_bps: int = DEFAULT_MAX_DEVIATION_BPS,
                 min_price_update_period: int = DEFAULT_MIN_UPDATE_INTERVAL,
                 price_oracle: str = ""):
        if initial_price <= 0:
            raise InvalidPrice("initial price must be positive")
        _check_fee(buy_fee_bps)
        _check_fee(sell_fee_bps)
        _check_deviation(max_price_deviation_bps)
        if min_price_update_period < 0:
            raise InvalidInput("min price update period cannot be negative")

        self.chain = chain
        self.address = address
        self.pegged = pegged
        self.stable = stable
        self.native = native
        self.price = PriceState(initial_price, 0)
        self.config = VaultConfig(
            buy_fee_bps=buy_fee_bps,
            sell_fee_bps=sell_fee_bps,
            max_price_deviation_bps=max_price_deviation_bps,
            min_price_update_period=min_price_update_period,
        )
        self.reserves = ReserveAccounting()
        self.access = VaultAccessPolicy(
            Ownership(owner),
            price_oracle=price_oracle,
            fee_collector=fee_collector or owner,
        )
        chain.register(self)

    # ── plumbing ─────────────────────────────────────────────────

    @contextlib.contextmanager
    def _operation(self, label: str) -> Iterator[None]:
        """Atomic scope plus invariant verification for one operation."""
        with self.chain.atomic(f"vault.{label}"):
            checker = InvariantChecker()
            checker.capture(self)
            yield
            ok, msg = checker.verify(self)
            if not ok:
                logger.error(f"Invariant failure in {label}: {msg}")
                raise InvariantViolation(checker.violations)

    def _mint(self, to: str, amount: int) -> None:
        if not self.pegged.mint(self.address, to, amount):
            raise MintFailed(f"pegged ledger refused to mint {amount} to {to}")
        self.reserves.total_minted += amount

    def _burn(self, account: str, amount: int) -> None:
        if not self.pegged.burn(self.address, account, amount):
            raise BurnFailed(f"pegged ledger refused to burn {amount} from {account}")
        self.reserves.total_burned += amount

    def _pay_native(self, to: str, amount: int) -> None:
        if not self.native.send(self.address, to, amount):
            raise PayoutFailed(f"TRX payout of {amount} to {to} failed")

    def _pay_stable(self, to: str, amount: int) -> None:
        if not self.stable.transfer(self.address, to, amount):
            raise TransferFailed(f"USDT transfer of {amount} to {to} failed")

    def _debit_reserve(self, currency: str, amount: int) -> None:
        if currency == CURRENCY_NATIVE:
            if self.reserves.total_native < amount:
                raise InsufficientReserve(
                    f"native reserve {self.reserves.total_native} < {amount}")
            self.reserves.total_native -= amount
        else:
            if self.reserves.total_stable < amount:
                raise InsufficientReserve(
                    f"stable reserve {self.reserves.total_stable} < {amount}")
            self.reserves.total_stable -= amount

    # ── quotes ───────────────────────────────────────────────────

    def quote_buy(self, currency: str, amount: int) -> Quote:
        _check_currency(currency)
        if currency == CURRENCY_NATIVE:
            gross = native_to_usd(amount, self.price.rate)
        else:
            gross = amount
        net, fee = apply_fee(gross, self.config.buy_fee_bps)
        return Quote("buy", currency, amount, gross, fee, net, self.price.rate)

    def quote_sell(self, currency: str, token_amount: int) -> Quote:
        _check_currency(currency)
        net, fee = apply_fee(token_amount, self.config.sell_fee_bps)
        if currency == CURRENCY_NATIVE:
            payout = usd_to_native(net, self.price.rate)
        else:
            payout = net
        return Quote("sell", currency, token_amount, token_amount, fee, payout,
                     self.price.rate)

    # ── buying ───────────────────────────────────────────────────

    def buy_with_native(self, caller: str, value: int) -> int:
        """
        Attach *value* sun to the call and mint TRST for it.
        Returns the amount minted.
        """
        with self._operation("buy_with_native"):
            if value <= 0:
                raise ZeroAmount("no TRX attached")
            quote = self.quote_buy(CURRENCY_NATIVE, value)
            if not self.native.send(caller, self.address, value):
                raise InsufficientBalance(
                    f"{caller} cannot attach {value} sun "
                    f"(balance {self.native.balance_of(caller)})")
            self._mint(caller, quote.amount_out)
            self.reserves.total_native += value
            self.chain.emit("TokensPurchased", self.address,
                            buyer=caller, amount_in=value,
                            tokens_out=quote.amount_out, currency=CURRENCY_NATIVE)
        logger.info(
            f"{caller} bought {format_amount(quote.amount_out)} for "
            f"{format_amount(value, 'TRX')} (fee {format_amount(quote.fee, 'USD')})")
        return quote.amount_out

    def buy_with_stable(self, caller: str, amount: int) -> int:
        """
        Pull *amount* USDT (pre-approved) and mint TRST for it.
        Returns the amount minted.
        """
        with self._operation("buy_with_stable"):
            if amount <= 0:
                raise ZeroAmount("amount must be positive")
            allowed = self.stable.allowance(caller, self.address)
            if allowed < amount:
                raise InsufficientAllowance(
                    f"vault allowance {allowed} < {amount}")
            quote = self.quote_buy(CURRENCY_STABLE, amount)
            if not self.stable.transfer_from(self.address, caller,
                                             self.address, amount):
                raise TransferFailed(f"could not pull {amount} USDT from {caller}")
            self._mint(caller, quote.amount_out)
            self.reserves.total_stable += amount
            self.chain.emit("TokensPurchased", self.address,
                            buyer=caller, amount_in=amount,
                            tokens_out=quote.amount_out, currency=CURRENCY_STABLE)
        logger.info(
            f"{caller} bought {format_amount(quote.amount_out)} for "
            f"{format_amount(amount, 'USDT')}")
        return quote.amount_out

    # ── selling ──────────────────────────────────────────────────

    def _sell(self, caller: str, token_amount: int, currency: str) -> int:
        if token_amount <= 0:
            raise ZeroAmount("amount must be positive")
        held = self.pegged.balance_of(caller)
        if held < token_amount:
            raise InsufficientBalance(f"{caller} holds {held} < {token_amount}")
        quote = self.quote_sell(currency, token_amount)
        self._debit_reserve(currency, quote.amount_out)
        self._burn(caller, token_amount)
        if currency == CURRENCY_NATIVE:
            self._pay_native(caller, quote.amount_out)
        else:
            self._pay_stable(caller, quote.amount_out)
        self.chain.emit("TokensSold", self.address,
                        seller=caller, tokens_in=token_amount,
                        amount_out=quote.amount_out, currency=currency)
        return quote.amount_out

    def sell_for_native(self, caller: str, token_amount: int) -> int:
        """Burn *token_amount* TRST and pay out TRX.  Returns sun paid."""
        with self._operation("sell_for_native"):
            payout = self._sell(caller, token_amount, CURRENCY_NATIVE)
        logger.info(
            f"{caller} sold {format_amount(token_amount)} for "
            f"{format_amount(payout, 'TRX')}")
        return payout

    def sell_for_stable(self, caller: str, token_amount: int) -> int:
        """Burn *token_amount* TRST and pay out USDT.  Returns USDT paid."""
        with self._operation("sell_for_stable"):
            payout = self._sell(caller, token_amount, CURRENCY_STABLE)
        logger.info(
            f"{caller} sold {format_amount(token_amount)} for "
            f"{format_amount(payout, 'USDT')}")
        return payout

    # ── fees and withdrawals ─────────────────────────────────────

    def collect_fees(self, caller: str, native_amount: int,
                     stable_amount: int) -> None:
        """
        Pay *native_amount* / *stable_amount* to the fee collector.

        Draws from the same counters users redeem against.
        """
        with self._operation("collect_fees"):
            self.access.require_fee_collector_or_owner(caller)
            if native_amount < 0 or stable_amount < 0:
                raise InvalidInput("amounts cannot be negative")
            if native_amount == 0 and stable_amount == 0:
                raise ZeroAmount("nothing to collect")
            collector = self.access.fee_collector
            if native_amount:
                self._debit_reserve(CURRENCY_NATIVE, native_amount)
                self._pay_native(collector, native_amount)
            if stable_amount:
                self._debit_reserve(CURRENCY_STABLE, stable_amount)
                self._pay_stable(collector, stable_amount)
            self.chain.emit("FeesCollected", self.address,
                            collector=collector, native_amount=native_amount,
                            stable_amount=stable_amount)
        logger.info(
            f"Fees collected by {collector}: "
            f"{format_amount(native_amount, 'TRX')}, "
            f"{format_amount(stable_amount, 'USDT')}")

    def emergency_withdraw(self, caller: str, to: str, native_amount: int,
                           stable_amount: int) -> None:
        """Owner-only circuit breaker; checks nothing but reserve sufficiency."""
        with self._operation("emergency_withdraw"):
            self.access.require_owner(caller)
            if not to:
                raise ZeroAddress("recipient cannot be the zero address")
            if native_amount < 0 or stable_amount < 0:
                raise InvalidInput("amounts cannot be negative")
            if native_amount:
                self._debit_reserve(CURRENCY_NATIVE, native_amount)
                self._pay_native(to, native_amount)
            if stable_amount:
                self._debit_reserve(CURRENCY_STABLE, stable_amount)
                self._pay_stable(to, stable_amount)
            self.chain.emit("EmergencyWithdraw", self.address,
                            to=to, native_amount=native_amount,
                            stable_amount=stable_amount)
        logger.warning(
            f"EMERGENCY withdraw to {to}: {format_amount(native_amount, 'TRX')}, "
            f"{format_amount(stable_amount, 'USDT')}")

    # ── price ────────────────────────────────────────────────────

    def update_trx_price(self, caller: str, new_price: int) -> None:
        """
        Write the mirrored price.

        From the price oracle this is an unconditional push; from the owner
        it is gated by the vault's own period and deviation bounds.
        """
        with self._operation("update_trx_price"):
            path = self.access.price_path(caller)
            if new_price <= 0:
                raise InvalidPrice("price must be positive")
            now = self.chain.now()
            if path == PATH_OWNER:
                check_price_bounds(
                    self.price, new_price, now,
                    self.config.max_price_deviation_bps,
                    self.config.min_price_update_period)
            old = self.price.rate
            self.price = PriceState(new_price, now)
            self.chain.emit("TrxPriceUpdated", self.address,
                            new_price=new_price, old_price=old,
                            source=caller, path=path)
        logger.info(
            f"Mirrored price {format_price(old)} -> {format_price(new_price)} "
            f"via {path}")

    def get_trx_price(self) -> int:
        return self.price.rate

    # ── administration ───────────────────────────────────────────

    def _set_fee(self, caller: str, kind: str, bps: int) -> None:
        with self._operation(f"set_{kind}_fee"):
            self.access.require_owner(caller)
            _check_fee(bps)
            attr = f"{kind}_fee_bps"
            old = getattr(self.config, attr)
            setattr(self.config, attr, bps)
            self.chain.emit("FeeUpdated", self.address, kind=kind, old=old, new=bps)
        logger.info(f"{kind} fee {old} -> {bps} bps")

    def set_buy_fee(self, caller: str, bps: int) -> None:
        self._set_fee(caller, "buy", bps)

    def set_sell_fee(self, caller: str, bps: int) -> None:
        self._set_fee(caller, "sell", bps)

    def set_fee_collector(self, caller: str, collector: str) -> None:
        with self._operation("set_fee_collector"):
            self.access.require_owner(caller)
            if not collector:
                raise ZeroAddress("fee collector cannot be the zero address")
            old = self.access.fee_collector
            self.access.fee_collector = collector
            self.chain.emit("FeeCollectorUpdated", self.address,
                            old=old, new=collector)

    def set_price_oracle(self, caller: str, oracle: str) -> None:
        with self._operation("set_price_oracle"):
            self.access.require_owner(caller)
            if not oracle:
                raise ZeroAddress("price oracle cannot be the zero address")
            old = self.access.price_oracle
            self.access.price_oracle = oracle
            self.chain.emit("PriceOracleUpdated", self.address,
                            old=old, new=oracle)
        logger.info(f"Price oracle {old or '<none>'} -> {oracle}")

    def set_min_price_update_period(self, caller: str, seconds: int) -> None:
        with self._operation("set_min_price_update_period"):
            self.access.require_owner(caller)
            if seconds < 0:
                raise InvalidInput("period cannot be negative")
            old = self.config.min_price_update_period
            self.config.min_price_update_period = seconds
            self.chain.emit("MinIntervalUpdated", self.address,
                            old=old, new=seconds)

    def set_max_price_deviation(self, caller: str, bps: int) -> None:
        with self._operation("set_max_price_deviation"):
            self.access.require_owner(caller)
            _check_deviation(bps)
            old = self.config.max_price_deviation_bps
            self.config.max_price_deviation_bps = bps
            self.chain.emit("MaxDeviationUpdated", self.address, old=old, new=bps)

    # ── reporting ────────────────────────────────────────────────

    @property
    def fee_collector(self) -> str:
        return self.access.fee_collector

    @property
    def price_oracle(self) -> str:
        return self.access.price_oracle

    def reconcile(self) -> dict:
        """
        Compare reserve counters with what the vault actually holds.

        Report only: a positive drift (more held than counted) is normal
        when value is sent to the vault directly; a negative drift means
        payouts counted as available will fail.
        """
        held_native = self.native.balance_of(self.address)
        held_stable = self.stable.balance_of(self.address)
        report = {
            CURRENCY_NATIVE: {
                "counter": self.reserves.total_native,
                "held": held_native,
                "drift": held_native - self.reserves.total_native,
            },
            CURRENCY_STABLE: {
                "counter": self.reserves.total_stable,
                "held": held_stable,
                "drift": held_stable - self.reserves.total_stable,
            },
        }
        for currency, row in report.items():
            if row["drift"] < 0:
                logger.warning(
                    f"{currency} reserve counter exceeds holdings by "
                    f"{-row['drift']}")
        return report

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "price": self.price.to_dict(),
            "config": self.config.to_dict(),
            "reserves": self.reserves.to_dict(),
            "pegged_supply": self.pegged.total_supply,
            **self.access.to_dict(),
        }
