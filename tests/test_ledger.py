"""Tests for the TRC-20 style token ledger and the native TRX ledger."""

import threading
import time

import pytest

from pegvault_core.errors import InvalidInput, Unauthorized, ZeroAddress
from pegvault_core.ledger import NativeLedger, TokenCapability, TokenLedger


@pytest.fixture
def token(chain):
    t = TokenLedger(chain, "trst", "TRON Stable Token", "TRST", "owner")
    t.set_vault("owner", "vault")
    t.mint("owner", "alice", 1_000)
    return t


@pytest.fixture
def native(chain):
    n = NativeLedger(chain)
    n.credit("alice", 500)
    return n


class TestTokenLedger:
    def test_satisfies_capability(self, token):
        assert isinstance(token, TokenCapability)

    def test_transfer(self, token):
        assert token.transfer("alice", "bob", 300) is True
        assert token.balance_of("alice") == 700
        assert token.balance_of("bob") == 300
        assert token.total_supply == 1_000

    def test_transfer_insufficient_returns_false(self, token):
        assert token.transfer("alice", "bob", 1_001) is False
        assert token.balance_of("alice") == 1_000

    def test_transfer_to_zero_address(self, token):
        with pytest.raises(ZeroAddress):
            token.transfer("alice", "", 1)

    def test_negative_amount(self, token):
        with pytest.raises(InvalidInput):
            token.transfer("alice", "bob", -1)

    def test_bool_amount_rejected(self, token):
        with pytest.raises(InvalidInput):
            token.transfer("alice", "bob", True)

    def test_approve_and_transfer_from(self, token):
        assert token.approve("alice", "vault", 400)
        assert token.allowance("alice", "vault") == 400
        assert token.transfer_from("vault", "alice", "vault", 250)
        assert token.allowance("alice", "vault") == 150
        assert token.balance_of("vault") == 250

    def test_transfer_from_over_allowance(self, token):
        token.approve("alice", "vault", 10)
        assert token.transfer_from("vault", "alice", "vault", 11) is False
        assert token.allowance("alice", "vault") == 10

    def test_transfer_from_over_balance_keeps_allowance(self, token):
        token.approve("alice", "vault", 5_000)
        assert token.transfer_from("vault", "alice", "vault", 2_000) is False
        assert token.allowance("alice", "vault") == 5_000

    def test_mint_by_vault(self, token):
        assert token.mint("vault", "bob", 50)
        assert token.total_supply == 1_050

    def test_mint_by_stranger_refused(self, token):
        assert token.mint("alice", "alice", 50) is False
        assert token.total_supply == 1_000

    def test_burn(self, token):
        assert token.burn("vault", "alice", 400)
        assert token.balance_of("alice") == 600
        assert token.total_supply == 600

    def test_burn_more_than_balance(self, token):
        assert token.burn("vault", "alice", 1_001) is False
        assert token.total_supply == 1_000

    def test_burn_by_stranger_refused(self, token):
        assert token.burn("bob", "alice", 1) is False

    def test_transfer_events(self, token, chain):
        token.transfer("alice", "bob", 1)
        ev = chain.events.last("Transfer")
        assert (ev["sender"], ev["recipient"], ev["amount"]) == ("alice", "bob", 1)

    def test_set_vault_owner_only(self, token, chain):
        with pytest.raises(Unauthorized):
            token.set_vault("alice", "alice")
        token.set_vault("owner", "vault2")
        assert token.vault == "vault2"
        assert chain.events.last().name == "VaultIdentityChanged"
        # Old vault identity lost mint rights
        assert token.mint("vault", "bob", 1) is False

    def test_to_dict(self, token):
        d = token.to_dict()
        assert d["symbol"] == "TRST"
        assert d["total_supply"] == 1_000
        assert d["holders"] == 1
        assert d["vault"] == "vault"


class TestNativeLedger:
    def test_credit_and_balance(self, native):
        assert native.balance_of("alice") == 500
        assert native.total == 500

    def test_send(self, native):
        assert native.send("alice", "bob", 200)
        assert native.balance_of("bob") == 200
        assert native.total == 500

    def test_send_insufficient(self, native):
        assert native.send("alice", "bob", 501) is False

    def test_rejecting_recipient(self, native):
        native.set_rejecting("bob")
        assert native.send("alice", "bob", 1) is False
        native.set_rejecting("bob", False)
        assert native.send("alice", "bob", 1) is True

    def test_send_to_zero(self, native):
        with pytest.raises(ZeroAddress):
            native.send("alice", "", 1)


class _SlowNativeLedger(NativeLedger):
    """Widens the gap between reading a balance and acting on it."""

    def balance_of(self, account):
        value = super().balance_of(account)
        time.sleep(0.01)
        return value


class _SlowTokenLedger(TokenLedger):
    def balance_of(self, account):
        value = super().balance_of(account)
        time.sleep(0.01)
        return value


def _race(*calls):
    """Start every call at the same moment; return their results in order."""
    barrier = threading.Barrier(len(calls))
    results = [None] * len(calls)

    def run(i, fn):
        barrier.wait()
        results[i] = fn()

    threads = [threading.Thread(target=run, args=(i, fn)) for i, fn in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


class TestConcurrentLedgers:
    def test_racing_sends_cannot_overdraw(self, chain):
        native = _SlowNativeLedger(chain)
        native.credit("alice", 100)
        results = _race(lambda: native.send("alice", "r1", 100),
                        lambda: native.send("alice", "r2", 100))
        assert sorted(results) == [False, True]
        assert native.balance_of("alice") == 0
        assert native.balance_of("r1") + native.balance_of("r2") == 100
        assert native.total == 100

    def test_racing_burns_cannot_overdraw(self, chain):
        token = _SlowTokenLedger(chain, "trst", "TRST", "TRST", "owner")
        token.set_vault("owner", "vault")
        token.mint("vault", "alice", 1_000)
        results = _race(lambda: token.burn("vault", "alice", 1_000),
                        lambda: token.burn("vault", "alice", 1_000))
        assert sorted(results) == [False, True]
        assert token.balance_of("alice") == 0
        assert token.total_supply == 0

    def test_mint_sees_vault_change_made_by_another_thread(self, chain):
        token = TokenLedger(chain, "trst", "TRST", "TRST", "owner")
        token.set_vault("owner", "vault")
        results = []
        worker = threading.Thread(
            target=lambda: results.append(token.mint("vault", "alice", 1)))
        with chain.atomic("hold"):
            # The mint waits for the lock, then sees the new identity
            worker.start()
            time.sleep(0.05)
            token.set_vault("owner", "vault2")
        worker.join()
        assert results == [False]
        assert token.total_supply == 0
