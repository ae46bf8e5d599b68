"""Tests for two-step ownership and the per-component access policies."""

import pytest

from pegvault_core.access import (
    PATH_ORACLE,
    PATH_OWNER,
    LedgerAccessPolicy,
    OracleAccessPolicy,
    VaultAccessPolicy,
)
from pegvault_core.errors import (
    AlreadyUpdater,
    NotAnUpdater,
    Unauthorized,
    ZeroAddress,
)
from pegvault_core.ownership import Ownership


class TestOwnership:
    def test_initial_state(self):
        o = Ownership("alice")
        assert o.state == "active"
        assert o.is_owner("alice")
        assert not o.is_owner("")

    def test_zero_owner_rejected(self):
        with pytest.raises(ZeroAddress):
            Ownership("")

    def test_propose_and_accept(self):
        o = Ownership("alice")
        assert o.propose("alice", "bob") == ("alice", "bob")
        assert o.state == "pending"
        # Owner keeps authority until acceptance
        assert o.is_owner("alice")
        assert o.accept("bob") == ("alice", "bob")
        assert o.owner == "bob"
        assert o.state == "active"

    def test_only_owner_proposes(self):
        o = Ownership("alice")
        with pytest.raises(Unauthorized):
            o.propose("mallory", "mallory")

    def test_zero_candidate_rejected(self):
        with pytest.raises(ZeroAddress):
            Ownership("alice").propose("alice", "")

    def test_only_candidate_accepts(self):
        o = Ownership("alice")
        o.propose("alice", "bob")
        with pytest.raises(Unauthorized):
            o.accept("carol")

    def test_accept_without_proposal(self):
        with pytest.raises(Unauthorized):
            Ownership("alice").accept("bob")

    def test_new_proposal_replaces_candidate(self):
        o = Ownership("alice")
        o.propose("alice", "bob")
        o.propose("alice", "carol")
        with pytest.raises(Unauthorized):
            o.accept("bob")
        o.accept("carol")
        assert o.owner == "carol"


class TestOracleAccessPolicy:
    def test_owner_is_implicit_updater(self):
        p = OracleAccessPolicy(Ownership("owner"))
        assert p.is_updater("owner")
        p.require_updater("owner")

    def test_add_remove(self):
        p = OracleAccessPolicy(Ownership("owner"))
        p.add_updater("owner", "feeder")
        assert p.is_updater("feeder")
        p.remove_updater("owner", "feeder")
        assert not p.is_updater("feeder")

    def test_duplicate_add(self):
        p = OracleAccessPolicy(Ownership("owner"), updaters={"feeder"})
        with pytest.raises(AlreadyUpdater):
            p.add_updater("owner", "feeder")

    def test_remove_missing(self):
        p = OracleAccessPolicy(Ownership("owner"))
        with pytest.raises(NotAnUpdater):
            p.remove_updater("owner", "ghost")

    def test_non_owner_cannot_manage(self):
        p = OracleAccessPolicy(Ownership("owner"))
        with pytest.raises(Unauthorized):
            p.add_updater("feeder", "feeder")

    def test_zero_updater_rejected(self):
        p = OracleAccessPolicy(Ownership("owner"))
        with pytest.raises(ZeroAddress):
            p.add_updater("owner", "")

    def test_stranger_not_updater(self):
        p = OracleAccessPolicy(Ownership("owner"))
        with pytest.raises(Unauthorized):
            p.require_updater("stranger")


class TestVaultAccessPolicy:
    def test_price_paths(self):
        p = VaultAccessPolicy(Ownership("owner"), price_oracle="oracle")
        assert p.price_path("oracle") == PATH_ORACLE
        assert p.price_path("owner") == PATH_OWNER
        with pytest.raises(Unauthorized):
            p.price_path("stranger")

    def test_oracle_checked_before_owner(self):
        p = VaultAccessPolicy(Ownership("owner"), price_oracle="owner")
        assert p.price_path("owner") == PATH_ORACLE

    def test_unset_oracle_matches_nobody(self):
        p = VaultAccessPolicy(Ownership("owner"))
        with pytest.raises(Unauthorized):
            p.price_path("")

    def test_fee_collector_or_owner(self):
        p = VaultAccessPolicy(Ownership("owner"), fee_collector="collector")
        p.require_fee_collector_or_owner("collector")
        p.require_fee_collector_or_owner("owner")
        with pytest.raises(Unauthorized):
            p.require_fee_collector_or_owner("alice")

    def test_to_dict(self):
        d = VaultAccessPolicy(Ownership("owner"), "oracle", "collector").to_dict()
        assert d["owner"] == "owner"
        assert d["price_oracle"] == "oracle"
        assert d["fee_collector"] == "collector"


class TestLedgerAccessPolicy:
    def test_vault_and_owner_can_mint(self):
        p = LedgerAccessPolicy(Ownership("owner"), vault="vault")
        assert p.can_mint("vault")
        assert p.can_mint("owner")
        assert not p.can_mint("alice")
        assert not p.can_mint("")


class TestComponentOwnershipHandoff:
    def test_vault_handoff_emits_events(self, system):
        vault = system.vault
        vault.transfer_ownership("owner", "newowner")
        assert vault.pending_owner == "newowner"
        assert system.chain.events.last().name == "OwnershipTransferStarted"
        vault.accept_ownership("newowner")
        assert vault.owner == "newowner"
        ev = system.chain.events.last("OwnershipTransferred")
        assert ev["previous_owner"] == "owner"
        assert ev["new_owner"] == "newowner"
        # Old owner lost authority
        with pytest.raises(Unauthorized):
            vault.set_buy_fee("owner", 10)
        vault.set_buy_fee("newowner", 10)

    def test_failed_accept_leaves_pending(self, system):
        oracle = system.oracle
        oracle.transfer_ownership("owner", "bob")
        with pytest.raises(Unauthorized):
            oracle.accept_ownership("carol")
        assert oracle.owner == "owner"
        assert oracle.pending_owner == "bob"
