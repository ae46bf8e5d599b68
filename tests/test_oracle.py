"""Tests for the TRX/USD price oracle and its push into the vault."""

import pytest

from pegvault_core.chain import Chain, ManualClock
from pegvault_core.errors import (
    AlreadyUpdater,
    DeviationExceeded,
    DeviationTooHigh,
    InvalidPrice,
    NotAnUpdater,
    PushFailed,
    TooSoon,
    Unauthorized,
)
from pegvault_core.oracle import PriceOracle, PriceState, check_price_bounds

from conftest import RATE, START_TIME


class TestConstruction:
    def test_zero_initial_price_rejected(self):
        with pytest.raises(InvalidPrice):
            PriceOracle(Chain(clock=ManualClock()), "oracle", "owner", "vault", 0)

    def test_deviation_ceiling_on_construction(self):
        with pytest.raises(DeviationTooHigh):
            PriceOracle(Chain(clock=ManualClock()), "oracle", "owner", "vault",
                        RATE, max_deviation_bps=3001)

    def test_defaults(self, oracle):
        assert oracle.get_price() == RATE
        assert oracle.config.max_deviation_bps == 1000
        assert oracle.config.min_update_interval == 3600
        assert oracle.last_update_time == 0

    def test_price_state_rejects_zero(self):
        with pytest.raises(InvalidPrice):
            PriceState(0, 0)


class TestDeviationScenario:
    def test_ten_percent_move_accepted_immediately(self, oracle, vault):
        oracle.update_price("feeder", 3_300_000)
        assert oracle.get_price() == 3_300_000
        assert vault.get_trx_price() == 3_300_000

    def test_just_over_ten_percent_rejected(self, oracle, vault):
        with pytest.raises(DeviationExceeded):
            oracle.update_price("feeder", 3_301_000)
        assert oracle.get_price() == RATE
        assert vault.get_trx_price() == RATE

    def test_sub_basis_point_overshoot_rejected(self, oracle, vault):
        # 10.0033%: floored to whole bps this reads as exactly 1000
        with pytest.raises(DeviationExceeded):
            oracle.update_price("feeder", 3_300_100)
        assert oracle.get_price() == RATE
        assert vault.get_trx_price() == RATE

    def test_wider_bound_allows_larger_move(self, oracle):
        oracle.set_max_deviation("owner", 2000)
        oracle.update_price("feeder", 3_600_000)
        assert oracle.get_price() == 3_600_000

    def test_downward_bound(self, oracle):
        with pytest.raises(DeviationExceeded):
            oracle.update_price("feeder", 2_699_999)
        oracle.update_price("feeder", 2_700_000)


class TestRateLimit:
    def test_second_update_too_soon(self, oracle, clock):
        oracle.update_price("feeder", 3_100_000)
        with pytest.raises(TooSoon) as info:
            oracle.update_price("feeder", 3_200_000)
        assert info.value.retry_at == START_TIME + 3600
        clock.advance(3599)
        with pytest.raises(TooSoon):
            oracle.update_price("feeder", 3_200_000)
        clock.advance(1)
        oracle.update_price("feeder", 3_200_000)
        assert oracle.last_update_time == START_TIME + 3600

    def test_zero_interval_disables_rate_limit(self, oracle):
        oracle.set_min_interval("owner", 0)
        oracle.update_price("feeder", 3_100_000)
        oracle.update_price("feeder", 3_200_000)
        assert oracle.get_price() == 3_200_000

    def test_next_update_allowed_at(self, oracle):
        oracle.update_price("feeder", 3_100_000)
        assert oracle.next_update_allowed_at() == START_TIME + 3600

    def test_check_price_bounds_never_written_cell(self):
        # time 0 means never updated: only the deviation applies
        check_price_bounds(PriceState(100, 0), 105, 10, 1000, 3600)
        with pytest.raises(DeviationExceeded):
            check_price_bounds(PriceState(100, 0), 120, 10, 1000, 3600)


class TestAuthorization:
    def test_stranger_rejected(self, oracle):
        with pytest.raises(Unauthorized):
            oracle.update_price("mallory", 3_100_000)

    def test_owner_is_implicit_updater(self, oracle):
        oracle.update_price("owner", 3_100_000)
        assert oracle.get_price() == 3_100_000

    def test_zero_price_rejected(self, oracle):
        with pytest.raises(InvalidPrice):
            oracle.update_price("feeder", 0)

    def test_removed_updater_rejected(self, oracle):
        oracle.remove_updater("owner", "feeder")
        assert not oracle.is_updater("feeder")
        with pytest.raises(Unauthorized):
            oracle.update_price("feeder", 3_100_000)

    def test_updater_idempotency_guards(self, oracle):
        with pytest.raises(AlreadyUpdater):
            oracle.add_updater("owner", "feeder")
        with pytest.raises(NotAnUpdater):
            oracle.remove_updater("owner", "nobody")

    def test_updater_events(self, oracle, system):
        oracle.add_updater("owner", "feeder2")
        assert system.chain.events.last().name == "UpdaterAdded"
        assert oracle.updaters == {"feeder", "feeder2"}
        oracle.remove_updater("owner", "feeder2")
        assert system.chain.events.last()["updater"] == "feeder2"

    def test_admin_setters_owner_only(self, oracle):
        with pytest.raises(Unauthorized):
            oracle.set_max_deviation("feeder", 500)
        with pytest.raises(Unauthorized):
            oracle.set_min_interval("feeder", 0)
        with pytest.raises(Unauthorized):
            oracle.set_vault("feeder", "elsewhere")

    def test_max_deviation_ceiling(self, oracle):
        oracle.set_max_deviation("owner", 3000)
        with pytest.raises(DeviationTooHigh):
            oracle.set_max_deviation("owner", 3001)


class TestForceUpdate:
    def test_bypasses_interval_and_deviation(self, oracle, vault):
        oracle.update_price("feeder", 3_100_000)
        oracle.force_update_price("owner", 9_000_000)
        assert oracle.get_price() == 9_000_000
        assert vault.get_trx_price() == 9_000_000

    def test_owner_only(self, oracle):
        with pytest.raises(Unauthorized):
            oracle.force_update_price("feeder", 3_100_000)

    def test_still_rejects_zero(self, oracle):
        with pytest.raises(InvalidPrice):
            oracle.force_update_price("owner", 0)

    def test_event(self, oracle, system):
        oracle.force_update_price("owner", 1_000_000)
        ev = system.chain.events.last("PriceForceUpdated")
        assert (ev["new_rate"], ev["old_rate"], ev["updater"]) == (1_000_000, RATE, "owner")


class TestPush:
    def test_event_carries_before_and_after(self, oracle, system):
        oracle.update_price("feeder", 3_100_000)
        ev = system.chain.events.last("PriceUpdated")
        assert (ev["new_rate"], ev["old_rate"], ev["updater"]) == (3_100_000, RATE, "feeder")
        mirrored = system.chain.events.last("TrxPriceUpdated")
        assert mirrored["source"] == oracle.address

    def test_push_to_missing_target_rolls_back(self, oracle, clock):
        oracle.set_vault("owner", "nowhere")
        with pytest.raises(PushFailed):
            oracle.update_price("feeder", 3_100_000)
        assert oracle.get_price() == RATE
        assert oracle.last_update_time == 0

    def test_vault_refusal_rolls_back_oracle(self, oracle, vault, system):
        vault.set_price_oracle("owner", "some-other-oracle")
        events_before = len(system.chain.events)
        with pytest.raises(PushFailed):
            oracle.update_price("feeder", 3_100_000)
        assert oracle.get_price() == RATE
        assert vault.get_trx_price() == RATE
        assert len(system.chain.events) == events_before

    def test_push_ignores_vault_local_bounds(self, oracle, vault):
        vault.set_max_price_deviation("owner", 0)
        vault.set_min_price_update_period("owner", 10 ** 9)
        oracle.update_price("feeder", 3_300_000)
        assert vault.get_trx_price() == 3_300_000

    def test_price_history(self, oracle, clock):
        oracle.update_price("feeder", 3_100_000)
        clock.advance(3600)
        oracle.update_price("feeder", 3_200_000)
        assert oracle.price_history() == [
            (START_TIME, 3_100_000),
            (START_TIME + 3600, 3_200_000),
        ]
        assert oracle.price_history(since=START_TIME + 1) == [(START_TIME + 3600, 3_200_000)]

    def test_to_dict(self, oracle):
        d = oracle.to_dict()
        assert d["price"]["rate"] == RATE
        assert d["updaters"] == ["feeder"]
        assert d["vault"] == "vault"
