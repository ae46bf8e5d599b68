"""
Shared pytest fixtures for the PegVault test suite.
"""

import pytest

from pegvault_core.chain import Chain, ManualClock
from pegvault_core.config import PegVaultConfig
from pegvault_core.deploy import deploy

START_TIME = 1_700_000_000
RATE = 3_000_000            # $3.00 per TRX, keeps the arithmetic readable
TRX = 1_000_000             # 1 TRX in sun
USD = 1_000_000             # 1 USDT / 1 TRST in base units


@pytest.fixture
def clock():
    """Manual clock starting at a fixed timestamp."""
    return ManualClock(START_TIME)


@pytest.fixture
def chain(clock):
    return Chain(clock=clock)


@pytest.fixture
def config():
    """Deployment config: owner, fee collector, one price feeder, rate 3.00."""
    cfg = PegVaultConfig()
    cfg.deployment.owner = "owner"
    cfg.deployment.fee_collector = "collector"
    cfg.deployment.updaters = ["feeder"]
    cfg.deployment.genesis = {"alice": 1_000 * TRX, "bob": 1_000 * TRX}
    cfg.oracle.initial_price = RATE
    return cfg


@pytest.fixture
def system(config, chain):
    """Fully wired deployment on a manual clock."""
    return deploy(config, chain)


@pytest.fixture
def vault(system):
    return system.vault


@pytest.fixture
def oracle(system):
    return system.oracle


@pytest.fixture
def funded(system):
    """Deployment where alice and bob also hold USDT and approved the vault."""
    for user in ("alice", "bob"):
        system.fund_stable(user, 1_000 * USD)
        system.stable.approve(user, system.vault.address, 1_000 * USD)
    return system
