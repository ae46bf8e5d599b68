"""
Deployment wiring.

Builds a complete PegVault system on one chain from a
:class:`~pegvault_core.config.PegVaultConfig`:

  1. native ledger (TRX) and genesis credits
  2. stable token (USDT) and pegged token (TRST)
  3. vault, holding the TRST mint/burn identity
  4. price oracle pushing into the vault
  5. price updaters from config
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pegvault_core.chain import Chain
from pegvault_core.config import PegVaultConfig
from pegvault_core.errors import MintFailed
from pegvault_core.ledger import NativeLedger, TokenLedger
from pegvault_core.oracle import PriceOracle
from pegvault_core.precision import format_amount, format_price
from pegvault_core.vault import Vault

logger = logging.getLogger("pegvault.deploy")


@dataclass
class Deployment:
    """Handles to every component of one running system."""
    config: PegVaultConfig
    chain: Chain
    native: NativeLedger
    stable: TokenLedger
    pegged: TokenLedger
    vault: Vault
    oracle: PriceOracle

    @property
    def owner(self) -> str:
        return self.config.deployment.owner

    def fund_native(self, address: str, amount: int) -> None:
        """Faucet: credit *amount* sun to *address*."""
        self.native.credit(address, amount)
        logger.info(f"Funded {address} with {format_amount(amount, 'TRX')}")

    def fund_stable(self, address: str, amount: int) -> None:
        """Faucet: mint *amount* USDT to *address* as the stable token's owner."""
        if not self.stable.mint(self.owner, address, amount):
            raise MintFailed(f"could not mint {amount} {self.stable.symbol}")
        logger.info(f"Funded {address} with {format_amount(amount, self.stable.symbol)}")

    def balances(self, address: str) -> dict:
        return {
            "address": address,
            "native": self.native.balance_of(address),
            "stable": self.stable.balance_of(address),
            "pegged": self.pegged.balance_of(address),
            "stable_allowance": self.stable.allowance(address, self.vault.address),
        }

    def status(self) -> dict:
        return {
            "vault": self.vault.to_dict(),
            "oracle": self.oracle.to_dict(),
            "pegged": self.pegged.to_dict(),
            "stable": self.stable.to_dict(),
            "events": len(self.chain.events),
        }


def deploy(cfg: PegVaultConfig, chain: Chain | None = None) -> Deployment:
    """Create and wire every component described by *cfg*."""
    chain = chain or Chain()
    d = cfg.deployment
    owner = d.owner

    native = NativeLedger(chain)
    for address, sun in d.genesis.items():
        native.credit(address, int(sun))

    stable = TokenLedger(chain, cfg.token.stable_address, cfg.token.stable_name,
                         cfg.token.stable_symbol, owner)
    pegged = TokenLedger(chain, cfg.token.address, cfg.token.name,
                         cfg.token.symbol, owner)

    vault = Vault(
        chain, d.vault_address, owner, pegged, stable, native,
        cfg.oracle.initial_price,
        fee_collector=d.fee_collector or owner,
        buy_fee_bps=cfg.vault.buy_fee_bps,
        sell_fee_bps=cfg.vault.sell_fee_bps,
        max_price_deviation_bps=cfg.vault.max_price_deviation_bps,
        min_price_update_period=cfg.vault.min_price_update_period,
    )
    pegged.set_vault(owner, vault.address)

    oracle = PriceOracle(
        chain, d.oracle_address, owner, vault.address,
        cfg.oracle.initial_price,
        max_deviation_bps=cfg.oracle.max_deviation_bps,
        min_update_interval=cfg.oracle.min_update_interval,
    )
    vault.set_price_oracle(owner, oracle.address)
    for updater in d.updaters:
        oracle.add_updater(owner, updater)

    logger.info(
        f"Deployed vault={vault.address} oracle={oracle.address} "
        f"{pegged.symbol}={pegged.address} {stable.symbol}={stable.address} "
        f"owner={owner} price={format_price(cfg.oracle.initial_price)}")
    return Deployment(cfg, chain, native, stable, pegged, vault, oracle)
