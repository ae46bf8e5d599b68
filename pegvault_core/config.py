"""
TOML-based configuration for PegVault deployments.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from pegvault_core.config import load_config
    cfg = load_config("pegvault.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib  # type: ignore[import,no-redef]

from pegvault_core.precision import (
    DEFAULT_BUY_FEE_BPS,
    DEFAULT_MAX_DEVIATION_BPS,
    DEFAULT_MIN_UPDATE_INTERVAL,
    DEFAULT_SELL_FEE_BPS,
)


@dataclass
class DeploymentConfig:
    """
    Who owns what, and the initial native balances.

    ``genesis`` maps address → sun credited at deployment.  An empty
    ``fee_collector`` means the owner collects fees.
    """
    owner: str = "owner"
    fee_collector: str = ""
    updaters: list[str] = field(default_factory=list)
    genesis: dict[str, int] = field(default_factory=dict)
    vault_address: str = "vault"
    oracle_address: str = "oracle"


@dataclass
class OracleSettings:
    initial_price: int = 80_000          # $0.08 per TRX
    max_deviation_bps: int = DEFAULT_MAX_DEVIATION_BPS
    min_update_interval: int = DEFAULT_MIN_UPDATE_INTERVAL


@dataclass
class VaultSettings:
    buy_fee_bps: int = DEFAULT_BUY_FEE_BPS
    sell_fee_bps: int = DEFAULT_SELL_FEE_BPS
    max_price_deviation_bps: int = DEFAULT_MAX_DEVIATION_BPS
    min_price_update_period: int = DEFAULT_MIN_UPDATE_INTERVAL


@dataclass
class TokenConfig:
    """Names and ledger addresses of the pegged unit and the stable currency."""
    name: str = "TRON Stable Token"
    symbol: str = "TRST"
    address: str = "trst"
    stable_name: str = "Tether USD"
    stable_symbol: str = "USDT"
    stable_address: str = "usdt"


@dataclass
class APIConfig:
    """REST API settings."""
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8080
    api_key: str = ""                 # require this key on POST endpoints (empty = no auth)
    rate_limit_rpm: int = 120          # max requests per minute per IP (0 = unlimited)
    cors_origins: list[str] = field(default_factory=list)  # allowed CORS origins (empty = no CORS)
    max_body_bytes: int = 65_536


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class PegVaultConfig:
    """Top-level configuration container."""
    deployment: DeploymentConfig = field(default_factory=DeploymentConfig)
    oracle: OracleSettings = field(default_factory=OracleSettings)
    vault: VaultSettings = field(default_factory=VaultSettings)
    token: TokenConfig = field(default_factory=TokenConfig)
    api: APIConfig = field(default_factory=APIConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def _split(value: str) -> list[str]:
    return [p.strip() for p in value.split(",") if p.strip()]


def load_config(path: str | None = None) -> PegVaultConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        PEGVAULT_OWNER          -> deployment.owner
        PEGVAULT_FEE_COLLECTOR  -> deployment.fee_collector
        PEGVAULT_UPDATERS       -> deployment.updaters  (comma-separated)
        PEGVAULT_INITIAL_PRICE  -> oracle.initial_price
        PEGVAULT_BUY_FEE_BPS    -> vault.buy_fee_bps
        PEGVAULT_SELL_FEE_BPS   -> vault.sell_fee_bps
        PEGVAULT_API_HOST       -> api.host
        PEGVAULT_API_PORT       -> api.port  (also enables the API)
        PEGVAULT_API_KEY        -> api.api_key
        PEGVAULT_CORS_ORIGINS   -> api.cors_origins  (comma-separated)
        PEGVAULT_LOG_LEVEL      -> logging.level
        PEGVAULT_LOG_FMT        -> logging.format
    """
    cfg = PegVaultConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("deployment", cfg.deployment),
                ("oracle", cfg.oracle),
                ("vault", cfg.vault),
                ("token", cfg.token),
                ("api", cfg.api),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("PEGVAULT_OWNER"):
        cfg.deployment.owner = v
    if v := os.environ.get("PEGVAULT_FEE_COLLECTOR"):
        cfg.deployment.fee_collector = v
    if v := os.environ.get("PEGVAULT_UPDATERS"):
        cfg.deployment.updaters = _split(v)
    if v := os.environ.get("PEGVAULT_INITIAL_PRICE"):
        cfg.oracle.initial_price = int(v)
    if v := os.environ.get("PEGVAULT_BUY_FEE_BPS"):
        cfg.vault.buy_fee_bps = int(v)
    if v := os.environ.get("PEGVAULT_SELL_FEE_BPS"):
        cfg.vault.sell_fee_bps = int(v)
    if v := os.environ.get("PEGVAULT_API_HOST"):
        cfg.api.host = v
    if v := os.environ.get("PEGVAULT_API_PORT"):
        cfg.api.port = int(v)
        cfg.api.enabled = True
    if v := os.environ.get("PEGVAULT_API_KEY"):
        cfg.api.api_key = v
    if v := os.environ.get("PEGVAULT_CORS_ORIGINS"):
        cfg.api.cors_origins = _split(v)
    if v := os.environ.get("PEGVAULT_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("PEGVAULT_LOG_FMT"):
        cfg.logging.format = v

    return cfg
