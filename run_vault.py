#!/usr/bin/env python3
"""
PegVault Runner — deploys a vault, oracle and tokens on an in-process
chain and serves them over the REST API.

Usage:
    python run_vault.py --config pegvault.toml --port 8080

Environment variables (alternative to flags):
    PEGVAULT_OWNER, PEGVAULT_API_HOST, PEGVAULT_API_PORT, PEGVAULT_LOG_LEVEL
    (see pegvault_core.config for the full list)
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import sys

# ---------------------------------------------------------------------------
# Ensure the project root is in sys.path so imports work before pip install
# ---------------------------------------------------------------------------
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from pegvault_core.api import APIServer  # noqa: E402
from pegvault_core.config import load_config  # noqa: E402
from pegvault_core.deploy import deploy  # noqa: E402
from pegvault_core.logging_config import setup_logging  # noqa: E402
from pegvault_core.precision import format_price  # noqa: E402

logger = logging.getLogger("pegvault.runner")


def parse_args(argv: list[str] | None = None):
    p = argparse.ArgumentParser(description="PegVault node")
    p.add_argument("--config", default=None, help="Path to pegvault.toml config file")
    p.add_argument("--host", default=None, help="API listen host")
    p.add_argument("--port", type=int, default=None, help="API listen port")
    p.add_argument("--log-level", default=None,
                   help="DEBUG, INFO, WARNING, ERROR")
    p.add_argument("--log-format", choices=("human", "json"), default=None,
                   help="Console log format")
    return p.parse_args(argv)


async def main(argv: list[str] | None = None):
    args = parse_args(argv)

    # Load config (TOML + env overrides)
    cfg = load_config(args.config)

    # CLI flags override config
    if args.host:
        cfg.api.host = args.host
    if args.port is not None:
        cfg.api.port = args.port
    if args.log_level:
        cfg.logging.level = args.log_level.upper()
    if args.log_format:
        cfg.logging.format = args.log_format
    # The runner exists to serve the API
    cfg.api.enabled = True

    setup_logging(cfg.logging.level, cfg.logging.format, cfg.logging.file)

    deployment = deploy(cfg)
    if not cfg.deployment.updaters:
        logger.warning(
            "No price updaters configured; only the owner can move the "
            "oracle price. Set [deployment] updaters in pegvault.toml.")
    if cfg.api.api_key == "":
        logger.warning("API key not set; POST endpoints rely on request signatures only.")

    api = APIServer(deployment, host=cfg.api.host, port=cfg.api.port,
                    api_config=cfg.api)
    await api.start()
    logger.info(
        f"PegVault ready | owner={deployment.owner} | "
        f"price={format_price(deployment.vault.get_trx_price())}")

    try:
        while True:
            await asyncio.sleep(1)
    except asyncio.CancelledError:
        pass
    finally:
        await api.stop()


if __name__ == "__main__":
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())


def main_sync():
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())
