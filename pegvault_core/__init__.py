"""
PegVault - a USD-pegged token vault fed by a bounded price oracle.

Key features:
- Pegged token (TRST) minted against TRX or USDT deposits
- Price oracle with rate-limited, deviation-bounded updates
- Buy / sell conversion with basis-point fees and reserve accounting
- Two-step ownership handoff and per-component access policies
- Atomic operations with rollback and post-operation invariant checks
- aiohttp REST API with signed (secp256k1) requests
"""

__version__ = "1.0.0"
__all__ = [
    "precision",
    "errors",
    "chain",
    "events",
    "ownership",
    "access",
    "ledger",
    "oracle",
    "vault",
    "invariants",
    "wallet",
    "deploy",
    "config",
    "api",
]
