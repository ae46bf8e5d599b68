"""
Wallet management for PegVault.

A wallet wraps a secp256k1 key-pair and provides:
  - TRON-style address derivation
  - Signed request envelopes for the HTTP API
  - Plain and encrypted import / export
"""

from __future__ import annotations

import hashlib
import json
import os
from typing import Any

from pegvault_core.crypto_utils import (
    derive_address,
    generate_keypair,
    is_valid_address,
    public_key_from_private,
    sha256,
    sign,
    verify,
)
from pegvault_core.errors import Unauthorized

_SEED_SALT = b"PegVault/seed/v1"
_SEED_ITERS = 100_000
_EXPORT_ITERS = 600_000

__all__ = [
    "Wallet",
    "canonical_request_bytes",
    "is_valid_address",
    "verify_request",
]


def canonical_request_bytes(caller: str, nonce: int, payload: dict) -> bytes:
    """Bytes covered by a request signature (sorted-key compact JSON)."""
    return json.dumps(
        {"caller": caller, "nonce": nonce, "payload": payload},
        sort_keys=True, separators=(",", ":"),
    ).encode("utf-8")


def verify_request(envelope: dict[str, Any]) -> str:
    """
    Check a signed envelope and return the authenticated caller address.

    Raises ``Unauthorized`` when a field is missing, the public key does
    not derive ``caller``, or the signature does not verify.
    """
    try:
        caller = envelope["caller"]
        nonce = envelope["nonce"]
        payload = envelope["payload"]
        public_key = bytes.fromhex(envelope["public_key"])
        signature = bytes.fromhex(envelope["signature"])
    except (KeyError, TypeError, ValueError) as exc:
        raise Unauthorized(f"malformed signed request: {exc}") from exc
    if not isinstance(nonce, int) or isinstance(nonce, bool) or nonce < 0:
        raise Unauthorized("nonce must be a non-negative integer")
    if not isinstance(payload, dict):
        raise Unauthorized("payload must be an object")
    try:
        derived = derive_address(public_key)
    except ValueError as exc:
        raise Unauthorized(f"bad public key: {exc}") from exc
    if derived != caller:
        raise Unauthorized("public key does not match caller address")
    digest = sha256(canonical_request_bytes(caller, nonce, payload))
    if not verify(public_key, digest, signature):
        raise Unauthorized("signature verification failed")
    return caller


class Wallet:
    """User-facing wallet that signs API requests."""

    def __init__(self, private_key: bytes, public_key: bytes,
                 address: str | None = None):
        self.private_key = private_key
        self.public_key = public_key
        self.address = address or derive_address(public_key)
        self._nonce: int = 0

    # ---- factory methods ----

    @classmethod
    def create(cls) -> Wallet:
        """Generate a brand-new random wallet."""
        priv, pub = generate_keypair()
        return cls(priv, pub)

    @classmethod
    def from_seed(cls, seed: str) -> Wallet:
        """Derive a wallet deterministically from a seed phrase (PBKDF2-HMAC-SHA256)."""
        priv = hashlib.pbkdf2_hmac("sha256", seed.encode("utf-8"),
                                   _SEED_SALT, _SEED_ITERS)
        return cls(priv, public_key_from_private(priv))

    @classmethod
    def from_private_key(cls, private_key_hex: str) -> Wallet:
        priv = bytes.fromhex(private_key_hex)
        return cls(priv, public_key_from_private(priv))

    # ---- signing ----

    def sign_request(self, payload: dict, nonce: int | None = None) -> dict:
        """
        Build a signed envelope for an API call.

        When *nonce* is omitted the wallet's local counter is used and
        advanced.  The server rejects a nonce that is not greater than the
        last one it accepted from this address.
        """
        if nonce is None:
            self._nonce += 1
            nonce = self._nonce
        else:
            self._nonce = max(self._nonce, nonce)
        digest = sha256(canonical_request_bytes(self.address, nonce, payload))
        return {
            "caller": self.address,
            "public_key": self.public_key.hex(),
            "nonce": nonce,
            "payload": payload,
            "signature": sign(self.private_key, digest).hex(),
        }

    @property
    def nonce(self) -> int:
        return self._nonce

    # ---- serialisation ----

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "public_key": self.public_key.hex(),
            "private_key": self.private_key.hex(),
        }

    def export_encrypted(self, passphrase: str) -> dict:
        """Export as AES-256-GCM ciphertext keyed by PBKDF2-HMAC-SHA256."""
        salt = os.urandom(16)
        key = hashlib.pbkdf2_hmac("sha256", passphrase.encode("utf-8"),
                                  salt, _EXPORT_ITERS)
        enc, nonce, tag = self._aes_gcm_encrypt(key, self.private_key)
        return {
            "version": 1,
            "address": self.address,
            "public_key": self.public_key.hex(),
            "encrypted_private_key": enc.hex(),
            "nonce": nonce.hex(),
            "tag": tag.hex(),
            "salt": salt.hex(),
            "kdf": "pbkdf2-hmac-sha256",
            "kdf_iterations": _EXPORT_ITERS,
        }

    @classmethod
    def import_encrypted(cls, data: dict, passphrase: str) -> Wallet:
        """Inverse of :meth:`export_encrypted`.  Raises ValueError on a wrong passphrase."""
        key = hashlib.pbkdf2_hmac(
            "sha256", passphrase.encode("utf-8"), bytes.fromhex(data["salt"]),
            data.get("kdf_iterations", _EXPORT_ITERS))
        priv = cls._aes_gcm_decrypt(
            key,
            bytes.fromhex(data["nonce"]),
            bytes.fromhex(data["encrypted_private_key"]),
            bytes.fromhex(data["tag"]),
        )
        return cls(priv, bytes.fromhex(data["public_key"]), data.get("address"))

    @staticmethod
    def _aes_gcm_encrypt(key: bytes, data: bytes) -> tuple[bytes, bytes, bytes]:
        from Crypto.Cipher import AES
        nonce = os.urandom(12)
        cipher = AES.new(key, AES.MODE_GCM, nonce=nonce)
        ciphertext, tag = cipher.encrypt_and_digest(data)
        return ciphertext, nonce, tag

    @staticmethod
    def _aes_gcm_decrypt(key: bytes, nonce: bytes, ciphertext: bytes,
                         tag: bytes) -> bytes:
        from Crypto.Cipher import AES
        cipher = AES.new(key, AES.MODE_GCM, nonce=nonce)
        return cipher.decrypt_and_verify(ciphertext, tag)

    def __repr__(self) -> str:
        return f"Wallet({self.address})"
