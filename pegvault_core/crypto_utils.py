"""
Cryptographic primitives for PegVault.

  - SHA-256 / double-SHA-256 / Keccak-256
  - Base58 / Base58Check (Bitcoin alphabet, as used by TRON)
  - secp256k1 key generation, signing and verification
  - TRON-style address derivation
"""

from __future__ import annotations

import hashlib
import os

from Crypto.Hash import keccak
from ecdsa import BadSignatureError, SECP256k1, SigningKey, VerifyingKey
from ecdsa.der import UnexpectedDER
from ecdsa.errors import MalformedPointError
from ecdsa.util import sigdecode_der, sigencode_der

B58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_B58_INDEX = {c: i for i, c in enumerate(B58_ALPHABET)}

# Mainnet address prefix; every encoded address starts with "T".
TRON_ADDRESS_PREFIX = b"\x41"
ADDRESS_LENGTH = 21


# ── hashing ──────────────────────────────────────────────────────────

def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def sha256d(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def keccak256(data: bytes) -> bytes:
    h = keccak.new(digest_bits=256)
    h.update(data)
    return h.digest()


# ── base58 ───────────────────────────────────────────────────────────

def base58_encode(data: bytes) -> str:
    n = int.from_bytes(data, "big")
    out = []
    while n > 0:
        n, rem = divmod(n, 58)
        out.append(B58_ALPHABET[rem])
    # Leading zero bytes map to leading '1's
    pad = len(data) - len(data.lstrip(b"\x00"))
    return "1" * pad + "".join(reversed(out))


def base58_decode(s: str) -> bytes:
    n = 0
    for ch in s:
        if ch not in _B58_INDEX:
            raise ValueError(f"invalid base58 character {ch!r}")
        n = n * 58 + _B58_INDEX[ch]
    body = n.to_bytes((n.bit_length() + 7) // 8, "big") if n else b""
    pad = len(s) - len(s.lstrip("1"))
    return b"\x00" * pad + body


def base58check_encode(payload: bytes) -> str:
    return base58_encode(payload + sha256d(payload)[:4])


def base58check_decode(s: str) -> bytes:
    raw = base58_decode(s)
    if len(raw) < 5:
        raise ValueError("base58check string too short")
    payload, checksum = raw[:-4], raw[-4:]
    if sha256d(payload)[:4] != checksum:
        raise ValueError("base58check checksum mismatch")
    return payload


# ── keys and signatures ──────────────────────────────────────────────

def generate_keypair() -> tuple[bytes, bytes]:
    """Return ``(private_key, public_key)``; the public key is 65 bytes, 0x04-prefixed."""
    sk = SigningKey.from_string(os.urandom(32), curve=SECP256k1)
    return sk.to_string(), public_key_from_private(sk.to_string())


def public_key_from_private(private_key: bytes) -> bytes:
    sk = SigningKey.from_string(private_key, curve=SECP256k1)
    return b"\x04" + sk.get_verifying_key().to_string()


def sign(private_key: bytes, msg_hash: bytes) -> bytes:
    """Deterministic (RFC 6979) DER signature over a 32-byte digest."""
    sk = SigningKey.from_string(private_key, curve=SECP256k1)
    return sk.sign_digest_deterministic(
        msg_hash, hashfunc=hashlib.sha256, sigencode=sigencode_der)


def verify(public_key: bytes, msg_hash: bytes, signature: bytes) -> bool:
    try:
        raw = public_key[1:] if len(public_key) == 65 else public_key
        vk = VerifyingKey.from_string(raw, curve=SECP256k1)
        return vk.verify_digest(signature, msg_hash, sigdecode=sigdecode_der)
    except (BadSignatureError, MalformedPointError, UnexpectedDER, ValueError):
        return False


# ── addresses ────────────────────────────────────────────────────────

def derive_address(public_key: bytes) -> str:
    """TRON address: ``0x41 || keccak256(X || Y)[-20:]`` in Base58Check."""
    raw = public_key[1:] if len(public_key) == 65 else public_key
    if len(raw) != 64:
        raise ValueError("expected an uncompressed secp256k1 public key")
    return base58check_encode(TRON_ADDRESS_PREFIX + keccak256(raw)[-20:])


def is_valid_address(address: str) -> bool:
    try:
        payload = base58check_decode(address)
    except ValueError:
        return False
    return len(payload) == ADDRESS_LENGTH and payload[:1] == TRON_ADDRESS_PREFIX
