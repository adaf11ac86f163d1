"""
Hashing and address primitives for the XRP Ledger.

Provides:
  - SHA-256 / SHA-512-half / RIPEMD-160 / Hash160
  - Ledger hash prefixes used for transaction IDs and batch signing
  - Classic address <-> 20-byte AccountID conversion
  - Canonical account ordering (bytewise on the AccountID)
"""

from __future__ import annotations

import hashlib

from Crypto.Hash import RIPEMD160
from xrpl.core.addresscodec import decode_classic_address, encode_classic_address
from xrpl.core.addresscodec.exceptions import XRPLAddressCodecException

# Ledger hash prefixes (4 bytes: three ASCII letters + NUL)
HASH_PREFIX_TRANSACTION_ID = b"TXN\x00"
HASH_PREFIX_BATCH = b"BCH\x00"


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def sha512_half(data: bytes) -> bytes:
    """First 32 bytes of SHA-512, the ledger's standard hash."""
    return hashlib.sha512(data).digest()[:32]


def ripemd160(data: bytes) -> bytes:
    # hashlib only exposes RIPEMD-160 when OpenSSL ships the legacy provider
    return RIPEMD160.new(data).digest()


def hash160(data: bytes) -> bytes:
    return ripemd160(sha256(data))


def account_id(public_key: bytes) -> bytes:
    """20-byte AccountID for a 33-byte public key."""
    return hash160(public_key)


def derive_address(public_key: bytes) -> str:
    """Classic ``r...`` address for a 33-byte public key."""
    return encode_classic_address(account_id(public_key))


def decode_address(address: str) -> bytes:
    """Decode a classic address to its AccountID, raising ``ValueError``."""
    try:
        return decode_classic_address(address)
    except (XRPLAddressCodecException, ValueError, TypeError) as exc:
        raise ValueError(f"Invalid classic address: {address!r}") from exc


def is_valid_address(address: str) -> bool:
    try:
        decode_address(address)
    except ValueError:
        return False
    return True


def canonical_account_key(address: str) -> bytes:
    """Sort key giving the ledger's canonical ordering of signer accounts."""
    return decode_address(address)
