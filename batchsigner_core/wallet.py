"""
Key material for batch signers.

A wallet wraps one XRPL keypair and provides:
  - Family-seed derivation (``s...`` seeds, secp256k1 and Ed25519)
  - Address derivation
  - Raw message signing (used for BatchSigner commitments)
  - Full transaction signing for the batch submitter

Private keys stay inside the wallet; only signatures and the public key
leave it.
"""

from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass
from typing import Any

from ecdsa import SECP256k1, BadSignatureError, SigningKey, VerifyingKey
from ecdsa.curves import Ed25519
from ecdsa.der import UnexpectedDER
from ecdsa.util import sigdecode_der, sigencode_der_canonize
from xrpl.constants import CryptoAlgorithm
from xrpl.core.addresscodec import decode_seed, encode_seed
from xrpl.core.addresscodec.exceptions import XRPLAddressCodecException
from xrpl.core.binarycodec import encode, encode_for_signing

from batchsigner_core.crypto_utils import (
    HASH_PREFIX_TRANSACTION_ID,
    derive_address,
    sha512_half,
)

KEY_TYPE_SECP256K1 = "secp256k1"
KEY_TYPE_ED25519 = "ed25519"

# Ed25519 public keys carry a one-byte marker so they are 33 bytes like
# compressed secp256k1 keys.
_ED25519_PREFIX = b"\xed"

_SECP256K1_ORDER = SECP256k1.order


# ===================================================================
#  secp256k1 family-seed derivation
# ===================================================================

def _derive_scalar(data: bytes, discriminator: int | None = None) -> int:
    """Hash *data* with an incrementing counter until it is a valid scalar."""
    suffix = discriminator.to_bytes(4, "big") if discriminator is not None else b""
    for counter in range(0xFFFFFFFF):
        candidate = sha512_half(data + suffix + counter.to_bytes(4, "big"))
        scalar = int.from_bytes(candidate, "big")
        if 0 < scalar < _SECP256K1_ORDER:
            return scalar
    raise ValueError("Could not derive a valid secp256k1 scalar")


def _compressed_public(secret: int) -> bytes:
    sk = SigningKey.from_secret_exponent(secret, curve=SECP256k1)
    return sk.get_verifying_key().to_string("compressed")


def _secp256k1_from_entropy(entropy: bytes) -> bytes:
    """Account 0 private key for a 16-byte seed."""
    root = _derive_scalar(entropy)
    intermediate = _derive_scalar(_compressed_public(root), 0)
    return ((root + intermediate) % _SECP256K1_ORDER).to_bytes(32, "big")


def _ed25519_from_entropy(entropy: bytes) -> bytes:
    return sha512_half(entropy)


# ===================================================================
#  Verification
# ===================================================================

def verify(public_key_hex: str, message: bytes, signature: bytes | str) -> bool:
    """
    Check *signature* over *message* for an XRPL public key.

    secp256k1 signatures are DER over ``SHA-512Half(message)``; Ed25519
    signatures cover the message itself.  Malformed keys or signatures
    simply fail verification.
    """
    try:
        public_key = bytes.fromhex(public_key_hex)
        sig = bytes.fromhex(signature) if isinstance(signature, str) else bytes(signature)
    except (TypeError, ValueError):
        return False
    if len(public_key) != 33:
        return False

    try:
        if public_key[:1] == _ED25519_PREFIX:
            vk = VerifyingKey.from_string(public_key[1:], curve=Ed25519)
            return vk.verify(sig, message)
        vk = VerifyingKey.from_string(public_key, curve=SECP256k1)
        return vk.verify_digest(sig, sha512_half(message), sigdecode=sigdecode_der)
    except (BadSignatureError, UnexpectedDER, ValueError, AssertionError):
        return False


@dataclass(frozen=True)
class SignedTransaction:
    """A fully signed transaction ready for submission."""
    tx_json: dict[str, Any]
    tx_blob: str
    hash: str

    @property
    def last_ledger_sequence(self) -> int | None:
        return self.tx_json.get("LastLedgerSequence")


class Wallet:
    """One XRPL keypair plus its classic address."""

    def __init__(self, private_key: bytes, key_type: str = KEY_TYPE_SECP256K1,
                 seed: str | None = None):
        if key_type == KEY_TYPE_ED25519:
            self._signing_key = SigningKey.from_string(private_key, curve=Ed25519)
            self.public_key = _ED25519_PREFIX + self._signing_key.get_verifying_key().to_string()
        elif key_type == KEY_TYPE_SECP256K1:
            self._signing_key = SigningKey.from_string(private_key, curve=SECP256k1)
            self.public_key = self._signing_key.get_verifying_key().to_string("compressed")
        else:
            raise ValueError(f"Unsupported key type: {key_type}")
        self.key_type = key_type
        self.address = derive_address(self.public_key)
        self._seed = seed

    def __repr__(self) -> str:
        return f"Wallet(address={self.address!r}, key_type={self.key_type!r})"

    # ---- factory methods ----

    @classmethod
    def from_seed(cls, seed: str) -> Wallet:
        """Derive the wallet for an XRPL family seed (``s...``)."""
        if not isinstance(seed, str) or not seed.startswith("s"):
            raise ValueError("Invalid seed: must be a string starting with 's'")
        try:
            entropy, algorithm = decode_seed(seed)
        except (XRPLAddressCodecException, ValueError) as exc:
            raise ValueError(f"Invalid seed: {exc}") from exc

        if algorithm == CryptoAlgorithm.ED25519:
            return cls(_ed25519_from_entropy(entropy), KEY_TYPE_ED25519, seed=seed)
        return cls(_secp256k1_from_entropy(entropy), KEY_TYPE_SECP256K1, seed=seed)

    @classmethod
    def from_entropy(cls, entropy: bytes, key_type: str = KEY_TYPE_ED25519) -> Wallet:
        """Wallet for 16 bytes of seed entropy; the seed is encoded for export."""
        if len(entropy) != 16:
            raise ValueError("Seed entropy must be 16 bytes")
        if key_type == KEY_TYPE_ED25519:
            algorithm = CryptoAlgorithm.ED25519
        elif key_type == KEY_TYPE_SECP256K1:
            algorithm = CryptoAlgorithm.SECP256K1
        else:
            raise ValueError(f"Unsupported key type: {key_type}")
        return cls.from_seed(encode_seed(entropy, algorithm))

    @classmethod
    def create(cls, key_type: str = KEY_TYPE_ED25519) -> Wallet:
        """Generate a brand-new wallet from OS entropy."""
        return cls.from_entropy(os.urandom(16), key_type)

    # ---- accessors ----

    @property
    def public_key_hex(self) -> str:
        return self.public_key.hex().upper()

    @property
    def seed(self) -> str | None:
        return self._seed

    # ---- signing ----

    def sign(self, message: bytes) -> bytes:
        """Sign raw *message* bytes the way the ledger verifies them."""
        if self.key_type == KEY_TYPE_ED25519:
            return self._signing_key.sign(message)
        return self._signing_key.sign_digest_deterministic(
            sha512_half(message),
            hashfunc=hashlib.sha256,
            sigencode=sigencode_der_canonize,
        )

    def sign_transaction(self, tx_json: dict[str, Any]) -> SignedTransaction:
        """
        Single-sign a transaction in XRPL JSON form.

        Sets ``SigningPubKey`` and ``TxnSignature`` on a copy of *tx_json*
        and returns the encoded blob plus the transaction hash.
        """
        tx = dict(tx_json)
        tx.pop("TxnSignature", None)
        tx["SigningPubKey"] = self.public_key_hex
        signature = self.sign(bytes.fromhex(encode_for_signing(tx)))
        tx["TxnSignature"] = signature.hex().upper()
        blob = encode(tx)
        tx_hash = sha512_half(HASH_PREFIX_TRANSACTION_ID + bytes.fromhex(blob))
        return SignedTransaction(tx_json=tx, tx_blob=blob, hash=tx_hash.hex().upper())
