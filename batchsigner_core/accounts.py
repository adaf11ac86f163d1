"""
Account roles and the encrypted account book.

The book maps a fixed set of roles to accounts.  Which account plays which
part in a batch is always supplied by the caller; nothing is inferred from
the shape of the transaction.

On disk the book is JSON with every seed sealed by AES-256-GCM under a
PBKDF2-HMAC-SHA256 key (unique nonce per seed).
"""

from __future__ import annotations

import enum
import hashlib
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from Crypto.Cipher import AES

from batchsigner_core.batch_signer import required_signers
from batchsigner_core.errors import InvalidBatchStructure
from batchsigner_core.transaction import BatchTransaction
from batchsigner_core.wallet import Wallet

logger = logging.getLogger("batchsigner_accounts")

BOOK_VERSION = 1
DEFAULT_KDF_ITERATIONS = 600_000


class Role(str, enum.Enum):
    ISSUER = "issuer"
    EXISTING_HOLDER = "existing_holder"
    NEW_HOLDER = "new_holder"


@dataclass(frozen=True)
class AccountRecord:
    role: Role
    address: str
    seed: str | None = field(default=None, repr=False)

    def wallet(self) -> Wallet:
        if self.seed is None:
            raise ValueError(f"No seed stored for {self.role.value} ({self.address})")
        wallet = Wallet.from_seed(self.seed)
        if wallet.address != self.address:
            raise ValueError(
                f"Seed for {self.role.value} derives {wallet.address}, expected {self.address}"
            )
        return wallet

    @classmethod
    def from_wallet(cls, role: Role, wallet: Wallet) -> AccountRecord:
        return cls(role=role, address=wallet.address, seed=wallet.seed)


@dataclass(frozen=True)
class RoleAssignment:
    """Submitter plus the accounts that must provide BatchSigners."""
    submitter: AccountRecord
    signers: tuple[AccountRecord, ...]

    @property
    def is_multi_signer(self) -> bool:
        return len(self.signers) > 1


class AccountBook:
    """Role -> AccountRecord mapping."""

    def __init__(self, records: dict[Role, AccountRecord] | None = None):
        self._records: dict[Role, AccountRecord] = dict(records or {})

    def __contains__(self, role: Role) -> bool:
        return role in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __getitem__(self, role: Role) -> AccountRecord:
        try:
            return self._records[role]
        except KeyError:
            raise KeyError(f"No account for role {role.value}") from None

    def add(self, record: AccountRecord) -> None:
        self._records[record.role] = record

    def records(self) -> list[AccountRecord]:
        return [self._records[r] for r in Role if r in self._records]

    def by_address(self, address: str) -> AccountRecord | None:
        for record in self._records.values():
            if record.address == address:
                return record
        return None

    # ---- persistence ----

    def save(self, path: str | Path, passphrase: str,
             iterations: int = DEFAULT_KDF_ITERATIONS) -> None:
        salt = os.urandom(16)
        key = _derive_key(passphrase, salt, iterations)
        accounts = []
        for record in self.records():
            entry = {"role": record.role.value, "address": record.address}
            if record.seed is not None:
                ciphertext, nonce, tag = _aes_gcm_encrypt(key, record.seed.encode("utf-8"))
                entry.update(
                    encrypted_seed=ciphertext.hex(), nonce=nonce.hex(), tag=tag.hex(),
                )
            accounts.append(entry)

        data = {
            "version": BOOK_VERSION,
            "kdf": "pbkdf2-hmac-sha256",
            "kdf_iterations": iterations,
            "salt": salt.hex(),
            "accounts": accounts,
        }
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(data, indent=2), encoding="utf-8")
        os.chmod(p, 0o600)
        logger.info(f"Saved {len(accounts)} account(s) to {p}")

    @classmethod
    def load(cls, path: str | Path, passphrase: str) -> AccountBook:
        """Load and decrypt a book.  A wrong passphrase raises ``ValueError``."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if data.get("version") != BOOK_VERSION:
            raise ValueError(f"Unsupported account book version: {data.get('version')}")
        key = _derive_key(passphrase, bytes.fromhex(data["salt"]),
                          int(data.get("kdf_iterations", DEFAULT_KDF_ITERATIONS)))
        book = cls()
        for entry in data["accounts"]:
            seed = None
            if entry.get("encrypted_seed"):
                seed = _aes_gcm_decrypt(
                    key,
                    bytes.fromhex(entry["nonce"]),
                    bytes.fromhex(entry["encrypted_seed"]),
                    bytes.fromhex(entry["tag"]),
                ).decode("utf-8")
            book.add(AccountRecord(Role(entry["role"]), entry["address"], seed))
        logger.info(f"Loaded {len(book)} account(s) from {path}")
        return book


def assign_roles(batch: BatchTransaction, book: AccountBook, submitter: Role) -> RoleAssignment:
    """
    Resolve who submits and who must commit for *batch*.

    The *submitter* role must own ``batch.account``; every required signer
    must have a record in *book*.
    """
    parent = book[submitter]
    if parent.address != batch.account:
        raise InvalidBatchStructure(
            f"Role {submitter.value} is {parent.address}, but the batch is "
            f"submitted by {batch.account}"
        )
    signers = []
    unknown = []
    for address in required_signers(batch):
        record = book.by_address(address)
        if record is None:
            unknown.append(address)
        else:
            signers.append(record)
    if unknown:
        raise InvalidBatchStructure(f"No account record for signer(s): {', '.join(unknown)}")
    return RoleAssignment(submitter=parent, signers=tuple(signers))


# ---- AES-256-GCM authenticated encryption ----

def _derive_key(passphrase: str, salt: bytes, iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", passphrase.encode("utf-8"), salt, iterations)


def _aes_gcm_encrypt(key: bytes, data: bytes) -> tuple[bytes, bytes, bytes]:
    """Encrypt *data* with AES-256-GCM. Returns (ciphertext, nonce, tag)."""
    nonce = os.urandom(12)
    cipher = AES.new(key, AES.MODE_GCM, nonce=nonce)
    ciphertext, tag = cipher.encrypt_and_digest(data)
    return ciphertext, nonce, tag


def _aes_gcm_decrypt(key: bytes, nonce: bytes, ciphertext: bytes, tag: bytes) -> bytes:
    """Decrypt and verify AES-256-GCM ciphertext. Raises ValueError on tamper."""
    cipher = AES.new(key, AES.MODE_GCM, nonce=nonce)
    return cipher.decrypt_and_verify(ciphertext, tag)
