"""
Batch transaction data model.

Mirrors the XRP Ledger's ``Batch`` transaction (XLS-56):

  - ``BatchTransaction``  the outer transaction, owned by the submitter
  - ``InnerTransaction``  one ``RawTransaction`` entry
  - ``BatchSigner``       one non-submitter account's commitment

All three are immutable values.  Every transformation (autofill, commit,
merge) returns a new object; ``to_json`` always hands out fresh copies.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from xrpl.core.binarycodec import encode
from xrpl.core.binarycodec.exceptions import XRPLBinaryCodecException

from batchsigner_core.crypto_utils import (
    HASH_PREFIX_TRANSACTION_ID,
    is_valid_address,
    sha512_half,
)
from batchsigner_core.errors import InvalidBatchStructure

# Batch execution policies; exactly one must be set on the outer Flags.
TF_ALL_OR_NOTHING = 0x00010000
TF_ONLY_ONE = 0x00020000
TF_UNTIL_FAILURE = 0x00040000
TF_INDEPENDENT = 0x00080000
BATCH_POLICY_MASK = TF_ALL_OR_NOTHING | TF_ONLY_ONE | TF_UNTIL_FAILURE | TF_INDEPENDENT

# Marks an inner transaction as executing inside a batch.
TF_INNER_BATCH_TXN = 0x40000000

BATCH_POLICIES = {
    "all_or_nothing": TF_ALL_OR_NOTHING,
    "only_one": TF_ONLY_ONE,
    "until_failure": TF_UNTIL_FAILURE,
    "independent": TF_INDEPENDENT,
}

MAX_INNER_TRANSACTIONS = 8
MAX_BATCH_SIGNERS = 8

# Outer fields managed by the model itself rather than kept in the envelope.
_STRUCTURAL_FIELDS = ("TransactionType", "Account", "Flags", "RawTransactions", "BatchSigners")


def _frozen(data: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(copy.deepcopy(dict(data)))


@dataclass(frozen=True)
class BatchSigner:
    """A signer's commitment to the whole batch."""
    account: str
    signing_pub_key: str
    txn_signature: str

    def to_json(self) -> dict[str, Any]:
        return {
            "BatchSigner": {
                "Account": self.account,
                "SigningPubKey": self.signing_pub_key,
                "TxnSignature": self.txn_signature,
            }
        }

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> BatchSigner:
        """Accept either ``{"BatchSigner": {...}}`` or the bare inner object."""
        body = data.get("BatchSigner", data) if isinstance(data, Mapping) else None
        if not isinstance(body, Mapping):
            raise InvalidBatchStructure("BatchSigner must be a JSON object")
        if "Signers" in body:
            raise InvalidBatchStructure(
                "Multi-signed BatchSigner entries (nested Signers) are not supported"
            )
        try:
            return cls(
                account=body["Account"],
                signing_pub_key=body["SigningPubKey"],
                txn_signature=body["TxnSignature"],
            )
        except KeyError as exc:
            raise InvalidBatchStructure(f"BatchSigner missing field {exc.args[0]}") from exc


@dataclass(frozen=True)
class InnerTransaction:
    """One inner transaction, kept as read-only XRPL JSON."""
    tx_json: Mapping[str, Any]

    def __post_init__(self) -> None:
        object.__setattr__(self, "tx_json", _frozen(self.tx_json))

    @property
    def account(self) -> str:
        return self.tx_json.get("Account", "")

    @property
    def transaction_type(self) -> str:
        return self.tx_json.get("TransactionType", "")

    @property
    def fee(self) -> Any:
        return self.tx_json.get("Fee")

    @property
    def flags(self) -> int:
        return int(self.tx_json.get("Flags", 0))

    @property
    def signing_pub_key(self) -> str:
        return self.tx_json.get("SigningPubKey", "")

    @property
    def sequence(self) -> int | None:
        return self.tx_json.get("Sequence")

    def to_json(self) -> dict[str, Any]:
        return copy.deepcopy(dict(self.tx_json))

    def to_wire(self) -> dict[str, Any]:
        return {"RawTransaction": self.to_json()}

    def updated(self, **fields: Any) -> InnerTransaction:
        tx = self.to_json()
        tx.update(fields)
        return InnerTransaction(tx)

    def encode(self) -> bytes:
        """Canonical binary serialization."""
        try:
            return bytes.fromhex(encode(self.to_json()))
        except (XRPLBinaryCodecException, KeyError, TypeError, ValueError) as exc:
            raise InvalidBatchStructure(
                f"Inner {self.transaction_type or 'transaction'} cannot be serialized: {exc}"
            ) from exc

    def transaction_id(self) -> bytes:
        """``SHA-512Half("TXN\\0" || serialized)``, the inner transaction's hash."""
        return sha512_half(HASH_PREFIX_TRANSACTION_ID + self.encode())

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> InnerTransaction:
        """Accept either ``{"RawTransaction": {...}}`` or the bare transaction."""
        body = data.get("RawTransaction", data) if isinstance(data, Mapping) else None
        if not isinstance(body, Mapping):
            raise InvalidBatchStructure("RawTransaction must be a JSON object")
        return cls(body)


@dataclass(frozen=True)
class BatchTransaction:
    """The outer ``Batch`` transaction."""
    account: str
    flags: int
    raw_transactions: tuple[InnerTransaction, ...]
    batch_signers: tuple[BatchSigner, ...] = ()
    envelope: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "raw_transactions", tuple(self.raw_transactions))
        object.__setattr__(self, "batch_signers", tuple(self.batch_signers))
        object.__setattr__(self, "envelope", _frozen(self.envelope))

    # ---- envelope accessors ----

    @property
    def sequence(self) -> int | None:
        return self.envelope.get("Sequence")

    @property
    def fee(self) -> str | None:
        return self.envelope.get("Fee")

    @property
    def last_ledger_sequence(self) -> int | None:
        return self.envelope.get("LastLedgerSequence")

    @property
    def inner_accounts(self) -> list[str]:
        """Distinct inner-transaction accounts in first-seen order."""
        seen: list[str] = []
        for inner in self.raw_transactions:
            if inner.account not in seen:
                seen.append(inner.account)
        return seen

    # ---- functional updates ----

    def with_envelope(self, **fields: Any) -> BatchTransaction:
        """Copy with envelope fields set; ``None`` removes a field."""
        env = dict(self.envelope)
        for key, value in fields.items():
            if value is None:
                env.pop(key, None)
            else:
                env[key] = value
        return replace(self, envelope=env)

    def with_raw_transactions(self, raw: Iterable[InnerTransaction]) -> BatchTransaction:
        return replace(self, raw_transactions=tuple(raw))

    def with_batch_signers(self, signers: Iterable[BatchSigner]) -> BatchTransaction:
        return replace(self, batch_signers=tuple(signers))

    def without_batch_signers(self) -> BatchTransaction:
        return replace(self, batch_signers=())

    # ---- serialisation ----

    def to_json(self) -> dict[str, Any]:
        tx: dict[str, Any] = {
            "TransactionType": "Batch",
            "Account": self.account,
            "Flags": self.flags,
            "RawTransactions": [inner.to_wire() for inner in self.raw_transactions],
        }
        tx.update(copy.deepcopy(dict(self.envelope)))
        if self.batch_signers:
            tx["BatchSigners"] = [s.to_json() for s in self.batch_signers]
        return tx

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> BatchTransaction:
        """Parse XRPL JSON; only the shape is checked here, see ``validate_batch``."""
        if not isinstance(data, Mapping):
            raise InvalidBatchStructure("Batch transaction must be a JSON object")
        if data.get("TransactionType") != "Batch":
            raise InvalidBatchStructure('TransactionType must be "Batch"')
        raw = data.get("RawTransactions")
        if not isinstance(raw, list):
            raise InvalidBatchStructure("RawTransactions must be an array")
        signers = data.get("BatchSigners", [])
        if not isinstance(signers, list):
            raise InvalidBatchStructure("BatchSigners must be an array")
        try:
            flags = int(data.get("Flags", 0))
        except (TypeError, ValueError) as exc:
            raise InvalidBatchStructure("Flags must be an integer") from exc

        envelope = {k: v for k, v in data.items() if k not in _STRUCTURAL_FIELDS}
        return cls(
            account=data.get("Account", ""),
            flags=flags,
            raw_transactions=tuple(InnerTransaction.from_json(r) for r in raw),
            batch_signers=tuple(BatchSigner.from_json(s) for s in signers),
            envelope=envelope,
        )


def build_batch(account: str, inner: Iterable[Mapping[str, Any]],
                policy: int = TF_ALL_OR_NOTHING, **envelope: Any) -> BatchTransaction:
    """
    Build a batch template from bare inner transactions.

    Each inner transaction gets the inner-batch flag, a zero fee and an
    empty signing key unless it already carries them.
    """
    raw = []
    for tx in inner:
        body = dict(tx)
        body["Flags"] = int(body.get("Flags", 0)) | TF_INNER_BATCH_TXN
        body.setdefault("Fee", "0")
        body.setdefault("SigningPubKey", "")
        raw.append(InnerTransaction(body))
    return BatchTransaction(account=account, flags=policy,
                            raw_transactions=tuple(raw), envelope=envelope)


def _policy_bits(flags: int) -> int:
    return bin(flags & BATCH_POLICY_MASK).count("1")


def validate_inner(inner: InnerTransaction, index: int) -> None:
    """Raise ``InvalidBatchStructure`` if *inner* breaks an inner-transaction rule."""
    where = f"RawTransactions[{index}]"
    if not inner.transaction_type:
        raise InvalidBatchStructure(f"{where}: missing TransactionType")
    if inner.transaction_type == "Batch":
        raise InvalidBatchStructure(f"{where}: batches cannot be nested")
    if not is_valid_address(inner.account):
        raise InvalidBatchStructure(f"{where}: invalid Account {inner.account!r}")
    if str(inner.fee) != "0":
        raise InvalidBatchStructure(f'{where}: Fee must be "0", got {inner.fee!r}')
    if inner.signing_pub_key:
        raise InvalidBatchStructure(f"{where}: SigningPubKey must be empty")
    if "TxnSignature" in inner.tx_json:
        raise InvalidBatchStructure(f"{where}: TxnSignature must be absent")
    if "Signers" in inner.tx_json:
        raise InvalidBatchStructure(f"{where}: Signers must be absent")
    if not inner.flags & TF_INNER_BATCH_TXN:
        raise InvalidBatchStructure(f"{where}: tfInnerBatchTxn flag is not set")


def validate_batch(batch: BatchTransaction) -> None:
    """Raise ``InvalidBatchStructure`` on any structural violation."""
    if not is_valid_address(batch.account):
        raise InvalidBatchStructure(f"Invalid submitter Account {batch.account!r}")
    bits = _policy_bits(batch.flags)
    if bits != 1:
        raise InvalidBatchStructure(
            f"Flags 0x{batch.flags:08X} must select exactly one batch policy, found {bits}"
        )
    if not batch.raw_transactions:
        raise InvalidBatchStructure("RawTransactions must not be empty")
    if len(batch.raw_transactions) > MAX_INNER_TRANSACTIONS:
        raise InvalidBatchStructure(
            f"At most {MAX_INNER_TRANSACTIONS} inner transactions are allowed, "
            f"got {len(batch.raw_transactions)}"
        )
    for index, inner in enumerate(batch.raw_transactions):
        validate_inner(inner, index)
    if len(batch.batch_signers) > MAX_BATCH_SIGNERS:
        raise InvalidBatchStructure(
            f"At most {MAX_BATCH_SIGNERS} BatchSigners are allowed, got {len(batch.batch_signers)}"
        )
