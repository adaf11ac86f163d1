"""
Multi-party authorization for Batch transactions.

Every account other than the submitter that owns an inner transaction
commits to the *whole* batch by signing:

    "BCH\\0" || Flags (uint32) || inner count (uint32) || inner tx IDs...

The submitter then merges the commitments (BatchSigners), orders them by
AccountID and signs the outer transaction normally.  Envelope fields
(Sequence, Fee, LastLedgerSequence) are not covered, so a batch can be
re-autofilled after merging without invalidating collected commitments.

Usage:
    template = BatchTransaction.from_json(data)
    a = commit(template, alice)            # on Alice's machine
    b = commit(template, bob)              # on Bob's machine
    merged = merge(template, [b, a])       # submitter
"""

from __future__ import annotations

import enum
import logging
import struct
import warnings
from typing import Iterable, Sequence

from batchsigner_core.crypto_utils import (
    HASH_PREFIX_BATCH,
    canonical_account_key,
    sha512_half,
)
from batchsigner_core.errors import (
    InvalidBatchStructure,
    InvalidSignerCommitment,
    SelfCommitmentRejected,
    UninvolvedSignerWarning,
)
from batchsigner_core.transaction import (
    MAX_BATCH_SIGNERS,
    BatchSigner,
    BatchTransaction,
    validate_batch,
)
from batchsigner_core.wallet import Wallet, verify

logger = logging.getLogger("batchsigner_core")


class Involvement(enum.Enum):
    """How an account relates to a batch."""
    SUBMITTER = "submitter"
    ACTIVE_SIGNER = "active_signer"
    UNINVOLVED = "uninvolved"


# ═══════════════════════════════════════════════════════════════════
#  Signing content
# ═══════════════════════════════════════════════════════════════════

def batch_signing_data(batch: BatchTransaction) -> bytes:
    """The exact bytes every BatchSigner signs."""
    parts = [
        HASH_PREFIX_BATCH,
        struct.pack(">I", batch.flags & 0xFFFFFFFF),
        struct.pack(">I", len(batch.raw_transactions)),
    ]
    parts.extend(inner.transaction_id() for inner in batch.raw_transactions)
    return b"".join(parts)


def batch_digest(batch: BatchTransaction) -> bytes:
    """``SHA-512Half`` of the signing data; identifies what was committed to."""
    return sha512_half(batch_signing_data(batch))


def ensure_same_signing_content(before: BatchTransaction, after: BatchTransaction) -> None:
    """
    Raise ``InvalidBatchStructure`` if *after* no longer covers the same
    Flags and inner transactions as *before*.

    Autofill may only touch envelope fields; anything else would silently
    invalidate every collected BatchSigner.
    """
    if before.flags != after.flags:
        raise InvalidBatchStructure(
            f"Flags changed from 0x{before.flags:08X} to 0x{after.flags:08X} after commitment"
        )
    if batch_signing_data(before) != batch_signing_data(after):
        raise InvalidBatchStructure("Inner transactions changed after commitment")


# ═══════════════════════════════════════════════════════════════════
#  Involvement
# ═══════════════════════════════════════════════════════════════════

def check_involvement(batch: BatchTransaction, address: str) -> Involvement:
    if address == batch.account:
        return Involvement.SUBMITTER
    if any(inner.account == address for inner in batch.raw_transactions):
        return Involvement.ACTIVE_SIGNER
    return Involvement.UNINVOLVED


def required_signers(batch: BatchTransaction) -> list[str]:
    """Accounts that must commit, in canonical order."""
    accounts = {a for a in batch.inner_accounts if a != batch.account}
    return sorted(accounts, key=canonical_account_key)


def missing_signers(batch: BatchTransaction) -> list[str]:
    present = {s.account for s in batch.batch_signers}
    return [a for a in required_signers(batch) if a not in present]


# ═══════════════════════════════════════════════════════════════════
#  Commit
# ═══════════════════════════════════════════════════════════════════

def commit(batch: BatchTransaction, wallet: Wallet, account: str | None = None) -> BatchSigner:
    """
    Produce *account*'s BatchSigner for *batch*.

    *account* defaults to the wallet's own address; pass it explicitly when
    the wallet holds a regular key for another account.
    """
    account = account or wallet.address
    validate_batch(batch)

    involvement = check_involvement(batch, account)
    if involvement is Involvement.SUBMITTER:
        raise SelfCommitmentRejected(account)
    if involvement is Involvement.UNINVOLVED:
        logger.warning(f"Signer {account} has no inner transaction in this batch")
        warnings.warn(
            f"Signer {account} is not submitting any transaction in this batch; "
            f"the signature may not be required",
            UninvolvedSignerWarning,
            stacklevel=2,
        )
    else:
        count = sum(1 for inner in batch.raw_transactions if inner.account == account)
        logger.info(f"Signer {account} is submitting {count} transaction(s) in this batch")

    signature = wallet.sign(batch_signing_data(batch))
    logger.info(f"BatchSigner generated for {account}")
    return BatchSigner(
        account=account,
        signing_pub_key=wallet.public_key_hex,
        txn_signature=signature.hex().upper(),
    )


# ═══════════════════════════════════════════════════════════════════
#  Verify / merge
# ═══════════════════════════════════════════════════════════════════

def verify_commitment(batch: BatchTransaction, signer: BatchSigner) -> bool:
    return verify(signer.signing_pub_key, batch_signing_data(batch), signer.txn_signature)


def _canonical_dedup(signers: Iterable[BatchSigner]) -> list[BatchSigner]:
    by_account: dict[str, BatchSigner] = {}
    for signer in signers:
        # later entries replace earlier ones
        by_account[signer.account] = signer
    try:
        return sorted(by_account.values(), key=lambda s: canonical_account_key(s.account))
    except ValueError as exc:
        raise InvalidBatchStructure(str(exc)) from exc


def _verify_all(batch: BatchTransaction, signers: Sequence[BatchSigner]) -> None:
    data = batch_signing_data(batch)
    failed = [s.account for s in signers
              if not verify(s.signing_pub_key, data, s.txn_signature)]
    if failed:
        raise InvalidSignerCommitment(failed[0], addresses=tuple(failed))


def merge(batch: BatchTransaction, commitments: Iterable[BatchSigner]) -> BatchTransaction:
    """
    Attach verified BatchSigners to a copy of *batch*.

    Duplicates by account keep the last one supplied; the result is sorted
    by AccountID.  Any commitment that does not verify against *batch*
    aborts the whole merge.
    """
    ordered = _canonical_dedup(commitments)
    for signer in ordered:
        if signer.account == batch.account:
            raise SelfCommitmentRejected(signer.account)
    if len(ordered) > MAX_BATCH_SIGNERS:
        raise InvalidBatchStructure(
            f"At most {MAX_BATCH_SIGNERS} BatchSigners are allowed, got {len(ordered)}"
        )
    _verify_all(batch, ordered)
    logger.info(f"Merged {len(ordered)} BatchSigner(s) for batch by {batch.account}")
    return batch.with_batch_signers(ordered)


def verify_batch_signers(batch: BatchTransaction) -> None:
    """Raise ``InvalidSignerCommitment`` if any attached BatchSigner is stale or forged."""
    _verify_all(batch, batch.batch_signers)


def combine_signed_batches(transactions: Sequence[BatchTransaction]) -> BatchTransaction:
    """
    Merge several copies of one batch, each carrying its own BatchSigners.

    Every copy must cover the same Flags and inner transactions; the
    envelope of the first copy is kept.
    """
    if not transactions:
        raise InvalidBatchStructure("No transactions to combine")
    base = transactions[0].without_batch_signers()
    for other in transactions[1:]:
        if other.account != base.account:
            raise InvalidBatchStructure(
                f"Cannot combine batches from different submitters "
                f"({base.account} and {other.account})"
            )
        ensure_same_signing_content(base, other)
    return merge(base, [s for tx in transactions for s in tx.batch_signers])
