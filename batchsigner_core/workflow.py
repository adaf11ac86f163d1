"""
End-to-end batch submission.

    template ─autofill─▶ batch ─commit×N─▶ BatchSigners ─merge─▶ merged
    merged ─autofill(refresh)─▶ final ─submitter signs─▶ submit_and_wait

Signers may run ``commit`` anywhere as long as they receive the same
autofilled batch; ``finalize_and_submit`` only needs their BatchSigners.
"""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from batchsigner_core.batch_signer import (
    commit,
    ensure_same_signing_content,
    merge,
    missing_signers,
    verify_batch_signers,
)
from batchsigner_core.errors import InvalidBatchStructure, MissingSignerCommitments
from batchsigner_core.ledger_client import LedgerClient, SubmitResult
from batchsigner_core.transaction import BatchSigner, BatchTransaction, validate_batch
from batchsigner_core.wallet import SignedTransaction, Wallet

logger = logging.getLogger("batchsigner_workflow")


async def prepare(client: LedgerClient, template: BatchTransaction) -> BatchTransaction:
    """Autofill and validate the template every signer will commit to."""
    batch = await client.autofill(template.without_batch_signers())
    validate_batch(batch)
    return batch


def collect_commitments(batch: BatchTransaction, wallets: Iterable[Wallet]) -> list[BatchSigner]:
    """Commit with each wallet in turn (local multi-signer mode)."""
    signers = []
    for index, wallet in enumerate(wallets, 1):
        logger.info(f"Signer {index}: {wallet.address}")
        signers.append(commit(batch, wallet))
    return signers


def sign_for_submission(batch: BatchTransaction, submitter: Wallet,
                        fee_drops: int | None = None) -> SignedTransaction:
    """
    Check the merged batch and sign it as the submitter.

    Raises ``MissingSignerCommitments`` if a required account has not
    committed, ``InvalidSignerCommitment`` if any attached one is stale.
    """
    if submitter.address != batch.account:
        raise InvalidBatchStructure(
            f"Submitter wallet {submitter.address} does not match batch Account {batch.account}"
        )
    validate_batch(batch)
    missing = missing_signers(batch)
    if missing:
        raise MissingSignerCommitments(missing)
    verify_batch_signers(batch)
    if fee_drops is not None:
        batch = batch.with_envelope(Fee=str(fee_drops))
    return submitter.sign_transaction(batch.to_json())


async def finalize_and_submit(
    client: LedgerClient,
    merged: BatchTransaction,
    submitter: Wallet,
    fee_drops: int | None = None,
) -> SubmitResult:
    """Re-autofill the merged batch, sign it as the submitter and submit."""
    final = await client.autofill(merged, refresh_fee=True, refresh_last_ledger=True)
    ensure_same_signing_content(merged, final)
    signed = sign_for_submission(final, submitter, fee_drops)
    logger.info(
        f"Submitting batch {signed.hash}: Sequence={final.sequence} "
        f"Fee={signed.tx_json['Fee']} BatchSigners={len(final.batch_signers)}"
    )
    result = await client.submit_and_wait(signed)
    if result.succeeded:
        logger.info(f"Batch {result.transaction_hash} validated in ledger {result.ledger_index}")
    else:
        logger.error(f"Batch failed: {result.result_code} {result.message}".rstrip())
    return result


async def run_batch(
    client: LedgerClient,
    template: BatchTransaction,
    submitter: Wallet,
    signers: Sequence[Wallet],
    fee_drops: int | None = None,
) -> SubmitResult:
    """Complete workflow with every key held locally."""
    batch = await prepare(client, template)
    commitments = collect_commitments(batch, signers)
    merged = merge(batch, commitments) if commitments else batch
    return await finalize_and_submit(client, merged, submitter, fee_drops)
