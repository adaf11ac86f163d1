"""
Error taxonomy for batch authorization.

All core operations are synchronous and fail fast by raising one of these.
``UninvolvedSignerWarning`` is advisory and goes through :mod:`warnings`.
"""

from __future__ import annotations


class BatchSignerError(Exception):
    """Base class for every error raised by batchsigner_core."""


class InvalidBatchStructure(BatchSignerError, ValueError):
    """The batch template is malformed (kind tag, flags, inner fields...)."""


class SelfCommitmentRejected(InvalidBatchStructure):
    """The batch submitter tried to produce a BatchSigner for its own batch."""

    def __init__(self, address: str):
        self.address = address
        super().__init__(
            f"Account {address} is the batch submitter; the submitter signs "
            f"the outer transaction and never produces a BatchSigner"
        )


class MissingSignerCommitments(InvalidBatchStructure):
    """One or more inner-transaction accounts have not committed yet."""

    def __init__(self, addresses: list[str]):
        self.addresses = tuple(addresses)
        super().__init__(f"Missing BatchSigner for: {', '.join(addresses)}")


class InvalidSignerCommitment(BatchSignerError):
    """A BatchSigner does not verify against the batch it claims to cover."""

    def __init__(self, address: str, reason: str = "signature does not verify",
                 addresses: tuple[str, ...] | None = None):
        self.address = address
        self.reason = reason
        # every failing address, in canonical order; ``address`` is the first
        self.addresses = addresses or (address,)
        super().__init__(f"Invalid BatchSigner for {address}: {reason}")


class LedgerClientError(BatchSignerError):
    """The ledger server rejected a request or could not be reached."""

    def __init__(self, error: str, message: str = ""):
        self.error = error
        self.message = message
        super().__init__(f"{error}: {message}" if message else error)


class UninvolvedSignerWarning(UserWarning):
    """A signer committed to a batch that has no inner transaction of theirs."""
