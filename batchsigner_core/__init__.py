"""
batchsigner - cooperative authorization of XRPL Batch transactions.

Key features:
- BatchSigner commitments over the batch's flags and inner transaction IDs
- Deterministic merge: last-wins dedup, AccountID ordering, full verification
- secp256k1 and Ed25519 family-seed wallets
- Async JSON-RPC ledger client with Batch-aware autofill
- Encrypted, role-based account book
"""

__version__ = "0.3.0"
__all__ = [
    "accounts",
    "batch_signer",
    "config",
    "crypto_utils",
    "errors",
    "ledger_client",
    "logging_config",
    "transaction",
    "wallet",
    "workflow",
]
