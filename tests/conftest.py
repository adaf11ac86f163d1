"""
Shared pytest fixtures for the batchsigner test suite.
"""

import hashlib

import pytest

from batchsigner_core.transaction import TF_UNTIL_FAILURE, build_batch
from batchsigner_core.wallet import Wallet


def _wallet(label: str, key_type: str = "ed25519") -> Wallet:
    return Wallet.from_entropy(hashlib.sha256(label.encode()).digest()[:16], key_type)


@pytest.fixture
def parent():
    """Deterministic submitter wallet."""
    return _wallet("parent-fixture")


@pytest.fixture
def alice():
    """Deterministic Ed25519 signer."""
    return _wallet("alice-fixture")


@pytest.fixture
def bob():
    """Deterministic secp256k1 signer."""
    return _wallet("bob-fixture", "secp256k1")


@pytest.fixture
def carol():
    """Signer with no inner transaction in the swap batch."""
    return _wallet("carol-fixture")


@pytest.fixture
def swap_batch(parent, alice, bob):
    """Alice pays Bob 1 XRP and Bob pays Alice 1 XRP, submitted by parent."""
    return build_batch(
        parent.address,
        [
            {"TransactionType": "Payment", "Account": alice.address,
             "Destination": bob.address, "Amount": "1000000", "Sequence": 11},
            {"TransactionType": "Payment", "Account": bob.address,
             "Destination": alice.address, "Amount": "1000000", "Sequence": 21},
        ],
        policy=TF_UNTIL_FAILURE,
        Sequence=5,
        Fee="40",
        LastLedgerSequence=1020,
    )
