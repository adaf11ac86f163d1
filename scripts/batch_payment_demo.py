#!/usr/bin/env python3
"""
Two-signer payment batch on devnet.

Child 1 pays Child 2 and Child 2 pays Child 1 (1 XRP each), submitted
atomically by the parent.  Each child produces a BatchSigner; the parent
merges them, re-autofills and submits.

Usage:
    PARENT_SEED=s... CHILD1_SEED=s... CHILD2_SEED=s... \\
        python scripts/batch_payment_demo.py
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from batchsigner_core.batch_signer import commit, merge  # noqa: E402
from batchsigner_core.config import load_config  # noqa: E402
from batchsigner_core.ledger_client import LedgerClient  # noqa: E402
from batchsigner_core.logging_config import setup_logging_from_config  # noqa: E402
from batchsigner_core.transaction import TF_UNTIL_FAILURE, build_batch  # noqa: E402
from batchsigner_core.wallet import Wallet  # noqa: E402
from batchsigner_core.workflow import finalize_and_submit, prepare  # noqa: E402

logger = logging.getLogger("payment_demo")


async def main() -> int:
    cfg = load_config(os.environ.get("BATCHSIGNER_CONFIG"))
    setup_logging_from_config(cfg.logging)

    parent = Wallet.from_seed(os.environ["PARENT_SEED"])
    child1 = Wallet.from_seed(os.environ["CHILD1_SEED"])
    child2 = Wallet.from_seed(os.environ["CHILD2_SEED"])
    logger.info(f"Parent {parent.address}, child 1 {child1.address}, child 2 {child2.address}")

    template = build_batch(
        parent.address,
        [
            {"TransactionType": "Payment", "Account": child1.address,
             "Destination": child2.address, "Amount": "1000000"},
            {"TransactionType": "Payment", "Account": child2.address,
             "Destination": child1.address, "Amount": "1000000"},
        ],
        policy=TF_UNTIL_FAILURE,
    )

    async with LedgerClient.from_config(cfg.network, cfg.fees.max_fee_drops) as client:
        batch = await prepare(client, template)
        signer1 = commit(batch, child1)
        signer2 = commit(batch, child2)
        merged = merge(batch, [signer1, signer2])
        print(json.dumps(merged.to_json(), indent=2))
        result = await finalize_and_submit(client, merged, parent, cfg.fees.fee_drops or 1000)

    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.succeeded else 1


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
