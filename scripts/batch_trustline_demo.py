#!/usr/bin/env python3
"""
Atomic token distribution with a trust line created inside the batch.

  1. Child 2 opens a trust line for the issuer's token (needs Child 2's
     BatchSigner)
  2. The issuer pays Child 1, who already trusts the token
  3. The issuer pays Child 2 over the line created in step 1

The issuer is the submitter, so only Child 2 commits.

Usage:
    ISSUER_SEED=s... CHILD1_SEED=s... CHILD2_SEED=s... TOKEN=XPN \\
        python scripts/batch_trustline_demo.py
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

from batchsigner_core.batch_signer import commit, merge, required_signers  # noqa: E402
from batchsigner_core.config import load_config  # noqa: E402
from batchsigner_core.ledger_client import LedgerClient  # noqa: E402
from batchsigner_core.logging_config import setup_logging_from_config  # noqa: E402
from batchsigner_core.transaction import TF_ALL_OR_NOTHING, build_batch  # noqa: E402
from batchsigner_core.wallet import Wallet  # noqa: E402
from batchsigner_core.workflow import finalize_and_submit, prepare  # noqa: E402

logger = logging.getLogger("trustline_demo")


async def main() -> int:
    cfg = load_config(os.environ.get("BATCHSIGNER_CONFIG"))
    setup_logging_from_config(cfg.logging)

    issuer = Wallet.from_seed(os.environ["ISSUER_SEED"])
    child1 = Wallet.from_seed(os.environ["CHILD1_SEED"])
    child2 = Wallet.from_seed(os.environ["CHILD2_SEED"])
    currency = os.environ.get("TOKEN", "XPN")

    def token(value: str) -> dict:
        return {"currency": currency, "issuer": issuer.address, "value": value}

    template = build_batch(
        issuer.address,
        [
            {"TransactionType": "TrustSet", "Account": child2.address,
             "LimitAmount": token("1000000")},
            {"TransactionType": "Payment", "Account": issuer.address,
             "Destination": child1.address, "Amount": token("100")},
            {"TransactionType": "Payment", "Account": issuer.address,
             "Destination": child2.address, "Amount": token("100")},
        ],
        policy=TF_ALL_OR_NOTHING,
    )
    logger.info(f"Required signers: {required_signers(template)}")

    async with LedgerClient.from_config(cfg.network, cfg.fees.max_fee_drops) as client:
        batch = await prepare(client, template)
        merged = merge(batch, [commit(batch, child2)])
        result = await finalize_and_submit(client, merged, issuer, cfg.fees.fee_drops or 1000)

    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.succeeded else 1


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
