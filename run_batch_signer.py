#!/usr/bin/env python3
"""
Batch signer CLI: inspect, commit to, merge and submit XRPL Batch transactions.

Each signer runs ``commit`` on the same autofilled batch and sends the
printed BatchSigner to the submitter, who runs ``merge`` then ``submit``.
``run`` does everything locally from an encrypted account book.

Usage:
    python run_batch_signer.py autofill batch.json > autofilled.json
    python run_batch_signer.py commit autofilled.json --seed-env SIGNER_SEED > alice.json
    python run_batch_signer.py merge autofilled.json alice.json bob.json > merged.json
    python run_batch_signer.py submit merged.json --seed-env PARENT_SEED
    python run_batch_signer.py account-add issuer --seed-env ISSUER_SEED
    python run_batch_signer.py run batch.json --submitter issuer

JSON goes to stdout, logs to stderr.  Seeds come from --seed-env, from the
account book (--role), or an interactive prompt.

Environment variables:
    BATCHSIGNER_RPC_URL, BATCHSIGNER_FEE_DROPS, BATCHSIGNER_ACCOUNTS_FILE,
    BATCHSIGNER_LOG_LEVEL, BATCHSIGNER_LOG_FMT, BATCHSIGNER_PASSPHRASE
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import getpass
import json
import logging
import os
import sys
from typing import Any

# ---------------------------------------------------------------------------
# Ensure the project root is in sys.path so imports work before pip install
# ---------------------------------------------------------------------------
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from batchsigner_core.accounts import (  # noqa: E402
    AccountBook,
    AccountRecord,
    Role,
    assign_roles,
)
from batchsigner_core.batch_signer import (  # noqa: E402
    batch_digest,
    check_involvement,
    combine_signed_batches,
    commit,
    merge,
    missing_signers,
    required_signers,
    verify_commitment,
)
from batchsigner_core.config import BatchSignerConfig, load_config  # noqa: E402
from batchsigner_core.errors import BatchSignerError  # noqa: E402
from batchsigner_core.ledger_client import LedgerClient  # noqa: E402
from batchsigner_core.logging_config import setup_logging_from_config  # noqa: E402
from batchsigner_core.transaction import BatchSigner, BatchTransaction  # noqa: E402
from batchsigner_core.wallet import Wallet  # noqa: E402
from batchsigner_core.workflow import finalize_and_submit, prepare, run_batch  # noqa: E402

logger = logging.getLogger("batchsigner_cli")


# ---------------------------------------------------------------------------
# Input helpers
# ---------------------------------------------------------------------------

def _read_json(path: str) -> Any:
    if path == "-":
        return json.load(sys.stdin)
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def _emit(data: Any) -> None:
    json.dump(data, sys.stdout, indent=2)
    sys.stdout.write("\n")


def _load_batch(path: str) -> BatchTransaction:
    return BatchTransaction.from_json(_read_json(path))


def _read_signers(path: str) -> list[BatchTransaction | BatchSigner]:
    """
    A signer file holds one BatchSigner, an array of them, or a full batch
    carrying BatchSigners.
    """
    data = _read_json(path)
    if isinstance(data, list):
        return [BatchSigner.from_json(item) for item in data]
    if isinstance(data, dict) and data.get("TransactionType") == "Batch":
        return [BatchTransaction.from_json(data)]
    return [BatchSigner.from_json(data)]


def _passphrase() -> str:
    return os.environ.get("BATCHSIGNER_PASSPHRASE") or getpass.getpass(
        "Account book passphrase: "
    )


def _load_book(cfg: BatchSignerConfig) -> AccountBook:
    return AccountBook.load(cfg.accounts.file, _passphrase())


def _resolve_wallet(args: argparse.Namespace, cfg: BatchSignerConfig, prompt: str) -> Wallet:
    if args.seed_env:
        seed = os.environ.get(args.seed_env)
        if not seed:
            raise ValueError(f"Environment variable {args.seed_env} is not set")
        return Wallet.from_seed(seed)
    if args.role:
        return _load_book(cfg)[Role(args.role)].wallet()
    return Wallet.from_seed(getpass.getpass(prompt))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_inspect(args: argparse.Namespace, cfg: BatchSignerConfig) -> int:
    batch = _load_batch(args.template)
    _emit({
        "account": batch.account,
        "flags": f"0x{batch.flags:08X}",
        "inner_transactions": [
            {"type": inner.transaction_type, "account": inner.account,
             "id": inner.transaction_id().hex().upper()}
            for inner in batch.raw_transactions
        ],
        "batch_digest": batch_digest(batch).hex().upper(),
        "required_signers": required_signers(batch),
        "missing_signers": missing_signers(batch),
        "batch_signers": [
            {"account": s.account,
             "involvement": check_involvement(batch, s.account).value,
             "valid": verify_commitment(batch, s)}
            for s in batch.batch_signers
        ],
    })
    return 0


async def cmd_autofill(args: argparse.Namespace, cfg: BatchSignerConfig) -> int:
    template = _load_batch(args.template)
    async with LedgerClient.from_config(cfg.network, cfg.fees.max_fee_drops) as client:
        batch = await prepare(client, template)
    _emit(batch.to_json())
    return 0


def cmd_commit(args: argparse.Namespace, cfg: BatchSignerConfig) -> int:
    batch = _load_batch(args.template)
    wallet = _resolve_wallet(args, cfg, "BatchSigner seed: ")
    logger.info(f"Signer address: {wallet.address}")
    _emit(commit(batch, wallet, account=args.account).to_json())
    return 0


def cmd_merge(args: argparse.Namespace, cfg: BatchSignerConfig) -> int:
    batch = _load_batch(args.template)
    signers: list[BatchSigner] = []
    copies: list[BatchTransaction] = []
    for path in args.signers:
        for item in _read_signers(path):
            if isinstance(item, BatchTransaction):
                copies.append(item)
            else:
                signers.append(item)
    # later entries win: template signers, then batch copies, then signer files
    ordered = list(batch.batch_signers)
    if copies:
        combined = combine_signed_batches([batch.without_batch_signers(), *copies])
        ordered.extend(combined.batch_signers)
    merged = merge(batch.without_batch_signers(), [*ordered, *signers])
    missing = missing_signers(merged)
    if missing:
        logger.warning(f"Still missing BatchSigner(s) for: {', '.join(missing)}")
    _emit(merged.to_json())
    return 0


async def cmd_submit(args: argparse.Namespace, cfg: BatchSignerConfig) -> int:
    merged = _load_batch(args.template)
    submitter = _resolve_wallet(args, cfg, "Submitter seed: ")
    fee = args.fee_drops if args.fee_drops is not None else cfg.fees.fee_drops
    async with LedgerClient.from_config(cfg.network, cfg.fees.max_fee_drops) as client:
        result = await finalize_and_submit(client, merged, submitter, fee)
    _emit(result.to_dict())
    return 0 if result.succeeded else 2


async def cmd_run(args: argparse.Namespace, cfg: BatchSignerConfig) -> int:
    template = _load_batch(args.template)
    assignment = assign_roles(template, _load_book(cfg), Role(args.submitter))
    logger.info(f"Submitter: {assignment.submitter.address}")
    for record in assignment.signers:
        logger.info(f"Signer ({record.role.value}): {record.address}")
    fee = args.fee_drops if args.fee_drops is not None else cfg.fees.fee_drops
    async with LedgerClient.from_config(cfg.network, cfg.fees.max_fee_drops) as client:
        result = await run_batch(
            client,
            template,
            assignment.submitter.wallet(),
            [record.wallet() for record in assignment.signers],
            fee,
        )
    _emit(result.to_dict())
    return 0 if result.succeeded else 2


def cmd_account_add(args: argparse.Namespace, cfg: BatchSignerConfig) -> int:
    passphrase = _passphrase()
    path = cfg.accounts.file
    book = AccountBook.load(path, passphrase) if os.path.exists(path) else AccountBook()
    if args.generate:
        wallet = Wallet.create(args.key_type)
    elif args.seed_env:
        seed = os.environ.get(args.seed_env)
        if not seed:
            raise ValueError(f"Environment variable {args.seed_env} is not set")
        wallet = Wallet.from_seed(seed)
    else:
        wallet = Wallet.from_seed(getpass.getpass("Seed: "))
    role = Role(args.account_role)
    if role in book:
        logger.warning(f"Replacing {role.value} account {book[role].address}")
    book.add(AccountRecord.from_wallet(role, wallet))
    book.save(path, passphrase, iterations=cfg.accounts.kdf_iterations)
    _emit({"role": role.value, "address": wallet.address})
    return 0


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Multi-party XRPL Batch signer")
    p.add_argument("--config", default=os.environ.get("BATCHSIGNER_CONFIG"),
                   help="Path to batchsigner.toml config file")
    p.add_argument("--rpc-url", default=None, help="rippled JSON-RPC URL")
    sub = p.add_subparsers(dest="command", required=True)

    def key_options(sp: argparse.ArgumentParser) -> None:
        group = sp.add_mutually_exclusive_group()
        group.add_argument("--seed-env", metavar="VAR",
                           help="Read the seed from this environment variable")
        group.add_argument("--role", choices=[r.value for r in Role],
                           help="Use this role's seed from the account book")

    sp = sub.add_parser("inspect", help="Show digest, signers and their validity")
    sp.add_argument("template")

    sp = sub.add_parser("autofill", help="Fill Sequence/Fee/LastLedgerSequence")
    sp.add_argument("template")

    sp = sub.add_parser("commit", help="Print this signer's BatchSigner")
    sp.add_argument("template")
    sp.add_argument("--account", default=None,
                    help="Account to sign for when using a regular key")
    key_options(sp)

    sp = sub.add_parser("merge", help="Merge BatchSigner files into the batch")
    sp.add_argument("template")
    sp.add_argument("signers", nargs="+")

    sp = sub.add_parser("submit", help="Sign a merged batch as submitter and submit")
    sp.add_argument("template")
    sp.add_argument("--fee-drops", type=int, default=None)
    key_options(sp)

    sp = sub.add_parser("run", help="Complete workflow from the account book")
    sp.add_argument("template")
    sp.add_argument("--submitter", required=True, choices=[r.value for r in Role])
    sp.add_argument("--fee-drops", type=int, default=None)

    sp = sub.add_parser("account-add", help="Store a role's account in the account book")
    sp.add_argument("account_role", metavar="role", choices=[r.value for r in Role])
    group = sp.add_mutually_exclusive_group()
    group.add_argument("--seed-env", metavar="VAR",
                       help="Read the seed from this environment variable")
    group.add_argument("--generate", action="store_true", help="Create a fresh keypair")
    sp.add_argument("--key-type", choices=["ed25519", "secp256k1"], default="ed25519")

    return p.parse_args(argv)


_COMMANDS = {
    "inspect": cmd_inspect,
    "autofill": cmd_autofill,
    "commit": cmd_commit,
    "merge": cmd_merge,
    "submit": cmd_submit,
    "run": cmd_run,
    "account-add": cmd_account_add,
}


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    cfg = load_config(args.config)
    if args.rpc_url:
        cfg.network.rpc_url = args.rpc_url
    setup_logging_from_config(cfg.logging)

    handler = _COMMANDS[args.command]
    try:
        result = handler(args, cfg)
        if asyncio.iscoroutine(result):
            result = asyncio.run(result)
        return result
    except (BatchSignerError, ValueError, OSError, KeyError) as exc:
        logger.error(str(exc))
        return 1


def main_sync() -> None:
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        raise SystemExit(main())


if __name__ == "__main__":
    main_sync()
