"""
TOML-based configuration for the batch signer.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from batchsigner_core.config import load_config
    cfg = load_config("batchsigner.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib  # type: ignore[import]
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[import,no-redef]


@dataclass
class NetworkConfig:
    """rippled JSON-RPC endpoint and polling."""
    rpc_url: str = "https://s.devnet.rippletest.net:51234/"
    timeout_seconds: float = 20.0
    ledger_offset: int = 20          # LastLedgerSequence = current + offset
    poll_interval: float = 1.0       # seconds between validation checks


@dataclass
class FeeConfig:
    """Outer-transaction fee handling."""
    # Fixed fee (drops) applied after the post-merge re-autofill; None keeps
    # the autofilled value.
    fee_drops: int | None = None
    max_fee_drops: int = 2_000_000   # cap on the per-unit network fee


@dataclass
class AccountsConfig:
    """Encrypted account book location."""
    file: str = "data/accounts.json"
    kdf_iterations: int = 600_000


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class BatchSignerConfig:
    """Top-level configuration container."""
    network: NetworkConfig = field(default_factory=NetworkConfig)
    fees: FeeConfig = field(default_factory=FeeConfig)
    accounts: AccountsConfig = field(default_factory=AccountsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def load_config(path: str | None = None) -> BatchSignerConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        BATCHSIGNER_RPC_URL        -> network.rpc_url
        BATCHSIGNER_FEE_DROPS      -> fees.fee_drops
        BATCHSIGNER_ACCOUNTS_FILE  -> accounts.file
        BATCHSIGNER_LOG_LEVEL      -> logging.level
        BATCHSIGNER_LOG_FMT        -> logging.format
    """
    cfg = BatchSignerConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("network", cfg.network),
                ("fees", cfg.fees),
                ("accounts", cfg.accounts),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("BATCHSIGNER_RPC_URL"):
        cfg.network.rpc_url = v
    if v := os.environ.get("BATCHSIGNER_FEE_DROPS"):
        cfg.fees.fee_drops = int(v)
    if v := os.environ.get("BATCHSIGNER_ACCOUNTS_FILE"):
        cfg.accounts.file = v
    if v := os.environ.get("BATCHSIGNER_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("BATCHSIGNER_LOG_FMT"):
        cfg.logging.format = v

    return cfg
