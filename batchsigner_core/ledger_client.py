"""
JSON-RPC client for a rippled server.

Built on ``aiohttp``.  Supplies the three ledger operations the batch
workflow consumes:

  - ``autofill``         fill Sequence / Fee / LastLedgerSequence / NetworkID
                         and inner-transaction sequences
  - ``submit``           send a signed blob, return the preliminary result
  - ``submit_and_wait``  submit, then poll until validated or expired

Usage:
    async with LedgerClient("https://s.devnet.rippletest.net:51234/") as client:
        batch = await client.autofill(template)
        ...
        result = await client.submit_and_wait(signed)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import aiohttp

from batchsigner_core.errors import LedgerClientError
from batchsigner_core.transaction import BatchTransaction

if TYPE_CHECKING:
    from batchsigner_core.config import NetworkConfig
    from batchsigner_core.wallet import SignedTransaction

logger = logging.getLogger("batchsigner_ledger")

# NetworkID is required only on chains with an id above this value.
_NETWORK_ID_THRESHOLD = 1024

DEFAULT_LEDGER_OFFSET = 20

# Reported when LastLedgerSequence passes with the transaction still unvalidated.
EXPIRED_RESULT_CODE = "tefMAX_LEDGER"


@dataclass(frozen=True)
class SubmitResult:
    """Outcome of a submission."""
    finalized: bool
    result_code: str
    ledger_index: int | None = None
    transaction_hash: str | None = None
    message: str = ""
    validated: bool = False

    @property
    def succeeded(self) -> bool:
        """True only for a tesSUCCESS that reached a validated ledger."""
        return self.validated and self.result_code == "tesSUCCESS"

    def to_dict(self) -> dict:
        return {
            "finalized": self.finalized,
            "result_code": self.result_code,
            "ledger_index": self.ledger_index,
            "transaction_hash": self.transaction_hash,
            "message": self.message,
            "validated": self.validated,
        }


class LedgerClient:
    """Thin async JSON-RPC wrapper; owns its ``aiohttp`` session unless given one."""

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 20.0,
        ledger_offset: int = DEFAULT_LEDGER_OFFSET,
        poll_interval: float = 1.0,
        max_fee_drops: int | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        self.url = url
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.ledger_offset = ledger_offset
        self.poll_interval = poll_interval
        self.max_fee_drops = max_fee_drops
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_config(cls, network: NetworkConfig, max_fee_drops: int | None = None) -> LedgerClient:
        return cls(
            network.rpc_url,
            timeout_seconds=network.timeout_seconds,
            ledger_offset=network.ledger_offset,
            poll_interval=network.poll_interval,
            max_fee_drops=max_fee_drops,
        )

    async def __aenter__(self) -> LedgerClient:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    # ---- raw RPC ----

    async def request(self, method: str, **params: Any) -> dict:
        """Call *method* and return its ``result``; RPC errors raise."""
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        payload = {"method": method, "params": [params]}
        try:
            async with self._session.post(self.url, json=payload) as resp:
                if resp.status != 200:
                    raise LedgerClientError("httpError", f"{method}: HTTP {resp.status}")
                body = await resp.json(content_type=None)
        except aiohttp.ClientError as exc:
            raise LedgerClientError("connectionError", f"{method}: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise LedgerClientError("timeout", f"{method} timed out") from exc

        result = body.get("result") if isinstance(body, dict) else None
        if not isinstance(result, dict):
            raise LedgerClientError("badResponse", f"{method}: missing result")
        if result.get("status") == "error":
            raise LedgerClientError(
                result.get("error", "unknownError"),
                result.get("error_message") or result.get("error_exception", ""),
            )
        return result

    # ---- ledger queries ----

    async def account_sequence(self, address: str) -> int:
        result = await self.request(
            "account_info", account=address, ledger_index="current",
        )
        return int(result["account_data"]["Sequence"])

    async def ledger_current_index(self) -> int:
        result = await self.request("ledger_current")
        return int(result["ledger_current_index"])

    async def network_fee(self) -> int:
        """Open-ledger fee in drops, capped by ``max_fee_drops``."""
        result = await self.request("fee")
        drops = result["drops"]
        fee = max(int(drops.get("open_ledger_fee", 0)), int(drops["base_fee"]))
        if self.max_fee_drops is not None:
            fee = min(fee, self.max_fee_drops)
        return fee

    async def network_id(self) -> int | None:
        result = await self.request("server_info")
        value = result.get("info", {}).get("network_id")
        return int(value) if value is not None else None

    # ---- autofill ----

    async def autofill(
        self,
        batch: BatchTransaction,
        refresh_fee: bool = False,
        refresh_last_ledger: bool = False,
    ) -> BatchTransaction:
        """
        Return a copy of *batch* with missing envelope fields filled in.

        Existing values are kept, except ``Fee`` when *refresh_fee* is set
        (the Batch fee grows with every attached BatchSigner) and
        ``LastLedgerSequence`` when *refresh_last_ledger* is set.  Neither
        field is covered by BatchSigner commitments.
        """
        fields: dict[str, Any] = {}

        sequence = batch.sequence
        if sequence is None:
            sequence = await self.account_sequence(batch.account)
            fields["Sequence"] = sequence

        if batch.fee is None or refresh_fee:
            base = await self.network_fee()
            units = 2 + len(batch.raw_transactions) + len(batch.batch_signers)
            fields["Fee"] = str(base * units)

        if batch.last_ledger_sequence is None or refresh_last_ledger:
            fields["LastLedgerSequence"] = await self.ledger_current_index() + self.ledger_offset

        if "NetworkID" not in batch.envelope:
            network_id = await self.network_id()
            if network_id is not None and network_id > _NETWORK_ID_THRESHOLD:
                fields["NetworkID"] = network_id

        raw = await self._autofill_inner(batch, sequence)
        filled = batch.with_envelope(**fields).with_raw_transactions(raw)
        logger.info(
            f"Autofilled batch: Sequence={filled.sequence} Fee={filled.fee} "
            f"LastLedgerSequence={filled.last_ledger_sequence}"
        )
        return filled

    async def _autofill_inner(self, batch: BatchTransaction, outer_sequence: int) -> list:
        next_sequence: dict[str, int] = {batch.account: outer_sequence + 1}
        raw = []
        for inner in batch.raw_transactions:
            updates: dict[str, Any] = {}
            if "Fee" not in inner.tx_json:
                updates["Fee"] = "0"
            if "SigningPubKey" not in inner.tx_json:
                updates["SigningPubKey"] = ""
            needs_sequence = inner.sequence is None and "TicketSequence" not in inner.tx_json
            if needs_sequence:
                account = inner.account
                if account not in next_sequence:
                    next_sequence[account] = await self.account_sequence(account)
                updates["Sequence"] = next_sequence[account]
                next_sequence[account] += 1
            raw.append(inner.updated(**updates) if updates else inner)
        return raw

    # ---- submission ----

    async def submit(self, tx_blob: str) -> SubmitResult:
        result = await self.request("submit", tx_blob=tx_blob)
        tx_json = result.get("tx_json", {})
        return SubmitResult(
            finalized=False,
            result_code=result.get("engine_result", ""),
            transaction_hash=tx_json.get("hash"),
            message=result.get("engine_result_message", ""),
        )

    async def submit_and_wait(self, signed: SignedTransaction) -> SubmitResult:
        """
        Submit *signed* and poll ``tx`` until it is validated or its
        ``LastLedgerSequence`` has passed.
        """
        last_ledger = signed.last_ledger_sequence
        if last_ledger is None:
            raise ValueError("LastLedgerSequence is required to wait for validation")

        preliminary = await self.submit(signed.tx_blob)
        logger.info(f"Submitted {signed.hash}: {preliminary.result_code}")
        if preliminary.result_code.startswith(("tem", "tef", "tel")):
            return SubmitResult(
                finalized=True,
                result_code=preliminary.result_code,
                transaction_hash=signed.hash,
                message=preliminary.message,
            )

        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                result = await self.request("tx", transaction=signed.hash)
            except LedgerClientError as exc:
                if exc.error != "txnNotFound":
                    raise
                result = {}

            if result.get("validated"):
                meta = result.get("meta", {})
                return SubmitResult(
                    finalized=True,
                    result_code=meta.get("TransactionResult", ""),
                    ledger_index=result.get("ledger_index"),
                    transaction_hash=result.get("hash", signed.hash),
                    validated=True,
                )

            current = await self.ledger_current_index()
            if current > last_ledger:
                logger.warning(
                    f"{signed.hash} not validated by LastLedgerSequence {last_ledger}"
                )
                return SubmitResult(
                    finalized=True,
                    result_code=EXPIRED_RESULT_CODE,
                    transaction_hash=signed.hash,
                    message=(
                        f"LastLedgerSequence {last_ledger} passed without validation "
                        f"(preliminary result {preliminary.result_code})"
                    ),
                )
