"""
Tests for batchsigner_core.ledger_client against an in-process fake rippled.

Covers:
  - JSON-RPC request shape and error mapping
  - Ledger queries (account sequence, current ledger, fee, network id)
  - Batch autofill (outer envelope and inner sequences)
  - Submission and validation polling
"""

from __future__ import annotations

import contextlib

import pytest
from aiohttp import web
from aiohttp import test_utils

from batchsigner_core.config import NetworkConfig
from batchsigner_core.errors import LedgerClientError
from batchsigner_core.ledger_client import LedgerClient, SubmitResult
from batchsigner_core.transaction import BatchSigner, build_batch
from batchsigner_core.wallet import SignedTransaction


# ─── Fake rippled ───────────────────────────────────────────────────

class _FakeRippled:
    """Answers the handful of JSON-RPC methods the client uses."""

    def __init__(self):
        self.sequences: dict[str, int] = {}
        self.current_ledger = 1000
        self.ledger_step = 0
        self.drops = {"base_fee": "10", "open_ledger_fee": "10"}
        self.network_id: int | None = None
        self.engine_result = "tesSUCCESS"
        self.validate_after: int | None = 1
        self.final_result = "tesSUCCESS"
        self.tx_lookups = 0
        self.calls: list[tuple[str, dict]] = []
        self.submitted: list[str] = []

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/", self._handle)
        return app

    async def _handle(self, request: web.Request) -> web.Response:
        body = await request.json()
        method = body["method"]
        params = body["params"][0]
        self.calls.append((method, params))
        handler = getattr(self, f"_rpc_{method}", None)
        if handler is None:
            result = {"status": "error", "error": "unknownCmd", "error_message": "Unknown method."}
        else:
            result = handler(params)
        return web.json_response({"result": result})

    def _rpc_account_info(self, params):
        account = params["account"]
        if account not in self.sequences:
            return {"status": "error", "error": "actNotFound", "error_message": "Account not found."}
        return {"status": "success", "account_data": {"Account": account,
                                                      "Sequence": self.sequences[account]}}

    def _rpc_ledger_current(self, params):
        index = self.current_ledger
        self.current_ledger += self.ledger_step
        return {"status": "success", "ledger_current_index": index}

    def _rpc_fee(self, params):
        return {"status": "success", "drops": dict(self.drops)}

    def _rpc_server_info(self, params):
        info = {"build_version": "2.4.0"}
        if self.network_id is not None:
            info["network_id"] = self.network_id
        return {"status": "success", "info": info}

    def _rpc_submit(self, params):
        self.submitted.append(params["tx_blob"])
        return {
            "status": "success",
            "engine_result": self.engine_result,
            "engine_result_message": f"{self.engine_result} message",
            "tx_json": {"hash": "ABCD"},
        }

    def _rpc_tx(self, params):
        self.tx_lookups += 1
        if self.validate_after is None or self.tx_lookups < self.validate_after:
            return {"status": "error", "error": "txnNotFound",
                    "error_message": "Transaction not found."}
        return {
            "status": "success",
            "validated": True,
            "hash": params["transaction"],
            "ledger_index": self.current_ledger,
            "meta": {"TransactionResult": self.final_result},
        }


@contextlib.asynccontextmanager
async def _client(fake: _FakeRippled, **kwargs):
    async with test_utils.TestServer(fake.app()) as server:
        kwargs.setdefault("poll_interval", 0.01)
        async with LedgerClient(str(server.make_url("/")), **kwargs) as client:
            yield client


def _signed(last_ledger: int | None = 1005) -> SignedTransaction:
    tx = {"TransactionType": "Batch"}
    if last_ledger is not None:
        tx["LastLedgerSequence"] = last_ledger
    return SignedTransaction(tx_json=tx, tx_blob="1200", hash="ABCD")


def _template(parent, alice, bob):
    return build_batch(parent.address, [
        {"TransactionType": "Payment", "Account": parent.address,
         "Destination": alice.address, "Amount": "1"},
        {"TransactionType": "Payment", "Account": alice.address,
         "Destination": bob.address, "Amount": "2"},
        {"TransactionType": "Payment", "Account": bob.address,
         "Destination": alice.address, "Amount": "3"},
        {"TransactionType": "Payment", "Account": alice.address,
         "Destination": parent.address, "Amount": "4"},
    ])


# ═══════════════════════════════════════════════════════════════════
#  Raw RPC
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestRequest:

    async def test_request_shape(self):
        fake = _FakeRippled()
        fake.sequences["rX"] = 1
        async with _client(fake) as client:
            await client.request("fee")
            await client.request("account_info", account="rX", ledger_index="current")
        assert fake.calls[0] == ("fee", {})
        assert fake.calls[1] == ("account_info", {"account": "rX", "ledger_index": "current"})

    async def test_rpc_error_raises(self):
        fake = _FakeRippled()
        async with _client(fake) as client:
            with pytest.raises(LedgerClientError) as info:
                await client.request("nonsense")
        assert info.value.error == "unknownCmd"
        assert info.value.message == "Unknown method."

    async def test_http_error(self):
        async def broken(request):
            return web.Response(status=503, text="busy")

        app = web.Application()
        app.router.add_post("/", broken)
        async with test_utils.TestServer(app) as server:
            async with LedgerClient(str(server.make_url("/"))) as client:
                with pytest.raises(LedgerClientError) as info:
                    await client.request("fee")
        assert info.value.error == "httpError"

    async def test_missing_result(self):
        async def empty(request):
            return web.json_response({"nothing": True})

        app = web.Application()
        app.router.add_post("/", empty)
        async with test_utils.TestServer(app) as server:
            async with LedgerClient(str(server.make_url("/"))) as client:
                with pytest.raises(LedgerClientError, match="missing result"):
                    await client.request("fee")

    async def test_connection_error(self):
        async with LedgerClient("http://127.0.0.1:1/", timeout_seconds=2) as client:
            with pytest.raises(LedgerClientError) as info:
                await client.request("fee")
        assert info.value.error in ("connectionError", "timeout")

    async def test_from_config(self):
        cfg = NetworkConfig(rpc_url="http://example.invalid/", ledger_offset=5, poll_interval=0.5)
        client = LedgerClient.from_config(cfg, max_fee_drops=100)
        assert client.url == "http://example.invalid/"
        assert client.ledger_offset == 5
        assert client.poll_interval == 0.5
        assert client.max_fee_drops == 100
        await client.close()


# ═══════════════════════════════════════════════════════════════════
#  Queries
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestQueries:

    async def test_account_sequence(self):
        fake = _FakeRippled()
        fake.sequences["rAlice"] = 42
        async with _client(fake) as client:
            assert await client.account_sequence("rAlice") == 42
            with pytest.raises(LedgerClientError) as info:
                await client.account_sequence("rNobody")
        assert info.value.error == "actNotFound"

    async def test_network_fee_uses_open_ledger_fee(self):
        fake = _FakeRippled()
        fake.drops = {"base_fee": "10", "open_ledger_fee": "25"}
        async with _client(fake) as client:
            assert await client.network_fee() == 25

    async def test_network_fee_cap(self):
        fake = _FakeRippled()
        fake.drops = {"base_fee": "10", "open_ledger_fee": "5000"}
        async with _client(fake, max_fee_drops=100) as client:
            assert await client.network_fee() == 100

    async def test_network_id(self):
        fake = _FakeRippled()
        async with _client(fake) as client:
            assert await client.network_id() is None
            fake.network_id = 21338
            assert await client.network_id() == 21338


# ═══════════════════════════════════════════════════════════════════
#  Autofill
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestAutofill:

    def _fake(self, parent, alice, bob) -> _FakeRippled:
        fake = _FakeRippled()
        fake.sequences = {parent.address: 5, alice.address: 11, bob.address: 21}
        return fake

    async def test_envelope(self, parent, alice, bob):
        fake = self._fake(parent, alice, bob)
        async with _client(fake) as client:
            batch = await client.autofill(_template(parent, alice, bob))
        assert batch.sequence == 5
        assert batch.fee == str(10 * (2 + 4))
        assert batch.last_ledger_sequence == 1020
        assert "NetworkID" not in batch.envelope

    async def test_inner_sequences(self, parent, alice, bob):
        fake = self._fake(parent, alice, bob)
        async with _client(fake) as client:
            batch = await client.autofill(_template(parent, alice, bob))
        assert [inner.sequence for inner in batch.raw_transactions] == [6, 11, 21, 12]
        for inner in batch.raw_transactions:
            assert inner.fee == "0"
            assert inner.signing_pub_key == ""

    async def test_existing_values_kept(self, parent, alice, bob):
        fake = self._fake(parent, alice, bob)
        template = _template(parent, alice, bob).with_envelope(
            Sequence=77, Fee="500", LastLedgerSequence=3000,
        )
        raw = list(template.raw_transactions)
        raw[1] = raw[1].updated(TicketSequence=9)
        async with _client(fake) as client:
            batch = await client.autofill(template.with_raw_transactions(raw))
        assert (batch.sequence, batch.fee, batch.last_ledger_sequence) == (77, "500", 3000)
        assert batch.raw_transactions[0].sequence == 78
        assert batch.raw_transactions[1].sequence is None
        assert batch.raw_transactions[3].sequence == 11
        assert not any(m == "account_info" and p["account"] == parent.address
                       for m, p in fake.calls)

    async def test_refresh_fee_counts_signers(self, parent, alice, bob):
        fake = self._fake(parent, alice, bob)
        signers = [BatchSigner(alice.address, alice.public_key_hex, "00"),
                   BatchSigner(bob.address, bob.public_key_hex, "00")]
        template = _template(parent, alice, bob).with_envelope(
            Sequence=5, Fee="60", LastLedgerSequence=1010,
        ).with_batch_signers(signers)
        async with _client(fake) as client:
            kept = await client.autofill(template)
            refreshed = await client.autofill(template, refresh_fee=True)
        assert kept.fee == "60"
        assert refreshed.fee == str(10 * (2 + 4 + 2))
        assert refreshed.batch_signers == template.batch_signers

    async def test_refresh_last_ledger(self, parent, alice, bob):
        fake = self._fake(parent, alice, bob)
        template = _template(parent, alice, bob).with_envelope(
            Sequence=5, Fee="60", LastLedgerSequence=1010,
        )
        async with _client(fake) as client:
            kept = await client.autofill(template)
            fake.current_ledger = 2000
            refreshed = await client.autofill(template, refresh_last_ledger=True)
        assert kept.last_ledger_sequence == 1010
        assert refreshed.last_ledger_sequence == 2020
        assert (refreshed.sequence, refreshed.fee) == (5, "60")

    async def test_network_id_above_threshold(self, parent, alice, bob):
        fake = self._fake(parent, alice, bob)
        fake.network_id = 21338
        async with _client(fake) as client:
            batch = await client.autofill(_template(parent, alice, bob))
        assert batch.envelope["NetworkID"] == 21338

    async def test_small_network_id_omitted(self, parent, alice, bob):
        fake = self._fake(parent, alice, bob)
        fake.network_id = 1
        async with _client(fake) as client:
            batch = await client.autofill(_template(parent, alice, bob))
        assert "NetworkID" not in batch.envelope

    async def test_input_unchanged(self, parent, alice, bob):
        fake = self._fake(parent, alice, bob)
        template = _template(parent, alice, bob)
        before = template.to_json()
        async with _client(fake) as client:
            await client.autofill(template)
        assert template.to_json() == before


# ═══════════════════════════════════════════════════════════════════
#  Submission
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestSubmit:

    async def test_submit_preliminary(self):
        fake = _FakeRippled()
        fake.engine_result = "terQUEUED"
        async with _client(fake) as client:
            result = await client.submit("1200")
        assert fake.submitted == ["1200"]
        assert not result.finalized
        assert result.result_code == "terQUEUED"
        assert result.transaction_hash == "ABCD"

    async def test_wait_until_validated(self):
        fake = _FakeRippled()
        fake.validate_after = 3
        async with _client(fake) as client:
            result = await client.submit_and_wait(_signed())
        assert result.finalized
        assert result.succeeded
        assert result.validated
        assert result.ledger_index == 1000
        assert fake.tx_lookups == 3

    async def test_validated_failure(self):
        fake = _FakeRippled()
        fake.final_result = "tecBATCH_FAILURE"
        async with _client(fake) as client:
            result = await client.submit_and_wait(_signed())
        assert result.finalized
        assert not result.succeeded
        assert result.result_code == "tecBATCH_FAILURE"

    async def test_immediate_rejection(self):
        fake = _FakeRippled()
        fake.engine_result = "temBAD_SIGNATURE"
        async with _client(fake) as client:
            result = await client.submit_and_wait(_signed())
        assert result.finalized
        assert result.result_code == "temBAD_SIGNATURE"
        assert not result.validated
        assert fake.tx_lookups == 0

    async def test_expires_after_last_ledger(self):
        fake = _FakeRippled()
        fake.validate_after = None
        fake.ledger_step = 2
        async with _client(fake) as client:
            result = await client.submit_and_wait(_signed(last_ledger=1004))
        assert result.finalized
        assert not result.validated
        assert not result.succeeded
        assert result.result_code == "tefMAX_LEDGER"
        assert "LastLedgerSequence" in result.message
        assert "tesSUCCESS" in result.message

    async def test_requires_last_ledger_sequence(self):
        fake = _FakeRippled()
        async with _client(fake) as client:
            with pytest.raises(ValueError):
                await client.submit_and_wait(_signed(last_ledger=None))
        assert fake.submitted == []


class TestSubmitResult:

    def test_to_dict(self):
        result = SubmitResult(True, "tesSUCCESS", ledger_index=9, transaction_hash="AB",
                              validated=True)
        assert result.succeeded
        assert result.to_dict() == {
            "finalized": True,
            "result_code": "tesSUCCESS",
            "ledger_index": 9,
            "transaction_hash": "AB",
            "message": "",
            "validated": True,
        }

    def test_unvalidated_success_is_not_success(self):
        assert not SubmitResult(True, "tesSUCCESS").succeeded
        assert not SubmitResult(False, "tesSUCCESS", transaction_hash="AB").succeeded
