"""
Tests for batchsigner_core.logging_config — formatters and seed redaction.
"""

import io
import json
import logging
import os
import tempfile
import unittest

from batchsigner_core.config import LoggingConfig
from batchsigner_core.logging_config import (
    REDACTED,
    _HumanFormatter,
    _JSONFormatter,
    _RedactSeedsFilter,
    redact,
    setup_logging,
    setup_logging_from_config,
)
from batchsigner_core.wallet import KEY_TYPE_SECP256K1, Wallet

ED_SEED = Wallet.from_entropy(b"\x01" * 16).seed
SECP_SEED = Wallet.from_entropy(b"\x02" * 16, KEY_TYPE_SECP256K1).seed


def _record(msg, *args, exc_info=None):
    return logging.LogRecord("batchsigner_core", logging.INFO, __file__, 1, msg, args, exc_info)


class TestRedact(unittest.TestCase):

    def test_both_seed_kinds(self):
        for seed in (ED_SEED, SECP_SEED):
            self.assertEqual(redact(f"seed={seed} ok"), f"seed={REDACTED} ok")

    def test_addresses_untouched(self):
        address = Wallet.from_seed(ED_SEED).address
        self.assertEqual(redact(f"account {address}"), f"account {address}")

    def test_filter_rewrites_formatted_message(self):
        record = _record("bad seed %s", SECP_SEED)
        self.assertTrue(_RedactSeedsFilter().filter(record))
        self.assertEqual(record.getMessage(), f"bad seed {REDACTED}")

    def test_filter_leaves_clean_record(self):
        record = _record("count %d", 3)
        _RedactSeedsFilter().filter(record)
        self.assertEqual(record.args, (3,))


class TestFormatters(unittest.TestCase):

    def test_json_formatter(self):
        out = json.loads(_JSONFormatter().format(_record("hello %s", "world")))
        self.assertEqual(out["msg"], "hello world")
        self.assertEqual(out["level"], "INFO")
        self.assertEqual(out["logger"], "batchsigner_core")
        self.assertIn("ts", out)

    def test_json_formatter_redacts_exception(self):
        try:
            raise ValueError(f"Invalid seed {ED_SEED}")
        except ValueError:
            import sys
            record = _record("failed", exc_info=sys.exc_info())
        out = json.loads(_JSONFormatter().format(record))
        self.assertNotIn(ED_SEED, out["exception"])
        self.assertIn(REDACTED, out["exception"])

    def test_human_formatter(self):
        line = _HumanFormatter().format(_record("hello"))
        self.assertIn("batchsigner_core: hello", line)
        self.assertIn("INFO", line)


class TestSetupLogging(unittest.TestCase):

    def setUp(self):
        self._saved = logging.getLogger().handlers[:]
        self._level = logging.getLogger().level

    def tearDown(self):
        root = logging.getLogger()
        for h in root.handlers:
            h.close()
        root.handlers[:] = self._saved
        root.setLevel(self._level)

    def test_level_and_handlers(self):
        setup_logging(level="debug", fmt="json")
        root = logging.getLogger()
        self.assertEqual(root.level, logging.DEBUG)
        self.assertEqual(len(root.handlers), 1)
        self.assertIsInstance(root.handlers[0].formatter, _JSONFormatter)
        self.assertGreaterEqual(logging.getLogger("aiohttp").level, logging.WARNING)

    def test_console_is_redacted(self):
        setup_logging(level="INFO", fmt="json")
        stream = io.StringIO()
        logging.getLogger().handlers[0].setStream(stream)
        logging.getLogger("batchsigner_cli").info(f"using {SECP_SEED}")
        self.assertNotIn(SECP_SEED, stream.getvalue())

    def test_file_handler_is_json(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "logs", "batch.log")
            setup_logging_from_config(LoggingConfig(level="INFO", format="human", file=path))
            logging.getLogger("batchsigner_core").info(f"seed {ED_SEED}")
            for h in logging.getLogger().handlers:
                h.flush()
            with open(path, encoding="utf-8") as f:
                entry = json.loads(f.readline())
            self.assertEqual(entry["msg"], f"seed {REDACTED}")
            for h in logging.getLogger().handlers:
                h.close()
            logging.getLogger().handlers.clear()


if __name__ == "__main__":
    unittest.main()
