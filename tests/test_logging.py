"""
Tests for logging setup (logging_config.py).
"""

import json
import logging

import pytest

from keyrelay_core.logging_config import (
    REDACTED,
    ConsoleFormatter,
    JSONLineFormatter,
    RedactSecretsFilter,
    setup_logging,
)


def _record(msg, *args, **extra):
    rec = logging.LogRecord("keyrelay_test", logging.INFO, __file__, 1, msg, args, None)
    for k, v in extra.items():
        setattr(rec, k, v)
    return rec


@pytest.fixture
def restore_root():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)


class TestRedaction:
    def test_masks_key_length_hex(self):
        rec = _record("key=%s", "ab" * 32)
        RedactSecretsFilter().filter(rec)
        assert rec.getMessage() == f"key={REDACTED}"

    def test_masks_0x_prefixed(self):
        rec = _record("0x" + "cd" * 40)
        RedactSecretsFilter().filter(rec)
        assert rec.getMessage() == REDACTED

    def test_leaves_ids_alone(self):
        rec = _record("Submitted 0.0.1001@1700000000.000000001 on testnet")
        RedactSecretsFilter().filter(rec)
        assert rec.getMessage() == "Submitted 0.0.1001@1700000000.000000001 on testnet"


class TestFormatters:
    def test_json_includes_context(self):
        line = JSONLineFormatter().format(_record("sent", tx_id="0.0.1@1.2", network="testnet"))
        obj = json.loads(line)
        assert obj["msg"] == "sent"
        assert obj["tx_id"] == "0.0.1@1.2"
        assert obj["network"] == "testnet"
        assert "origin" not in obj

    def test_console_without_colour(self):
        line = ConsoleFormatter(colour=False).format(_record("hello"))
        assert line.endswith("INFO    keyrelay_test: hello")
        assert "\033[" not in line


class TestSetup:
    def test_json_file_handler(self, tmp_path, restore_root):
        path = tmp_path / "logs" / "wallet.log"
        root = setup_logging(level="debug", fmt="json", log_file=str(path))
        assert root.level == logging.DEBUG
        logging.getLogger("keyrelay_test").info("secret %s", "ef" * 32)
        for h in root.handlers:
            h.flush()
        obj = json.loads(path.read_text(encoding="utf-8").strip().splitlines()[-1])
        assert obj["msg"] == f"secret {REDACTED}"

    def test_replaces_handlers(self, restore_root):
        setup_logging()
        setup_logging()
        assert len(logging.getLogger().handlers) == 1
        assert logging.getLogger("aiohttp").level == logging.WARNING
