"""
Tests for keyrelay_core.config: TOML configuration and environment overrides.

Covers:
  - Default values for all dataclass sections
  - TOML parsing and section merging
  - Per-network endpoint sections
  - Environment variable overrides (precedence over TOML)
  - Hyphenated key handling
  - Unknown networks
"""

from __future__ import annotations

import os
import textwrap
import unittest
from unittest.mock import patch

from keyrelay_core.config import (
    NETWORK_IDS,
    BridgeConfig,
    ExecutionConfig,
    KeyRelayConfig,
    NetworkEndpoints,
    WalletConfig,
    _merge,
    load_config,
)


def _write(tmp_dir: str, content: str) -> str:
    path = os.path.join(tmp_dir, "keyrelay.toml")
    with open(path, "w", encoding="utf-8") as f:
        f.write(textwrap.dedent(content))
    return path


# ═══════════════════════════════════════════════════════════════════
#  Defaults
# ═══════════════════════════════════════════════════════════════════

class TestDefaults(unittest.TestCase):

    def test_wallet_defaults(self):
        w = WalletConfig()
        self.assertEqual(w.default_network, "testnet")
        self.assertEqual(w.store_path, "")
        self.assertEqual(w.kdf_iterations, 600_000)

    def test_execution_defaults(self):
        e = ExecutionConfig()
        self.assertEqual(e.request_timeout, 30.0)
        self.assertEqual(e.poll_interval, 1.0)

    def test_bridge_defaults(self):
        self.assertEqual(BridgeConfig().request_timeout, 60.0)

    def test_all_networks_configured(self):
        cfg = KeyRelayConfig()
        self.assertEqual(set(cfg.networks), set(NETWORK_IDS))
        for net in NETWORK_IDS:
            self.assertTrue(cfg.endpoints(net).mirror_url.endswith("/api/v1"))

    def test_submit_url_defaults_to_mirror(self):
        ep = NetworkEndpoints("http://x/api/v1")
        self.assertEqual(ep.submit_url, "http://x/api/v1")

    def test_unknown_network_endpoints(self):
        with self.assertRaises(KeyError):
            KeyRelayConfig().endpoints("devnet")


# ═══════════════════════════════════════════════════════════════════
#  TOML file
# ═══════════════════════════════════════════════════════════════════

class TestTomlLoading(unittest.TestCase):

    def setUp(self):
        import tempfile
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = self._tmp.name

    def tearDown(self):
        self._tmp.cleanup()

    def test_missing_file_gives_defaults(self):
        cfg = load_config(os.path.join(self.tmp, "nope.toml"))
        self.assertEqual(cfg.wallet.default_network, "testnet")

    def test_sections_merged(self):
        path = _write(self.tmp, """\
            [wallet]
            default_network = "mainnet"
            kdf-iterations = 1000

            [execution]
            request_timeout = 5.5

            [bridge]
            request_timeout = 12

            [logging]
            level = "DEBUG"
            format = "json"
        """)
        cfg = load_config(path)
        self.assertEqual(cfg.wallet.default_network, "mainnet")
        self.assertEqual(cfg.wallet.kdf_iterations, 1000)
        self.assertEqual(cfg.execution.request_timeout, 5.5)
        self.assertEqual(cfg.bridge.request_timeout, 12)
        self.assertEqual(cfg.logging.format, "json")

    def test_network_section_without_submit_url(self):
        path = _write(self.tmp, """\
            [networks.testnet]
            mirror_url = "http://localhost:5551/api/v1"
        """)
        ep = load_config(path).endpoints("testnet")
        self.assertEqual(ep.mirror_url, "http://localhost:5551/api/v1")
        self.assertEqual(ep.submit_url, "http://localhost:5551/api/v1")

    def test_network_section_with_submit_url(self):
        path = _write(self.tmp, """\
            [networks.previewnet]
            mirror_url = "http://m/api/v1"
            submit_url = "http://relay/api/v1"
        """)
        ep = load_config(path).endpoints("previewnet")
        self.assertEqual(ep.submit_url, "http://relay/api/v1")

    def test_unknown_network_section(self):
        path = _write(self.tmp, """\
            [networks.devnet]
            mirror_url = "http://x"
        """)
        with self.assertRaises(ValueError):
            load_config(path)

    def test_unknown_default_network(self):
        path = _write(self.tmp, """\
            [wallet]
            default_network = "devnet"
        """)
        with self.assertRaises(ValueError):
            load_config(path)


# ═══════════════════════════════════════════════════════════════════
#  Environment overrides
# ═══════════════════════════════════════════════════════════════════

class TestEnvOverrides(unittest.TestCase):

    @patch.dict(os.environ, {"KEYRELAY_NETWORK": "previewnet"}, clear=False)
    def test_env_network(self):
        self.assertEqual(load_config(None).wallet.default_network, "previewnet")

    @patch.dict(os.environ, {"KEYRELAY_KDF_ITERATIONS": "1234"}, clear=False)
    def test_env_iterations(self):
        self.assertEqual(load_config(None).wallet.kdf_iterations, 1234)

    @patch.dict(os.environ, {"KEYRELAY_REQUEST_TIMEOUT": "2.5"}, clear=False)
    def test_env_timeout(self):
        self.assertEqual(load_config(None).execution.request_timeout, 2.5)

    @patch.dict(os.environ, {"KEYRELAY_LOG_LEVEL": "debug"}, clear=False)
    def test_env_log_level_uppercased(self):
        self.assertEqual(load_config(None).logging.level, "DEBUG")

    @patch.dict(os.environ, {"KEYRELAY_TESTNET_MIRROR_URL": "http://env/api/v1"}, clear=False)
    def test_env_mirror_moves_default_submit(self):
        ep = load_config(None).endpoints("testnet")
        self.assertEqual(ep.mirror_url, "http://env/api/v1")
        self.assertEqual(ep.submit_url, "http://env/api/v1")

    @patch.dict(os.environ, {
        "KEYRELAY_MAINNET_MIRROR_URL": "http://m/api/v1",
        "KEYRELAY_MAINNET_SUBMIT_URL": "http://s/api/v1",
    }, clear=False)
    def test_env_submit_url(self):
        ep = load_config(None).endpoints("mainnet")
        self.assertEqual(ep.mirror_url, "http://m/api/v1")
        self.assertEqual(ep.submit_url, "http://s/api/v1")

    @patch.dict(os.environ, {"KEYRELAY_NETWORK": "mainnet"}, clear=False)
    def test_env_beats_toml(self):
        import tempfile
        with tempfile.TemporaryDirectory() as tmp:
            path = _write(tmp, """\
                [wallet]
                default_network = "previewnet"
            """)
            self.assertEqual(load_config(path).wallet.default_network, "mainnet")


class TestMergeHelper(unittest.TestCase):

    def test_unknown_keys_ignored(self):
        w = WalletConfig()
        _merge(w, {"bogus": 1, "store-path": "/tmp/w.db"})
        self.assertEqual(w.store_path, "/tmp/w.db")
        self.assertFalse(hasattr(w, "bogus"))


if __name__ == "__main__":
    unittest.main()
