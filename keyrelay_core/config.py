"""
TOML-based configuration for KeyRelay.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from keyrelay_core.config import load_config
    cfg = load_config("keyrelay.toml")
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


# Network ids the wallet knows how to bind to.
NETWORK_IDS = ("testnet", "mainnet", "previewnet")


@dataclass
class NetworkEndpoints:
    """REST bases for one network.

    ``mirror_url`` serves the read-only query surface; ``submit_url`` accepts
    signed transaction payloads and serves receipts.  Both include the
    ``/api/v1`` prefix.
    """
    mirror_url: str
    submit_url: str = ""

    def __post_init__(self) -> None:
        if not self.submit_url:
            self.submit_url = self.mirror_url


def _default_networks() -> dict[str, NetworkEndpoints]:
    return {
        "testnet": NetworkEndpoints("https://testnet.mirrornode.hedera.com/api/v1"),
        "mainnet": NetworkEndpoints("https://mainnet-public.mirrornode.hedera.com/api/v1"),
        "previewnet": NetworkEndpoints("https://previewnet.mirrornode.hedera.com/api/v1"),
    }


@dataclass
class WalletConfig:
    """Key storage and session defaults.

    When ``store_path`` is empty the wallet record lives in memory only and
    is lost on restart.
    """
    default_network: str = "testnet"
    store_path: str = ""
    kdf_iterations: int = 600_000


@dataclass
class ExecutionConfig:
    """Deadlines and polling for ledger round trips."""
    request_timeout: float = 30.0     # per network call, applied by the service
    poll_interval: float = 1.0        # receipt polling period
    default_max_fee: int = 100_000_000  # tinybars (1 HBAR)


@dataclass
class BridgeConfig:
    """Page-context request settings."""
    request_timeout: float = 60.0


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class KeyRelayConfig:
    """Top-level configuration container."""
    wallet: WalletConfig = field(default_factory=WalletConfig)
    networks: dict[str, NetworkEndpoints] = field(default_factory=_default_networks)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def endpoints(self, network: str) -> NetworkEndpoints:
        try:
            return self.networks[network]
        except KeyError:
            raise KeyError(f"Unknown network: {network}") from None


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def load_config(path: str | None = None) -> KeyRelayConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        KEYRELAY_NETWORK            -> wallet.default_network
        KEYRELAY_STORE_PATH         -> wallet.store_path
        KEYRELAY_KDF_ITERATIONS     -> wallet.kdf_iterations
        KEYRELAY_REQUEST_TIMEOUT    -> execution.request_timeout
        KEYRELAY_LOG_LEVEL          -> logging.level
        KEYRELAY_LOG_FMT            -> logging.format
        KEYRELAY_<NET>_MIRROR_URL   -> networks.<net>.mirror_url
        KEYRELAY_<NET>_SUBMIT_URL   -> networks.<net>.submit_url
    """
    cfg = KeyRelayConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("wallet", cfg.wallet),
                ("execution", cfg.execution),
                ("bridge", cfg.bridge),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])
            for net_id, raw in data.get("networks", {}).items():
                if net_id not in NETWORK_IDS:
                    raise ValueError(f"Unknown network in config: {net_id}")
                endpoints = cfg.networks[net_id]
                _merge(endpoints, raw)
                if "submit_url" not in raw and "submit-url" not in raw:
                    endpoints.submit_url = endpoints.mirror_url

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("KEYRELAY_NETWORK"):
        cfg.wallet.default_network = v
    if v := os.environ.get("KEYRELAY_STORE_PATH"):
        cfg.wallet.store_path = v
    if v := os.environ.get("KEYRELAY_KDF_ITERATIONS"):
        cfg.wallet.kdf_iterations = int(v)
    if v := os.environ.get("KEYRELAY_REQUEST_TIMEOUT"):
        cfg.execution.request_timeout = float(v)
    if v := os.environ.get("KEYRELAY_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("KEYRELAY_LOG_FMT"):
        cfg.logging.format = v
    for net_id in NETWORK_IDS:
        prefix = f"KEYRELAY_{net_id.upper()}"
        if v := os.environ.get(f"{prefix}_MIRROR_URL"):
            endpoints = cfg.networks[net_id]
            if endpoints.submit_url == endpoints.mirror_url:
                endpoints.submit_url = v
            endpoints.mirror_url = v
        if v := os.environ.get(f"{prefix}_SUBMIT_URL"):
            cfg.networks[net_id].submit_url = v

    if cfg.wallet.default_network not in NETWORK_IDS:
        raise ValueError(f"Unknown default network: {cfg.wallet.default_network}")

    return cfg
