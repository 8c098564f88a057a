"""
Logging setup for KeyRelay.

Two console formats:
  - **human** – coloured one-liners for a terminal
  - **json**  – one JSON object per line for log shippers

Usage:
    from keyrelay_core.logging_config import setup_logging
    setup_logging(level="DEBUG", fmt="json", log_file="keyrelay.log")

Modules log account, network and transaction ids, never key material.
Every handler installed here also carries ``RedactSecretsFilter``, which
masks any run of 64+ hex digits (the length of a raw private key) in case
one slips into a message or an exception text.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

_HEX_RUN = re.compile(r"(?:0x)?[0-9a-fA-F]{64,}")
REDACTED = "[redacted]"

# LogRecord attributes passed through ``extra=`` that the JSON output keeps.
CONTEXT_FIELDS = ("account_id", "network", "tx_id", "origin", "method")


class RedactSecretsFilter(logging.Filter):
    """Mask long hex runs in the rendered message."""

    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        masked = _HEX_RUN.sub(REDACTED, msg)
        if masked != msg:
            record.msg, record.args = masked, None
        return True


class JSONLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = _HEX_RUN.sub(REDACTED, self.formatException(record.exc_info))
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    LEVEL_COLOURS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(self, colour: bool = True):
        super().__init__()
        self.colour = colour

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<7}"
        if self.colour:
            level = f"{self.LEVEL_COLOURS.get(record.levelname, '')}{level}{self.RESET}"
        line = f"{ts} {level} {record.name}: {record.getMessage()}"
        if record.exc_info and record.exc_info[1]:
            line += "\n" + _HEX_RUN.sub(REDACTED, self.formatException(record.exc_info))
        return line


def setup_logging(
    level: str = "INFO",
    fmt: str = "human",
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Install KeyRelay handlers on the root logger and return it.

    Parameters
    ----------
    level : str
        One of DEBUG, INFO, WARNING, ERROR, CRITICAL.
    fmt : str
        ``"human"`` or ``"json"`` for the stderr handler.
    log_file : str, optional
        Extra JSON-lines file handler.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    redact = RedactSecretsFilter()
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(
        JSONLineFormatter() if fmt == "json" else ConsoleFormatter(colour=sys.stderr.isatty())
    )
    console.addFilter(redact)
    root.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(path), encoding="utf-8")
        fh.setFormatter(JSONLineFormatter())
        fh.addFilter(redact)
        root.addHandler(fh)

    # aiohttp's access/client chatter is noise at INFO
    logging.getLogger("aiohttp").setLevel(max(root.level, logging.WARNING))
    return root
