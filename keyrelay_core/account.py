"""
Ledger entity identifiers.

Accounts, tokens and contracts share the ``shard.realm.num`` notation,
e.g. ``0.0.4515``.
"""

from __future__ import annotations

import re

from keyrelay_core.errors import ValidationError

_ENTITY_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)$")


def parse_entity_id(value, name: str = "account id") -> tuple[int, int, int]:
    """Split an entity id into ``(shard, realm, num)``."""
    if not isinstance(value, str):
        raise ValidationError(f"Invalid {name}: expected shard.realm.num")
    m = _ENTITY_RE.match(value.strip())
    if m is None:
        raise ValidationError(f"Invalid {name} {value!r}: expected shard.realm.num")
    return int(m.group(1)), int(m.group(2)), int(m.group(3))


def normalize_entity_id(value, name: str = "account id") -> str:
    """Validate and return the canonical text form (no leading zeros)."""
    shard, realm, num = parse_entity_id(value, name)
    return f"{shard}.{realm}.{num}"


def is_entity_id(value) -> bool:
    return isinstance(value, str) and _ENTITY_RE.match(value.strip()) is not None
