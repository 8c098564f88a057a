"""
Wire format shared by the page context, the relay and the wallet service.

Request   {"type": "PROVIDER_REQUEST",  "id": str, "method": str, "params": list}
Response  {"type": "PROVIDER_RESPONSE", "id": str, "result": any}
          {"type": "PROVIDER_RESPONSE", "id": str, "error": str}

Messages travel as JSON text so nothing but plain data crosses a boundary.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

REQUEST_TYPE = "PROVIDER_REQUEST"
RESPONSE_TYPE = "PROVIDER_RESPONSE"


class ProviderMethod(str, Enum):
    """Methods a page context may invoke."""
    REQUEST_ACCOUNTS = "wallet_requestAccounts"
    GET_ACCOUNT_INFO = "wallet_getAccountInfo"
    SEND_TRANSACTION = "wallet_sendTransaction"
    SIGN_MESSAGE = "wallet_signMessage"


# The trust boundary: nothing else may cross from the relay to the service.
ALLOWED_METHODS: frozenset[str] = frozenset(m.value for m in ProviderMethod)


def make_request(request_id: str, method: str, params: list[Any] | None = None) -> dict[str, Any]:
    return {"type": REQUEST_TYPE, "id": request_id, "method": method, "params": list(params or [])}


def make_response(request_id: str, *, result: Any = None, error: str | None = None) -> dict[str, Any]:
    msg: dict[str, Any] = {"type": RESPONSE_TYPE, "id": request_id}
    if error is not None:
        msg["error"] = error
    else:
        msg["result"] = result
    return msg


def encode(message: dict[str, Any]) -> str:
    return json.dumps(message, separators=(",", ":"), default=str)


def decode(text: str) -> dict[str, Any] | None:
    """Parse a wire message; anything that is not a JSON object yields None."""
    try:
        msg = json.loads(text)
    except (TypeError, ValueError):
        return None
    return msg if isinstance(msg, dict) else None


def is_request(msg: dict[str, Any] | None) -> bool:
    return (
        msg is not None
        and msg.get("type") == REQUEST_TYPE
        and isinstance(msg.get("id"), str)
        and isinstance(msg.get("method"), str)
    )


def is_response(msg: dict[str, Any] | None) -> bool:
    return (
        msg is not None
        and msg.get("type") == RESPONSE_TYPE
        and isinstance(msg.get("id"), str)
        and ("result" in msg or "error" in msg)
    )
