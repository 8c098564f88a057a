"""
Error taxonomy for KeyRelay.

Every failure the wallet raises on purpose derives from ``WalletError`` and
carries a stable ``code`` (the class name) so the bridge can turn it into a
plain message string for the page context:

  - AuthenticationError    wrong passphrase or tampered envelope (never says which)
  - ValidationError        malformed account id, non-positive amount, unbalanced legs
  - PreconditionError      unfrozen draft, missing session, unconnected origin
  - UnsupportedMethodError bridge method not on the allow-list
  - NetworkError           transport failure / non-2xx from the ledger endpoints

A non-success ledger status is *not* an error; it is returned inside an
``ExecutionResult``.
"""

from __future__ import annotations


class WalletError(Exception):
    """Base class for all wallet failures."""

    @property
    def code(self) -> str:
        return type(self).__name__


class AuthenticationError(WalletError):
    """Envelope could not be opened with the given passphrase."""

    def __init__(self, message: str = "Unable to decrypt wallet"):
        super().__init__(message)


class ValidationError(WalletError, ValueError):
    """Caller supplied malformed or inconsistent input."""


class PreconditionError(WalletError):
    """Operation attempted in a state that does not allow it."""


class UnsupportedMethodError(WalletError):
    """Bridge method name is not on the allow-list."""

    def __init__(self, method: str):
        self.method = method
        super().__init__(f"Unsupported method: {method}")


class NetworkError(WalletError):
    """Transport-level failure talking to a ledger endpoint."""

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(message)


def describe_error(exc: BaseException) -> str:
    """Render *exc* as the only text allowed across the trust boundary."""
    if isinstance(exc, UnsupportedMethodError):
        return exc.code
    if isinstance(exc, WalletError):
        return f"{exc.code}: {exc}"
    return "InternalError"
