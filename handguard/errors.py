"""
Protocol error taxonomy.

Every failure aborts the enclosing transaction; the message identifies the
specific condition so callers (CLI, mirror, tests) can surface it verbatim.
"""

from __future__ import annotations

__all__ = [
    "ProtocolError",
    "ValidationError",
    "Unauthorized",
    "InsufficientFunds",
    "ExternalCallError",
    "PriceFeedNotFound",
    "SwapFailed",
    "NotFound",
]


class ProtocolError(Exception):
    """Base class for every error raised by a protocol entry point."""

    kind = "protocol"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "error": type(self).__name__, "message": self.message}


class ValidationError(ProtocolError):
    kind = "validation"


class Unauthorized(ProtocolError):
    kind = "authorization"

    def __init__(self, account: str) -> None:
        super().__init__(f"OwnableUnauthorizedAccount({account})")
        self.account = account


class InsufficientFunds(ProtocolError):
    kind = "insufficient"


class ExternalCallError(ProtocolError):
    kind = "external"


class PriceFeedNotFound(ExternalCallError):
    def __init__(self, token: str) -> None:
        super().__init__("Price feed not found")
        self.token = token


class SwapFailed(ExternalCallError):
    pass


class NotFound(ProtocolError):
    kind = "not_found"
