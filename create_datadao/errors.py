"""Exception taxonomy shared by the orchestrator and its collaborators.

``ValidationError`` is fatal caller input, ``TransientExternalError`` is worth
retrying, ``TerminalExternalError`` never is, ``DeployTimeoutError`` reports an
exhausted wait budget and ``StateCorruptionError`` needs a human to fix the
state file.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """What went wrong, independent of how the failure was reported."""

    INSUFFICIENT_FUNDS = "insufficient_funds"
    CONTRACT_REVERTED = "contract_reverted"
    NETWORK = "network"
    NONCE_CONFLICT = "nonce_conflict"
    AUTH_REQUIRED = "auth_required"
    RATE_LIMITED = "rate_limited"
    ALREADY_EXISTS = "already_exists"
    TOOL_MISSING = "tool_missing"
    TIMEOUT = "timeout"
    INVALID_INPUT = "invalid_input"
    UNKNOWN = "unknown"


TRANSIENT_KINDS: frozenset[ErrorKind] = frozenset(
    {ErrorKind.NETWORK, ErrorKind.NONCE_CONFLICT, ErrorKind.RATE_LIMITED}
)

TERMINAL_KINDS: frozenset[ErrorKind] = frozenset(
    {
        ErrorKind.INSUFFICIENT_FUNDS,
        ErrorKind.CONTRACT_REVERTED,
        ErrorKind.AUTH_REQUIRED,
        ErrorKind.TOOL_MISSING,
        ErrorKind.INVALID_INPUT,
    }
)


class DeployError(Exception):
    """Base class for every error raised by create-datadao."""


class ValidationError(DeployError):
    """Raised for malformed caller input. Never retried."""


class StateCorruptionError(DeployError):
    """Raised when the persisted deployment state cannot be read."""

    def __init__(self, path: Any, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(
            f"Deployment state at {path} is unreadable ({reason}). "
            "Fix or restore the file by hand; it is never repaired automatically."
        )


class DeployTimeoutError(DeployError, TimeoutError):
    """Raised when a poll or wait exhausts its budget."""

    def __init__(self, message: str, budget_seconds: float) -> None:
        self.budget_seconds = budget_seconds
        super().__init__(message)


class ExternalError(DeployError):
    """A failure reported by something outside this process.

    Attributes:
        kind: The classified failure kind.
        tagged: Whether the raising boundary set ``kind`` itself. Untagged
            errors are classified from their message.
        code: Structured error code from the provider (RPC code, exit status).
        transaction: Transaction hash or request the failure relates to, if any.
        details: Any other structured diagnostics worth surfacing.
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind | None = None,
        code: Any = None,
        transaction: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.kind = kind or ErrorKind.UNKNOWN
        self.tagged = kind is not None
        self.code = code
        self.transaction = transaction
        self.details = details or {}
        super().__init__(message)


class TransientExternalError(ExternalError):
    """Network blips, nonce races, rate limits. Safe to retry with backoff."""


class TerminalExternalError(ExternalError):
    """Insufficient funds, reverts, missing auth. Retrying cannot help."""


def external_error(
    kind: ErrorKind,
    message: str,
    code: Any = None,
    transaction: str | None = None,
    details: dict[str, Any] | None = None,
) -> ExternalError:
    """Build the right ``ExternalError`` subclass for *kind*."""
    if kind in TRANSIENT_KINDS:
        cls: type[ExternalError] = TransientExternalError
    elif kind in TERMINAL_KINDS:
        cls = TerminalExternalError
    else:
        cls = ExternalError
    return cls(message, kind=kind, code=code, transaction=transaction, details=details)
