"""Error classification and bounded exponential-backoff retries.

``classify`` maps any failure onto the fixed ``ErrorKind`` taxonomy with a
canned user message and remediation suggestions. ``retry`` re-invokes an
async operation while its failures are retryable and always re-raises the
original exception once it gives up.

Typical usage::

    policy = BackoffPolicy(initial_delay_ms=1000, multiplier=2, max_attempts=3)
    tx_hash = await retry(lambda: contracts.register_dlp(params), policy)
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from create_datadao.errors import (
    TERMINAL_KINDS,
    DeployTimeoutError,
    ErrorKind,
    ExternalError,
    ValidationError,
)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]

# Checked in order; the first group with a matching substring wins.
_TEXT_PATTERNS: list[tuple[ErrorKind, tuple[str, ...]]] = [
    (ErrorKind.INSUFFICIENT_FUNDS, ("insufficient funds", "insufficient balance")),
    (ErrorKind.CONTRACT_REVERTED, ("execution reverted", "reverted", "revert")),
    (
        ErrorKind.NETWORK,
        ("network", "econnrefused", "econnreset", "timeout", "timed out", "socket hang up", "fetch failed"),
    ),
    (
        ErrorKind.NONCE_CONFLICT,
        ("nonce too low", "nonce has already been used", "replacement transaction underpriced", "nonce"),
    ),
    (ErrorKind.AUTH_REQUIRED, ("not logged in", "not authenticated", "authentication required", "bad credentials")),
    (ErrorKind.RATE_LIMITED, ("rate limit", "secondary rate", "too many requests")),
    (ErrorKind.ALREADY_EXISTS, ("already exists", "name already exists")),
    (ErrorKind.TOOL_MISSING, ("command not found", "no such file or directory")),
]

_MESSAGES: dict[ErrorKind, tuple[str, list[str]]] = {
    ErrorKind.INSUFFICIENT_FUNDS: (
        "Insufficient funds to pay for the transaction.",
        [
            "Fund your wallet with testnet VANA from https://faucet.vana.org",
            "Registration also needs 1 VANA attached as the registration fee",
        ],
    ),
    ErrorKind.CONTRACT_REVERTED: (
        "The contract rejected the transaction (execution reverted).",
        [
            "Check that the DataDAO is not already registered under this address",
            "Verify the contract address and owner in deployment.json",
        ],
    ),
    ErrorKind.NETWORK: (
        "Could not reach the network.",
        [
            "Check your internet connection",
            "The RPC endpoint may be temporarily unavailable; try again in a few minutes",
        ],
    ),
    ErrorKind.NONCE_CONFLICT: (
        "Another transaction from this wallet is pending (nonce conflict).",
        [
            "Wait for pending transactions to confirm, then try again",
            "Avoid running other deployments from the same wallet at the same time",
        ],
    ),
    ErrorKind.AUTH_REQUIRED: (
        "The GitHub CLI is not authenticated.",
        ["Run `gh auth login` and try again"],
    ),
    ErrorKind.RATE_LIMITED: (
        "GitHub rate limit reached.",
        ["Wait a few minutes before retrying", "Authenticated requests have a higher limit"],
    ),
    ErrorKind.ALREADY_EXISTS: (
        "The resource already exists.",
        ["Reuse the existing resource or choose a different name"],
    ),
    ErrorKind.TOOL_MISSING: (
        "A required command-line tool is not installed.",
        ["Install it and make sure it is on your PATH"],
    ),
    ErrorKind.TIMEOUT: (
        "Timed out waiting for the network to confirm the value.",
        [
            "The value may still appear; re-run the step in a few minutes",
            "Check the transaction on the block explorer",
        ],
    ),
    ErrorKind.INVALID_INPUT: (
        "Invalid input.",
        ["Correct the value shown in the details below and try again"],
    ),
    ErrorKind.UNKNOWN: (
        "An unexpected error occurred.",
        ["Re-run the step; if it keeps failing, check the details below"],
    ),
}


@dataclass
class ClassifiedError:
    """A failure mapped onto the taxonomy, ready to show to the user."""

    kind: ErrorKind
    user_message: str
    suggestions: list[str]
    cause: BaseException
    details: dict[str, Any] = field(default_factory=dict)


def infer_kind(text: str) -> ErrorKind:
    """Map free text (an exception message, CLI output) onto an ``ErrorKind``."""
    lowered = text.lower()
    for kind, needles in _TEXT_PATTERNS:
        if any(needle in lowered for needle in needles):
            return kind
    return ErrorKind.UNKNOWN


def classify(error: BaseException) -> ClassifiedError:
    """Classify *error*, preferring the structured ``kind`` set at the transport boundary."""
    if isinstance(error, DeployTimeoutError):
        kind = ErrorKind.TIMEOUT
    elif isinstance(error, ValidationError):
        kind = ErrorKind.INVALID_INPUT
    elif isinstance(error, ExternalError):
        # Boundary-assigned kinds are final.
        kind = error.kind if error.tagged else infer_kind(str(error))
    elif isinstance(error, (ConnectionError, asyncio.TimeoutError)):
        kind = ErrorKind.NETWORK
    else:
        kind = infer_kind(str(error))

    message, suggestions = _MESSAGES[kind]

    details: dict[str, Any] = {}
    for attr in ("code", "transaction"):
        value = getattr(error, attr, None)
        if value is not None:
            details[attr] = value
    extra = getattr(error, "details", None)
    if isinstance(extra, dict):
        details.update(extra)
    if str(error):
        details.setdefault("error", str(error))

    return ClassifiedError(
        kind=kind,
        user_message=message,
        suggestions=list(suggestions),
        cause=error,
        details=details,
    )


def is_retryable(error: BaseException) -> bool:
    """Default retry predicate: everything except caller errors and terminal kinds."""
    if isinstance(error, ValidationError):
        return False
    return classify(error).kind not in TERMINAL_KINDS


def retry_on(*kinds: ErrorKind) -> Callable[[BaseException], bool]:
    """Retry predicate that accepts only failures classified as one of *kinds*.

    Used for value-bearing writes, where an unexplained failure may mean the
    transaction was already broadcast.
    """
    allowed = frozenset(kinds)

    def predicate(error: BaseException) -> bool:
        return not isinstance(error, ValidationError) and classify(error).kind in allowed

    return predicate


@dataclass
class BackoffPolicy:
    """How many times to try, and how long to wait in between."""

    initial_delay_ms: int = 1_000
    multiplier: float = 2.0
    max_attempts: int = 3
    is_retryable: Callable[[BaseException], bool] = is_retryable

    def delay_ms(self, attempt: int) -> float:
        """Delay after the failed *attempt* (1-based)."""
        return self.initial_delay_ms * self.multiplier ** (attempt - 1)


async def retry(
    operation: Callable[[], Awaitable[T]],
    policy: BackoffPolicy | None = None,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Run *operation* until it succeeds or the policy says stop.

    Args:
        operation: Zero-argument coroutine factory, invoked once per attempt.
        policy: Backoff policy; defaults to ``BackoffPolicy()``.
        sleep: Suspension primitive taking seconds; injectable for tests.

    Returns:
        Whatever *operation* returned on its first successful attempt.

    Raises:
        The original exception from the last attempt, unmodified.
    """
    policy = policy or BackoffPolicy()
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as exc:
            if attempt >= policy.max_attempts or not policy.is_retryable(exc):
                raise
            await sleep(policy.delay_ms(attempt) / 1000)
            attempt += 1
