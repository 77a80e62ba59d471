"""Confirmation Watcher.

Waits for values that show up on the ledger some time after the transaction
that causes them: the registry id of a freshly registered DataDAO, the
encryption key the query engine publishes for it, and ids emitted in event
logs. Sleeping and the clock are injected so tests can run in virtual time.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, Union

from create_datadao.chain.abi import same_topic
from create_datadao.errors import DeployTimeoutError, ExternalError, external_error
from create_datadao.utils import format_duration, print_dim, print_warning

EventMatcher = Union[str, Callable[[dict[str, Any]], bool]]


class Ledger(Protocol):
    async def dlp_ids(self, dlp_address: str) -> int: ...

    async def dlp_pub_key(self, dlp_id: int) -> str: ...

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None: ...


def _is_ready(value: Any) -> bool:
    return value is not None and value != ""


def _matches(log: dict[str, Any], matcher: EventMatcher) -> bool:
    if callable(matcher):
        return bool(matcher(log))
    topics = log.get("topics") or []
    return bool(topics) and same_topic(str(topics[0]), matcher)


class ConfirmationWatcher:
    """Polls a ``Ledger`` for late-arriving values with bounded budgets."""

    def __init__(
        self,
        client: Ledger,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.sleep = sleep
        self.clock = clock

    # ------------------------------------------------------------------
    # Single reads
    # ------------------------------------------------------------------

    async def get_registry_id(self, address: str) -> int:
        """Return the registry id for *address*; 0 means not registered yet."""
        try:
            return int(await self.client.dlp_ids(address))
        except ExternalError as exc:
            raise external_error(
                exc.kind,
                f"Failed to get registry id for {address}: {exc}",
                code=exc.code,
                transaction=exc.transaction,
                details=exc.details,
            ) from exc
        except Exception as exc:
            raise ExternalError(f"Failed to get registry id for {address}: {exc}") from exc

    async def get_encryption_key(self, registry_id: int) -> str:
        """Return the published encryption key, or ``""`` while it is pending."""
        try:
            return await self.client.dlp_pub_key(registry_id)
        except ExternalError as exc:
            raise external_error(
                exc.kind,
                f"Failed to get encryption key for registry id {registry_id}: {exc}",
                code=exc.code,
                details=exc.details,
            ) from exc

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def poll_for_value(
        self,
        lookup: Callable[..., Awaitable[Any]],
        args: tuple[Any, ...] = (),
        interval_ms: int = 30_000,
        max_attempts: int = 60,
        label: str = "value",
    ) -> Any:
        """Call ``lookup(*args)`` until it returns something other than ``None``/``""``.

        Lookup errors count as "not ready yet". There is no sleep after the
        final attempt.

        Raises:
            DeployTimeoutError: When every attempt came back empty.
        """
        for attempt in range(1, max_attempts + 1):
            try:
                value = await lookup(*args)
            except Exception as exc:
                print_warning(f"Error polling {label}: {exc}")
            else:
                if _is_ready(value):
                    return value
                print_dim(f"Waiting for {label}... ({max_attempts - attempt} attempts remaining)")

            if attempt < max_attempts:
                await self.sleep(interval_ms / 1000)

        budget = max_attempts * interval_ms / 1000
        raise DeployTimeoutError(
            f"{label.capitalize()} not available after {format_duration(budget)}. "
            "Check the registration or try again later.",
            budget_seconds=budget,
        )

    async def poll_for_registry_id(self, address: str, interval_ms: int, max_attempts: int) -> int:
        async def lookup(addr: str) -> int | None:
            return await self.get_registry_id(addr) or None

        return await self.poll_for_value(lookup, (address,), interval_ms, max_attempts, label="registry id")

    async def poll_for_encryption_key(self, registry_id: int, interval_ms: int, max_attempts: int) -> str:
        return await self.poll_for_value(
            self.get_encryption_key, (registry_id,), interval_ms, max_attempts, label="encryption key"
        )

    # ------------------------------------------------------------------
    # Event logs
    # ------------------------------------------------------------------

    async def extract_event_arg(
        self, tx_hash: str, matcher: EventMatcher, topic_index: int = 1
    ) -> int | None:
        """Decode an indexed integer argument from the first matching log.

        Returns ``None`` when the transaction has no receipt yet, no log
        matches, the matching log is missing the topic, or the topic is not
        valid hex.
        """
        receipt = await self.client.get_transaction_receipt(tx_hash)
        if not receipt:
            return None

        for log in receipt.get("logs") or []:
            if not _matches(log, matcher):
                continue
            topics = log.get("topics") or []
            if len(topics) <= topic_index:
                return None
            try:
                return int(str(topics[topic_index]), 16)
            except ValueError:
                print_warning(f"Ignoring malformed topic in {tx_hash}: {topics[topic_index]!r}")
                return None
        return None

    async def wait_for_event(
        self,
        tx_hash: str,
        matcher: EventMatcher,
        deadline_ms: int,
        interval_ms: int = 3_000,
        topic_index: int = 1,
    ) -> int:
        """Repeat ``extract_event_arg`` until it yields a value or the deadline passes.

        Raises:
            DeployTimeoutError: When the wall-clock deadline passes first.
        """
        deadline = self.clock() + deadline_ms / 1000
        while True:
            try:
                value = await self.extract_event_arg(tx_hash, matcher, topic_index)
            except Exception as exc:
                print_dim(f"Transaction {tx_hash} not mined yet ({exc})")
                value = None
            if value is not None:
                return value

            remaining = deadline - self.clock()
            if remaining <= 0:
                budget = deadline_ms / 1000
                raise DeployTimeoutError(
                    f"Event not found in {tx_hash} within {format_duration(budget)}",
                    budget_seconds=budget,
                )
            await self.sleep(min(interval_ms / 1000, remaining))
