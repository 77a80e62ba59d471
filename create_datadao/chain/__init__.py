"""create-datadao chain module.

Everything that talks to the ledger: read-only JSON-RPC access, the hardhat
driven writes, and the watcher that waits for asynchronous results.

Key classes:
    LedgerClient        - JSON-RPC reads (registry id, encryption key, receipts)
    ContractTool        - Contract deploy and registration writes via hardhat
    ConfirmationWatcher - Polling and event-log extraction with bounded budgets
"""

from .abi import REFINER_ADDED_TOPIC
from .client import LedgerClient
from .contracts import ContractTool
from .watcher import ConfirmationWatcher, EventMatcher

__all__ = [
    "LedgerClient",
    "ContractTool",
    "ConfirmationWatcher",
    "EventMatcher",
    "REFINER_ADDED_TOPIC",
]
