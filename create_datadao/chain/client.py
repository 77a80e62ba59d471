"""Async JSON-RPC client for the ledger's read-only interface.

Wraps ``eth_call`` and ``eth_getTransactionReceipt`` with timeout handling and
converts every transport or RPC failure into an ``ExternalError`` carrying a
structured ``ErrorKind``, so callers never have to parse error text.

Typical usage::

    client = LedgerClient(config.network)
    dlp_id = await client.dlp_ids("0xabc...")
"""

from __future__ import annotations

import itertools
from typing import Any

import httpx

from create_datadao.chain.abi import (
    DLP_IDS_SELECTOR,
    DLP_PUB_KEYS_SELECTOR,
    decode_string,
    decode_uint256,
    encode_address,
    encode_call,
    encode_uint256,
)
from create_datadao.config import NetworkConfig
from create_datadao.errors import ErrorKind, ExternalError, external_error
from create_datadao.retry import infer_kind

# EIP-1474 / geth codes that identify the failure without reading the message.
_RPC_CODE_KINDS: dict[int, ErrorKind] = {
    3: ErrorKind.CONTRACT_REVERTED,
    -32003: ErrorKind.CONTRACT_REVERTED,
    -32005: ErrorKind.RATE_LIMITED,
}


def rpc_error_kind(error: dict[str, Any]) -> ErrorKind:
    """Map a JSON-RPC ``error`` object onto an ``ErrorKind``."""
    code = error.get("code")
    if isinstance(code, int) and code in _RPC_CODE_KINDS:
        return _RPC_CODE_KINDS[code]
    return infer_kind(str(error.get("message", "")))


def http_status_kind(status_code: int) -> ErrorKind:
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code >= 500:
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


class LedgerClient:
    """Read-only access to the DLP registry and query engine contracts.

    One instance is built per run and handed to every collaborator that talks
    to the chain; tests substitute a fake with the same coroutine methods.
    """

    def __init__(self, network: NetworkConfig | None = None) -> None:
        self.network = network or NetworkConfig()
        self.rpc_url = self.network.rpc_url
        self.timeout = self.network.timeout
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        """Return a fresh ``AsyncClient`` configured with our timeout."""
        return httpx.AsyncClient(timeout=httpx.Timeout(self.timeout, connect=10.0))

    async def _rpc(self, method: str, params: list[Any]) -> Any:
        """Send one JSON-RPC request and return its ``result``.

        Raises:
            ExternalError: Transport failures, HTTP errors and RPC error objects,
                each tagged with the matching ``ErrorKind``.
        """
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            async with self._client() as client:
                response = await client.post(self.rpc_url, json=payload)
                response.raise_for_status()
                data = response.json()
        except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
            raise external_error(
                ErrorKind.NETWORK,
                f"Cannot reach RPC endpoint {self.rpc_url} ({method}): {exc}",
                details={"method": method},
            ) from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise external_error(
                http_status_kind(status),
                f"RPC endpoint returned HTTP {status} for {method}: {exc.response.text[:300]}",
                code=status,
                details={"method": method},
            ) from exc
        except ValueError as exc:
            raise external_error(
                ErrorKind.UNKNOWN,
                f"RPC endpoint returned a non-JSON response for {method}",
                details={"method": method},
            ) from exc

        if isinstance(data, dict) and data.get("error"):
            error = data["error"]
            raise external_error(
                rpc_error_kind(error),
                f"{method} failed: {error.get('message', error)}",
                code=error.get("code"),
                details={"method": method, "data": error.get("data")},
            )
        return data.get("result") if isinstance(data, dict) else None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def eth_call(self, to: str, data: str) -> str:
        result = await self._rpc("eth_call", [{"to": to, "data": data}, "latest"])
        return result or "0x"

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        """Return the receipt, or ``None`` while the transaction is not mined."""
        return await self._rpc("eth_getTransactionReceipt", [tx_hash])

    async def dlp_ids(self, dlp_address: str) -> int:
        """``DLPRegistry.dlpIds(address)``; 0 means not registered (yet)."""
        data = encode_call(DLP_IDS_SELECTOR, encode_address(dlp_address))
        raw = await self.eth_call(self.network.registry_address, data)
        try:
            return decode_uint256(raw)
        except ValueError as exc:
            raise ExternalError(f"Unexpected dlpIds result: {raw!r}", kind=ErrorKind.UNKNOWN) from exc

    async def dlp_pub_key(self, dlp_id: int) -> str:
        """``QueryEngine.dlpPubKeys(uint256)``; empty string until the key is published."""
        data = encode_call(DLP_PUB_KEYS_SELECTOR, encode_uint256(int(dlp_id)))
        raw = await self.eth_call(self.network.query_engine_address, data)
        try:
            return decode_string(raw)
        except ValueError as exc:
            raise ExternalError(f"Unexpected dlpPubKeys result: {raw!r}", kind=ErrorKind.UNKNOWN) from exc
