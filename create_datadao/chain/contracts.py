"""Value-bearing contract writes, driven through the project's hardhat setup.

The generated ``contracts/`` workspace holds the wallet key and the deploy
scripts, so writes are delegated to hardhat rather than signed here. Output
is scraped for addresses and transaction hashes; a non-zero exit becomes an
``ExternalError`` classified from the tool's output.
"""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable
from pathlib import Path

from create_datadao.config import Config
from create_datadao.errors import ErrorKind, ExternalError, external_error
from create_datadao.retry import infer_kind
from create_datadao.utils import run_command

Runner = Callable[..., Awaitable[tuple[int, str, str]]]

_TOKEN_RE = re.compile(r"deployed at (0x[a-fA-F0-9]{40})")
_PROXY_RE = re.compile(r"DLP deployed to: (0x[a-fA-F0-9]{40})")
_TX_HASH_RE = re.compile(r"\b(0x[a-fA-F0-9]{64})\b")


class ContractTool:
    """Runs the hardhat deploy and registration commands for one project."""

    def __init__(self, config: Config, runner: Runner = run_command) -> None:
        self.config = config
        self.runner = runner

    @property
    def workdir(self) -> Path:
        return self.config.contracts_dir

    async def _run(self, cmd: list[str], env: dict[str, str] | None = None) -> str:
        try:
            returncode, stdout, stderr = await self.runner(
                cmd, cwd=self.workdir, timeout=self.config.contracts.timeout, env=env
            )
        except FileNotFoundError as exc:
            raise external_error(
                ErrorKind.TOOL_MISSING, f"{cmd[0]} is not installed", details={"command": " ".join(cmd)}
            ) from exc

        if returncode != 0:
            output = f"{stderr}\n{stdout}".strip()
            raise external_error(
                infer_kind(output),
                f"{' '.join(cmd)} failed (exit {returncode}): {output[-500:]}",
                code=returncode,
                details={"command": " ".join(cmd), "output": output[-500:]},
            )
        return stdout

    async def deploy(self) -> dict[str, str]:
        """Deploy the token and DLP proxy; returns their addresses."""
        stdout = await self._run(self.config.contracts.deploy_command)
        token = _TOKEN_RE.search(stdout)
        proxy = _PROXY_RE.search(stdout)
        if not token or not proxy:
            raise ExternalError(
                "Failed to extract contract addresses from deployment output",
                kind=ErrorKind.UNKNOWN,
                details={"output_tail": stdout[-500:]},
            )
        return {"tokenAddress": token.group(1), "contractAddress": proxy.group(1)}

    async def register_dlp(
        self, dlp_address: str, owner_address: str, name: str, treasury_address: str | None = None
    ) -> str:
        """Submit ``registerDlp`` and return the transaction hash."""
        env = {
            "DLP_ADDRESS": dlp_address,
            "OWNER_ADDRESS": owner_address,
            "TREASURY_ADDRESS": treasury_address or owner_address,
            "DLP_NAME": name,
            "DLP_REGISTRY_ADDRESS": self.config.network.registry_address,
        }
        stdout = await self._run(self.config.contracts.register_command, env=env)
        return self._tx_hash(stdout, "registerDlp")

    async def register_refiner(
        self, dlp_id: int, name: str, schema_url: str, instruction_url: str, public_key: str
    ) -> str:
        """Submit ``addRefiner`` and return the transaction hash."""
        env = {
            "DLP_ID": str(dlp_id),
            "REFINER_NAME": name,
            "SCHEMA_DEFINITION_URL": schema_url,
            "REFINEMENT_INSTRUCTION_URL": instruction_url,
            "REFINER_PUBLIC_KEY": public_key,
            "REFINER_REGISTRY_ADDRESS": self.config.network.refiner_registry_address,
        }
        stdout = await self._run(self.config.contracts.refiner_register_command, env=env)
        return self._tx_hash(stdout, "addRefiner")

    @staticmethod
    def _tx_hash(stdout: str, action: str) -> str:
        matches = _TX_HASH_RE.findall(stdout)
        if not matches:
            raise ExternalError(
                f"{action} finished but printed no transaction hash",
                kind=ErrorKind.UNKNOWN,
                details={"output_tail": stdout[-500:]},
            )
        return matches[-1]
