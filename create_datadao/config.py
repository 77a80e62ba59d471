"""create-datadao configuration.

Centralised, typed configuration for the deployment orchestrator. All settings
use Pydantic v2 models so they can be validated at construction time and
serialised to/from JSON or environment variables without boiler-plate.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


class NetworkConfig(BaseModel):
    """The one network the DataDAO is registered on, plus its fixed contracts."""

    name: str = Field(default="moksha")
    rpc_url: str = Field(default="https://rpc.moksha.vana.org")
    explorer_url: str = Field(default="https://moksha.vanascan.io")
    registry_address: str = Field(default="0x4D59880a924526d1dD33260552Ff4328b1E18a43")
    query_engine_address: str = Field(default="0xd25Eb66EA2452cf3238A2eC6C1FD1B7F5B320490")
    refiner_registry_address: str = Field(default="0x93c3EF89369fDcf08Be159D9DeF0F18AB6Be008c")
    timeout: int = Field(default=30, ge=1, description="Per-request RPC timeout in seconds")


class PollingConfig(BaseModel):
    """Budgets for waiting on values that appear on-chain asynchronously.

    The encryption key defaults give the same 30 minute budget as the
    original CLI (30s x 60 attempts).
    """

    key_interval_ms: int = Field(default=30_000, ge=0)
    key_max_attempts: int = Field(default=60, ge=1)
    registry_interval_ms: int = Field(default=5_000, ge=0)
    registry_max_attempts: int = Field(default=24, ge=1)
    event_deadline_ms: int = Field(default=300_000, ge=0)
    event_interval_ms: int = Field(default=3_000, ge=0)


class RetryConfig(BaseModel):
    """Default exponential backoff for value-bearing writes."""

    initial_delay_ms: int = Field(default=1_000, ge=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    max_attempts: int = Field(default=3, ge=1)


class GitHubConfig(BaseModel):
    """Repository provisioning through the ``gh`` CLI."""

    binary: str = Field(default="gh")
    proof_template: str = Field(default="vana-com/vana-satya-proof-template-py")
    refiner_template: str = Field(default="vana-com/vana-data-refinement-template")
    visibility: str = Field(default="public", pattern="^(public|private)$")
    allowed_host: str = Field(default="github.com")
    timeout: int = Field(default=120, ge=10, description="Per-command timeout in seconds")


class ContractsConfig(BaseModel):
    """Hardhat commands run inside ``contracts/`` for the value-bearing writes."""

    deploy_command: list[str] = Field(
        default=["npx", "hardhat", "deploy", "--reset", "--network", "moksha", "--tags", "DLPDeploy"]
    )
    register_command: list[str] = Field(
        default=["npx", "hardhat", "run", "scripts/register-dlp.ts", "--network", "moksha"]
    )
    refiner_register_command: list[str] = Field(
        default=["npx", "hardhat", "run", "scripts/add-refiner.ts", "--network", "moksha"]
    )
    timeout: int = Field(default=600, ge=10, description="Per-command timeout in seconds")


class Config(BaseModel):
    """Global create-datadao configuration.

    Instances are created once by the CLI entry point and passed through the
    orchestrator, the stage actions and their collaborators.
    """

    project_dir: Path = Field(default=Path("."))
    state_file: str = Field(default="deployment.json")
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    contracts: ContractsConfig = Field(default_factory=ContractsConfig)

    # ------------------------------------------------------------------
    # Derived paths (read-only properties)
    # ------------------------------------------------------------------

    @property
    def state_path(self) -> Path:
        """Path to the persisted deployment progress ledger."""
        return self.project_dir / self.state_file

    @property
    def contracts_dir(self) -> Path:
        return self.project_dir / "contracts"

    @property
    def proof_dir(self) -> Path:
        return self.project_dir / "proof"

    @property
    def refiner_dir(self) -> Path:
        return self.project_dir / "refiner"

    @property
    def ui_dir(self) -> Path:
        return self.project_dir / "ui"

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path | None = None) -> Path:
        """Persist the configuration to a JSON file.

        Args:
            path: Destination file. Defaults to ``<project_dir>/datadao.config.json``.

        Returns:
            The resolved path where the file was written.
        """
        target = path or (self.project_dir / "datadao.config.json")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls, project_dir: Path | None = None) -> "Config":
        """Build a ``Config`` from environment variables.

        Recognised variables (all optional):
            DATADAO_PROJECT_DIR, DATADAO_RPC_URL, DATADAO_RPC_TIMEOUT,
            DATADAO_KEY_POLL_INTERVAL_MS, DATADAO_KEY_POLL_ATTEMPTS,
            DATADAO_RETRY_ATTEMPTS, DATADAO_RETRY_INITIAL_DELAY_MS,
            DATADAO_GH_BINARY, DATADAO_REPO_VISIBILITY.
        """
        network_kwargs: dict[str, Any] = {}
        if os.environ.get("DATADAO_RPC_URL"):
            network_kwargs["rpc_url"] = os.environ["DATADAO_RPC_URL"]
        if os.environ.get("DATADAO_RPC_TIMEOUT"):
            network_kwargs["timeout"] = int(os.environ["DATADAO_RPC_TIMEOUT"])

        polling_kwargs: dict[str, Any] = {}
        if os.environ.get("DATADAO_KEY_POLL_INTERVAL_MS"):
            polling_kwargs["key_interval_ms"] = int(os.environ["DATADAO_KEY_POLL_INTERVAL_MS"])
        if os.environ.get("DATADAO_KEY_POLL_ATTEMPTS"):
            polling_kwargs["key_max_attempts"] = int(os.environ["DATADAO_KEY_POLL_ATTEMPTS"])

        retry_kwargs: dict[str, Any] = {}
        if os.environ.get("DATADAO_RETRY_ATTEMPTS"):
            retry_kwargs["max_attempts"] = int(os.environ["DATADAO_RETRY_ATTEMPTS"])
        if os.environ.get("DATADAO_RETRY_INITIAL_DELAY_MS"):
            retry_kwargs["initial_delay_ms"] = int(os.environ["DATADAO_RETRY_INITIAL_DELAY_MS"])

        github_kwargs: dict[str, Any] = {}
        if os.environ.get("DATADAO_GH_BINARY"):
            github_kwargs["binary"] = os.environ["DATADAO_GH_BINARY"]
        if os.environ.get("DATADAO_REPO_VISIBILITY"):
            github_kwargs["visibility"] = os.environ["DATADAO_REPO_VISIBILITY"]

        directory = project_dir or Path(os.environ.get("DATADAO_PROJECT_DIR", "."))

        return cls(
            project_dir=directory,
            network=NetworkConfig(**network_kwargs),
            polling=PollingConfig(**polling_kwargs),
            retry=RetryConfig(**retry_kwargs),
            github=GitHubConfig(**github_kwargs),
        )
