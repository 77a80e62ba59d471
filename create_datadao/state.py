"""Deployment State Store.

``deployment.json`` is the only record of which stages have succeeded. It is
read whole, changed in memory through ``merge`` and rewritten whole by
``save`` straight after a stage reports success.

The file keeps the camelCase keys the generated project's scripts expect::

    {
      "dlpName": "MyDataDAO",
      "contractAddress": "0x...",
      "registryId": 42,
      "state": {"contractsDeployed": true, "dataDAORegistered": true, ...}
    }
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from create_datadao.errors import StateCorruptionError, ValidationError


class StageFlags(BaseModel):
    """Monotonic completion flags, one per unit of deployment work."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    contracts_deployed: bool = Field(default=False, alias="contractsDeployed")
    data_dao_registered: bool = Field(default=False, alias="dataDAORegistered")
    proof_git_setup: bool = Field(default=False, alias="proofGitSetup")
    refiner_git_setup: bool = Field(default=False, alias="refinerGitSetup")
    proof_configured: bool = Field(default=False, alias="proofConfigured")
    refiner_configured: bool = Field(default=False, alias="refinerConfigured")
    ui_configured: bool = Field(default=False, alias="uiConfigured")


FLAG_NAMES: tuple[str, ...] = tuple(
    field.alias for field in StageFlags.model_fields.values() if field.alias
)

# A flag may only become true once every flag listed for it is true.
FLAG_PREREQUISITES: dict[str, tuple[str, ...]] = {
    "dataDAORegistered": ("contractsDeployed",),
    "proofConfigured": ("proofGitSetup", "dataDAORegistered"),
    "refinerConfigured": ("refinerGitSetup", "dataDAORegistered"),
    "uiConfigured": ("proofConfigured", "refinerConfigured"),
}


class DeploymentState(BaseModel):
    """The persisted progress ledger for one project.

    Known identifiers are typed; anything else captured at creation time
    (DataDAO name, token details, credentials for the UI) passes through
    untouched as extra fields.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    flags: StageFlags = Field(default_factory=StageFlags, alias="state")
    registry_id: int | None = Field(default=None, alias="registryId")
    contract_address: str | None = Field(default=None, alias="contractAddress")
    token_address: str | None = Field(default=None, alias="tokenAddress")
    proof_repo_url: str | None = Field(default=None, alias="proofRepoUrl")
    refiner_repo_url: str | None = Field(default=None, alias="refinerRepoUrl")
    proof_url: str | None = Field(default=None, alias="proofUrl")
    encryption_key: str | None = Field(default=None, alias="encryptionKey")
    refiner_id: int | None = Field(default=None, alias="refinerId")

    def flag(self, name: str) -> bool:
        """Return the value of the flag stored under its camelCase *name*."""
        return bool(self.flags.model_dump(by_alias=True).get(name, False))

    def get(self, key: str, default: Any = None) -> Any:
        """Read any top-level value by its serialised key, pass-through fields included."""
        value = self.to_dict().get(key, default)
        return default if value is None else value

    @property
    def complete(self) -> bool:
        return all(self.flag(name) for name in FLAG_NAMES)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


def _migrate_legacy(data: dict[str, Any]) -> dict[str, Any]:
    """Fill in flags for files written before the ``state`` map existed."""
    data = dict(data)
    if "contractAddress" not in data and data.get("proxyAddress"):
        data["contractAddress"] = data["proxyAddress"]
    if "registryId" not in data and data.get("dlpId") is not None:
        data["registryId"] = data["dlpId"]
    if "state" not in data:
        data["state"] = {
            "contractsDeployed": bool(data.get("tokenAddress") and data.get("contractAddress")),
            "dataDAORegistered": bool(data.get("registryId")),
        }
    return data


def load(path: str | Path) -> DeploymentState:
    """Load the ledger at *path*.

    Returns an all-false state when the file does not exist.

    Raises:
        StateCorruptionError: If the file exists but cannot be parsed.
    """
    file_path = Path(path)
    if not file_path.exists():
        return DeploymentState()

    try:
        data = json.loads(file_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise StateCorruptionError(file_path, str(exc)) from exc
    if not isinstance(data, dict):
        raise StateCorruptionError(file_path, f"expected a JSON object, got {type(data).__name__}")

    try:
        return DeploymentState.model_validate(_migrate_legacy(data))
    except PydanticValidationError as exc:
        raise StateCorruptionError(file_path, str(exc)) from exc


def merge(state: DeploymentState, update: dict[str, Any]) -> DeploymentState:
    """Apply a shallow *update* and return a new state.

    Top-level keys replace their counterparts; the nested ``state`` map is
    merged flag by flag so unrelated flags survive.

    Raises:
        ValidationError: If a flag would go from true to false, or become true
            before its prerequisites.
    """
    current = state.to_dict()
    flag_update = dict(update.get("state") or {})

    flags = dict(current["state"])
    for name, value in flag_update.items():
        if flags.get(name) and not value:
            raise ValidationError(f"Flag '{name}' is already complete and cannot be reset")
        flags[name] = bool(value) or bool(flags.get(name))

    for name in flag_update:
        if not flags.get(name):
            continue
        missing = [req for req in FLAG_PREREQUISITES.get(name, ()) if not flags.get(req)]
        if missing and not state.flag(name):
            raise ValidationError(
                f"Flag '{name}' requires {', '.join(missing)} to be complete first"
            )

    merged = {**current, **{k: v for k, v in update.items() if k != "state"}}
    merged["state"] = flags
    return DeploymentState.model_validate(merged)


def save(state: DeploymentState, path: str | Path) -> Path:
    """Overwrite *path* with pretty-printed JSON.

    The file is written next to its destination and renamed into place, so a
    crash mid-write leaves the previous checkpoint intact.
    """
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = file_path.with_name(file_path.name + ".tmp")
    tmp_path.write_text(json.dumps(state.to_dict(), indent=2) + "\n", encoding="utf-8")
    os.replace(tmp_path, file_path)
    return file_path


class StateStore:
    """Binds the load/merge/save operations to one project's ledger file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> DeploymentState:
        return load(self.path)

    def merge(self, state: DeploymentState, update: dict[str, Any]) -> DeploymentState:
        return merge(state, update)

    def save(self, state: DeploymentState) -> Path:
        return save(state, self.path)

    def create(self, passthrough: dict[str, Any] | None = None) -> DeploymentState:
        """Write a fresh all-false ledger holding the creation-time answers."""
        state = DeploymentState.model_validate({**(passthrough or {}), "state": {}})
        self.save(state)
        return state
