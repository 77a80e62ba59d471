"""Deployment stages.

Each stage is one resumable unit of work with a completion predicate (its
flags), a prerequisite predicate (flags of earlier stages) and an action.
Actions receive the current ``DeploymentState`` snapshot and return a delta::

    {"state": {"dataDAORegistered": True}, "registryId": 42}

They never touch the state file; the orchestrator merges and saves the delta
once the action has returned.
"""

from __future__ import annotations

import asyncio
import re
import shlex
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from rich.markup import escape

from create_datadao.chain import REFINER_ADDED_TOPIC, ConfirmationWatcher, ContractTool, LedgerClient
from create_datadao.config import Config
from create_datadao.errors import TRANSIENT_KINDS, DeployTimeoutError, ErrorKind, ValidationError, external_error
from create_datadao.prompts import Prompter
from create_datadao.provisioning import GitHubProvisioner, ProvisioningSpec
from create_datadao.retry import BackoffPolicy, infer_kind, retry, retry_on
from create_datadao.state import DeploymentState
from create_datadao.utils import (
    console,
    print_info,
    print_success,
    print_warning,
    run_command,
    sanitize_name,
    write_env_vars,
)
from create_datadao.validation import (
    validate_address,
    validate_hex_key,
    validate_positive_int,
    validate_release_url,
)

Runner = Callable[..., Awaitable[tuple[int, str, str]]]
Sleep = Callable[[float], Awaitable[None]]
Checkpoint = Callable[[dict[str, Any]], None]

_DLP_ID_RE = re.compile(r'"dlp_id":\s*\d+')


def _no_checkpoint(fields: dict[str, Any]) -> None:
    return None


@dataclass
class StageContext:
    """Collaborators shared by every stage action.

    ``checkpoint`` persists fields in the middle of an action, before its
    flags are earned. The orchestrator binds it to the state file for the
    duration of one stage; outside a run it does nothing.
    """

    config: Config
    prompter: Prompter
    watcher: ConfirmationWatcher
    contracts: ContractTool
    provisioner: GitHubProvisioner
    runner: Runner = run_command
    sleep: Sleep = asyncio.sleep
    checkpoint: Checkpoint = _no_checkpoint

    @classmethod
    def build(cls, config: Config, prompter: Prompter) -> "StageContext":
        """Wire the production collaborators around one ledger client."""
        client = LedgerClient(config.network)
        return cls(
            config=config,
            prompter=prompter,
            watcher=ConfirmationWatcher(client),
            contracts=ContractTool(config),
            provisioner=GitHubProvisioner(config.github, prompter),
        )

    @property
    def policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            initial_delay_ms=self.config.retry.initial_delay_ms,
            multiplier=self.config.retry.multiplier,
            max_attempts=self.config.retry.max_attempts,
        )

    def write_policy(self, *kinds: ErrorKind) -> BackoffPolicy:
        """``policy`` narrowed to failures of *kinds*, for writes that must not land twice."""
        return replace(self.policy, is_retryable=retry_on(*kinds))


StageAction = Callable[[StageContext, DeploymentState], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class Stage:
    key: str
    title: str
    flags: tuple[str, ...]
    prerequisites: tuple[str, ...]
    action: StageAction

    def command(self, project_dir: str | Path | None = None) -> str:
        """The command that re-runs just this stage of the project in *project_dir*."""
        target = f" -p {shlex.quote(str(project_dir))}" if project_dir is not None else ""
        return f"create-datadao deploy{target} --stage {self.key}"

    def is_complete(self, state: DeploymentState) -> bool:
        return all(state.flag(name) for name in self.flags)

    def is_ready(self, state: DeploymentState) -> bool:
        return all(state.flag(name) for name in self.prerequisites)

    def missing_prerequisites(self, state: DeploymentState) -> list[str]:
        return [name for name in self.prerequisites if not state.flag(name)]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _required(state: DeploymentState, key: str, hint: str) -> Any:
    value = state.get(key)
    if value in (None, ""):
        raise ValidationError(f"{key} not found in deployment state. {hint}")
    return value


def _not_empty(label: str) -> Callable[[str], str | None]:
    return lambda value: None if value.strip() else f"{label} is required"


async def _git(ctx: StageContext, directory: Path, *args: str) -> tuple[int, str, str]:
    try:
        return await ctx.runner(["git", *args], cwd=directory, timeout=ctx.config.github.timeout)
    except FileNotFoundError as exc:
        raise external_error(ErrorKind.TOOL_MISSING, "git is not installed") from exc


async def _push_component(ctx: StageContext, directory: Path, remote: str, message: str) -> None:
    """Commit everything in *directory* and push it to *remote* as ``main``.

    Raises:
        ValidationError: If the component directory does not exist.
        ExternalError: If a git step other than an empty commit fails.
    """
    if not directory.is_dir():
        raise ValidationError(f"{directory} not found; was the project created with create-datadao?")

    if not (directory / ".git").exists():
        await _git(ctx, directory, "init")

    returncode, _, _ = await _git(ctx, directory, "remote", "get-url", "origin")
    if returncode == 0:
        await _git(ctx, directory, "remote", "set-url", "origin", remote)
    else:
        await _git(ctx, directory, "remote", "add", "origin", remote)

    await _git(ctx, directory, "add", ".")
    returncode, stdout, stderr = await _git(ctx, directory, "commit", "-m", message)
    if returncode != 0:
        output = f"{stdout}\n{stderr}"
        if "nothing to commit" not in output:
            raise external_error(infer_kind(output), f"git commit failed in {directory.name}: {output.strip()}")
        print_info("  No new changes to commit")

    returncode, stdout, stderr = await _git(ctx, directory, "push", "-u", "origin", "HEAD:main")
    if returncode != 0:
        output = f"{stderr}\n{stdout}".strip()
        raise external_error(
            infer_kind(output),
            f"git push to {remote} failed: {output}",
            code=returncode,
            details={"remote": remote},
        )
    print_success(f"  Pushed {directory.name} to {remote}")


async def _publish_component(ctx: StageContext, directory: Path, remote: str, message: str) -> None:
    """Push *directory* to *remote*, unless the user chooses to push it themselves."""
    how = ctx.prompter.select(
        f"How should {directory.name}/ reach {remote}?",
        [("push", "Commit and push it now"), ("manual", "I will commit and push it myself")],
        default="push",
    )
    if how == "manual":
        console.print(f"  Run in {escape(str(directory))}:")
        console.print(f"    git remote add origin {escape(remote)}")
        console.print(f"    git add . && git commit -m {escape(shlex.quote(message))} && git push origin HEAD:main")
        return
    await _push_component(ctx, directory, remote, message)


# ---------------------------------------------------------------------------
# Stage actions
# ---------------------------------------------------------------------------


async def deploy_contracts(ctx: StageContext, state: DeploymentState) -> dict[str, Any]:
    """Deploy the token and DLP contracts through hardhat."""
    console.print("  Deploying token and DLP contracts (this can take a few minutes)...")
    addresses = await ctx.contracts.deploy()
    print_success(f"  Token deployed at {addresses['tokenAddress']}")
    print_success(f"  DLP deployed at {addresses['contractAddress']}")
    return {"state": {"contractsDeployed": True}, **addresses}


async def setup_repositories(ctx: StageContext, state: DeploymentState) -> dict[str, Any]:
    """Provision the proof and refiner repositories."""
    owner = state.get("githubUsername") or ctx.prompter.text(
        "GitHub username or organisation", validate=_not_empty("GitHub username")
    )
    project = state.get("projectName") or sanitize_name(state.get("dlpName", ""))
    spec = ProvisioningSpec(
        owner=owner,
        project_name=project,
        proof_template=ctx.config.github.proof_template,
        refiner_template=ctx.config.github.refiner_template,
        visibility=ctx.config.github.visibility,
        existing_primary_url=state.proof_repo_url,
        existing_secondary_url=state.refiner_repo_url,
    )
    result = await ctx.provisioner.provision(spec)
    if not result.any_created:
        raise external_error(ErrorKind.UNKNOWN, "No repositories were provisioned")

    delta: dict[str, Any] = {"state": {}, "githubUsername": owner}
    if result.primary_resource_url:
        delta["state"]["proofGitSetup"] = True
        delta["proofRepoUrl"] = result.primary_resource_url
    if result.secondary_resource_url:
        delta["state"]["refinerGitSetup"] = True
        delta["refinerRepoUrl"] = result.secondary_resource_url
    return delta


async def register_datadao(ctx: StageContext, state: DeploymentState) -> dict[str, Any]:
    """Register the DLP contract with the registry and wait for its id."""
    address = _required(state, "contractAddress", "Deploy the contracts first.")
    name = _required(state, "dlpName", "Set dlpName in deployment.json.")
    owner = state.get("address") or ctx.prompter.text("Owner wallet address", validate=validate_address)

    async def submit() -> None:
        if await ctx.watcher.get_registry_id(address):
            print_info("  DataDAO is already registered; skipping the registry write")
            return
        tx_hash = await ctx.contracts.register_dlp(address, owner, name)
        print_info(f"  Registration submitted: {tx_hash}")

    # The registry read inside submit guards every repeat of the write.
    await retry(submit, ctx.write_policy(*TRANSIENT_KINDS), ctx.sleep)

    polling = ctx.config.polling
    registry_id = await ctx.watcher.poll_for_registry_id(
        address, polling.registry_interval_ms, polling.registry_max_attempts
    )
    print_success(f"  DataDAO registered with id {registry_id}")
    return {"state": {"dataDAORegistered": True}, "registryId": registry_id}


async def configure_proof(ctx: StageContext, state: DeploymentState) -> dict[str, Any]:
    """Point the proof at the registry id, publish it and record the release URL."""
    registry_id = _required(state, "registryId", "Register the DataDAO first.")
    repo_url = _required(state, "proofRepoUrl", "Set up the GitHub repositories first.")

    entry = ctx.config.proof_dir / "my_proof" / "__main__.py"
    if entry.exists():
        source = entry.read_text(encoding="utf-8")
        entry.write_text(_DLP_ID_RE.sub(f'"dlp_id": {registry_id}', source), encoding="utf-8")
        print_success(f"  Proof configured with dlp_id {registry_id}")
    else:
        print_warning(f"  {entry} not found; set dlp_id to {registry_id} by hand")

    await _publish_component(ctx, ctx.config.proof_dir, repo_url, f"Update dlpId to {registry_id}")

    console.print(f"  GitHub Actions is building the proof. Watch {escape(repo_url)}/releases for a .tar.gz asset.")
    proof_url = ctx.prompter.text("Enter the .tar.gz URL from GitHub Releases", validate=validate_release_url)
    return {"state": {"proofConfigured": True}, "proofUrl": proof_url}


async def _encryption_key(ctx: StageContext, registry_id: int) -> str:
    polling = ctx.config.polling
    try:
        return await ctx.watcher.poll_for_encryption_key(
            registry_id, polling.key_interval_ms, polling.key_max_attempts
        )
    except DeployTimeoutError as exc:
        print_warning(str(exc))
        network = ctx.config.network
        console.print("  Get the key by hand:")
        console.print(f"  1. Open {escape(network.explorer_url)}/address/{network.query_engine_address}?tab=read_proxy")
        console.print(f"  2. Call dlpPubKeys with dlpId {registry_id} and copy the result")
        return ctx.prompter.text("Encryption key", validate=validate_hex_key)


async def configure_refiner(ctx: StageContext, state: DeploymentState) -> dict[str, Any]:
    """Fetch the encryption key, publish the refiner and register it.

    The ``addRefiner`` write has no on-chain pre-check, so it is retried only
    for nonce conflicts and its transaction hash is checkpointed as soon as
    it is known. A re-run that finds ``refinerTxHash`` waits on that
    transaction instead of writing again.
    """
    registry_id = _required(state, "registryId", "Register the DataDAO first.")
    repo_url = _required(state, "refinerRepoUrl", "Set up the GitHub repositories first.")
    name = f"{state.get('dlpName', 'DataDAO')} Refiner"

    key = state.encryption_key or await _encryption_key(ctx, registry_id)
    tx_hash = state.get("refinerTxHash")
    if tx_hash:
        print_info(f"  Refiner registration {tx_hash} was already submitted; waiting for it")
        schema_url = state.get("schemaUrl")
        instruction_url = state.get("refinerUrl")
    else:
        write_env_vars(ctx.config.refiner_dir / ".env", {"REFINEMENT_ENCRYPTION_KEY": key})
        print_success("  Refiner .env updated with the encryption key")

        await _publish_component(
            ctx, ctx.config.refiner_dir, repo_url, f"Configure refiner for {state.get('dlpName', '')}"
        )

        console.print(f"  Upload output/schema.json to IPFS and watch {escape(repo_url)}/releases for the refiner build.")
        schema_url = ctx.prompter.text("IPFS URL of the schema", validate=_not_empty("Schema URL"))
        instruction_url = ctx.prompter.text("Enter the .tar.gz URL from GitHub Releases", validate=validate_release_url)

        tx_hash = await retry(
            lambda: ctx.contracts.register_refiner(registry_id, name, schema_url, instruction_url, key),
            ctx.write_policy(ErrorKind.NONCE_CONFLICT),
            ctx.sleep,
        )
        ctx.checkpoint(
            {"refinerTxHash": tx_hash, "encryptionKey": key, "schemaUrl": schema_url, "refinerUrl": instruction_url}
        )

    polling = ctx.config.polling
    try:
        refiner_id = await ctx.watcher.wait_for_event(
            tx_hash, REFINER_ADDED_TOPIC, polling.event_deadline_ms, polling.event_interval_ms
        )
    except DeployTimeoutError as exc:
        print_warning(str(exc))
        console.print(f"  Find the RefinerAdded event of {escape(tx_hash)} on {escape(ctx.config.network.explorer_url)}")
        refiner_id = int(ctx.prompter.text("refinerId from the transaction logs", validate=validate_positive_int))

    print_success(f"  Refiner registered with id {refiner_id}")
    return {
        "state": {"refinerConfigured": True},
        "encryptionKey": key,
        "refinerId": refiner_id,
        "refinerTxHash": tx_hash,
        "schemaUrl": schema_url,
        "refinerUrl": instruction_url,
    }


_OPTIONAL_UI_VARS = (
    (("pinataApiKey", "PINATA_API_KEY"), ("pinataApiSecret", "PINATA_API_SECRET"), "Pinata"),
    (("googleClientId", "GOOGLE_CLIENT_ID"), ("googleClientSecret", "GOOGLE_CLIENT_SECRET"), "Google OAuth"),
)


async def configure_ui(ctx: StageContext, state: DeploymentState) -> dict[str, Any]:
    """Write the refiner id, proof URL and available credentials to ``ui/.env``."""
    values: dict[str, Any] = {
        "REFINER_ID": _required(state, "refinerId", "Configure the refiner first."),
        "NEXT_PUBLIC_PROOF_URL": _required(state, "proofUrl", "Configure the proof first."),
    }
    for (id_key, id_var), (secret_key, secret_var), label in _OPTIONAL_UI_VARS:
        if state.get(id_key) and state.get(secret_key):
            values[id_var] = state.get(id_key)
            values[secret_var] = state.get(secret_key)
        else:
            print_warning(f"  {label} credentials not found in deployment.json; add them to ui/.env by hand")

    write_env_vars(ctx.config.ui_dir / ".env", values)
    print_success("  UI environment configured")
    return {"state": {"uiConfigured": True}}


STAGES: tuple[Stage, ...] = (
    Stage("contracts", "Deploy Contracts", ("contractsDeployed",), (), deploy_contracts),
    Stage("repos", "GitHub Repositories", ("proofGitSetup", "refinerGitSetup"), (), setup_repositories),
    Stage("registration", "Register DataDAO", ("dataDAORegistered",), ("contractsDeployed",), register_datadao),
    Stage(
        "proof",
        "Configure Proof of Contribution",
        ("proofConfigured",),
        ("proofGitSetup", "dataDAORegistered"),
        configure_proof,
    ),
    Stage(
        "refiner",
        "Configure Data Refiner",
        ("refinerConfigured",),
        ("refinerGitSetup", "dataDAORegistered"),
        configure_refiner,
    ),
    Stage("ui", "Configure UI", ("uiConfigured",), ("proofConfigured", "refinerConfigured"), configure_ui),
)

STAGE_KEYS: tuple[str, ...] = tuple(stage.key for stage in STAGES)


def get_stage(key: str) -> Stage:
    for stage in STAGES:
        if stage.key == key:
            return stage
    raise ValidationError(f"Unknown stage '{key}' (choose from {', '.join(STAGE_KEYS)})")
