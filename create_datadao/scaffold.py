"""Project scaffolding for ``create-datadao create``.

Clones the four template repositories into a new project directory, writes
their ``.env`` files and the initial ``deployment.json`` with every stage
flag false. Everything after that is the orchestrator's job.
"""

from __future__ import annotations

import shutil
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from rich.markup import escape

from create_datadao.config import Config
from create_datadao.errors import ErrorKind, ValidationError, external_error
from create_datadao.prompts import Prompter
from create_datadao.retry import infer_kind
from create_datadao.state import DeploymentState, StateStore
from create_datadao.utils import console, print_success, print_warning, run_command, sanitize_name, write_env_vars
from create_datadao.validation import validate_address
from create_datadao.wallet import derive_address, private_key_error

Runner = Callable[..., Awaitable[tuple[int, str, str]]]

TEMPLATE_REPOSITORIES: dict[str, str] = {
    "contracts": "https://github.com/vana-com/vana-dlp-smart-contracts.git",
    "proof": "https://github.com/vana-com/vana-satya-proof-template-py.git",
    "refiner": "https://github.com/vana-com/vana-data-refinement-template.git",
    "ui": "https://github.com/vana-com/dlp-ui-template.git",
}


def _optional(value: str) -> None:
    return None


class ProjectAnswers(BaseModel):
    """Creation-time answers. Everything except the private key lands in ``deployment.json``."""

    dlp_name: str = Field(..., min_length=1)
    token_name: str = Field(..., min_length=1)
    token_symbol: str = Field(..., min_length=1)
    address: str
    private_key: str
    github_username: str = ""
    pinata_api_key: str = ""
    pinata_api_secret: str = ""
    google_client_id: str = ""
    google_client_secret: str = ""

    def passthrough(self) -> dict[str, Any]:
        data = {
            "dlpName": self.dlp_name,
            "projectName": sanitize_name(self.dlp_name),
            "tokenName": self.token_name,
            "tokenSymbol": self.token_symbol,
            "address": self.address,
            "githubUsername": self.github_username,
            "pinataApiKey": self.pinata_api_key,
            "pinataApiSecret": self.pinata_api_secret,
            "googleClientId": self.google_client_id,
            "googleClientSecret": self.google_client_secret,
        }
        return {key: value for key, value in data.items() if value}


def collect_answers(prompter: Prompter, name: str, provided: dict[str, Any] | None = None) -> ProjectAnswers:
    """Ask for whatever *provided* does not already answer.

    The wallet address is derived from the private key. An address passed in
    *provided* is only checked against it.

    Raises:
        ValidationError: If a provided key is unusable or a provided address
            belongs to a different key.
    """
    provided = {key: value for key, value in (provided or {}).items() if value}

    def ask(key: str, message: str, default: str | None = None, **kwargs: Any) -> str:
        if key in provided:
            return str(provided[key])
        return prompter.text(message, default=default, **kwargs)

    dlp_name = name.strip() or ask("dlp_name", "DataDAO name", default="MyDataDAO")
    token_name = ask("token_name", "Token name", default=f"{dlp_name} Token")
    token_symbol = ask("token_symbol", "Token symbol", default=sanitize_name(dlp_name)[:4].upper() or "DAT")
    private_key = ask("private_key", "Wallet private key", validate=private_key_error, password=True).strip()
    address = derive_address(private_key)
    claimed = provided.get("address")
    if claimed:
        error = validate_address(str(claimed))
        if error is not None:
            raise ValidationError(error)
        if str(claimed).strip().lower() != address.lower():
            raise ValidationError(f"Address {claimed} does not belong to the private key (expected {address})")
    console.print(f"  Wallet address: {address}")
    return ProjectAnswers(
        dlp_name=dlp_name,
        token_name=token_name,
        token_symbol=token_symbol,
        address=address,
        private_key=private_key,
        github_username=ask("github_username", "GitHub username", default="", validate=_optional),
        pinata_api_key=ask("pinata_api_key", "Pinata API key", default="", validate=_optional),
        pinata_api_secret=ask(
            "pinata_api_secret", "Pinata API secret", default="", validate=_optional, password=True
        ),
        google_client_id=ask("google_client_id", "Google OAuth client id", default="", validate=_optional),
        google_client_secret=ask(
            "google_client_secret", "Google OAuth client secret", default="", validate=_optional, password=True
        ),
    )


OPTIONAL_TOOLS: dict[str, str] = {
    "gh": "repositories will have to be created by hand",
    "npx": "the contract stages run hardhat through it",
    "docker": "proof and refiner images cannot be tested locally",
    "python3": "the proof and refiner cannot be run locally",
}


async def _tool_available(runner: Runner, tool: str) -> bool:
    try:
        returncode, _, _ = await runner([tool, "--version"], timeout=10)
    except FileNotFoundError:
        return False
    return returncode == 0


async def check_prerequisites(runner: Runner = run_command) -> list[str]:
    """Check the command-line tools the project depends on.

    Only git is required. Each missing optional tool gets a warning.

    Returns:
        The optional tools that are missing.

    Raises:
        ExternalError: ``TOOL_MISSING`` if git is not installed.
    """
    if not await _tool_available(runner, "git"):
        raise external_error(
            ErrorKind.TOOL_MISSING,
            "git is required to clone the templates (https://git-scm.com/downloads)",
        )
    missing = []
    for tool, consequence in OPTIONAL_TOOLS.items():
        if not await _tool_available(runner, tool):
            print_warning(f"  {tool} not found; {consequence}")
            missing.append(tool)
    return missing


class ProjectScaffolder:
    """Creates a new DataDAO project directory."""

    def __init__(self, config: Config, runner: Runner = run_command) -> None:
        self.config = config
        self.runner = runner

    async def _clone(self, url: str, target: Path) -> None:
        cmd = ["git", "clone", "--depth", "1", url, str(target)]
        try:
            returncode, stdout, stderr = await self.runner(cmd, timeout=300)
        except FileNotFoundError as exc:
            raise external_error(ErrorKind.TOOL_MISSING, "git is not installed") from exc
        if returncode != 0:
            output = f"{stderr}\n{stdout}".strip()
            raise external_error(infer_kind(output), f"git clone {url} failed: {output}", code=returncode)
        shutil.rmtree(target / ".git", ignore_errors=True)

    def _write_env_files(self, answers: ProjectAnswers) -> None:
        network = self.config.network
        write_env_vars(
            self.config.contracts_dir / ".env",
            {
                "DEPLOYER_PRIVATE_KEY": answers.private_key,
                "OWNER_ADDRESS": answers.address,
                "DLP_NAME": answers.dlp_name,
                "DLP_TOKEN_NAME": answers.token_name,
                "DLP_TOKEN_SYMBOL": answers.token_symbol,
                "DLP_TOKEN_SALT": answers.token_symbol,
                "MOKSHA_RPC_URL": network.rpc_url,
                "MOKSHA_BROWSER_URL": network.explorer_url,
                "MOKSHA_API_URL": f"{network.explorer_url}/api",
            },
        )
        write_env_vars(
            self.config.refiner_dir / ".env",
            {"PINATA_API_KEY": answers.pinata_api_key, "PINATA_API_SECRET": answers.pinata_api_secret},
        )
        write_env_vars(
            self.config.ui_dir / ".env",
            {
                "PINATA_API_KEY": answers.pinata_api_key,
                "PINATA_API_SECRET": answers.pinata_api_secret,
                "GOOGLE_CLIENT_ID": answers.google_client_id,
                "GOOGLE_CLIENT_SECRET": answers.google_client_secret,
            },
        )

    async def create(self, answers: ProjectAnswers) -> DeploymentState:
        """Clone the templates and write the initial state file.

        Raises:
            ValidationError: If the project directory already has content.
            ExternalError: If git is missing or cloning a template fails.
        """
        project_dir = self.config.project_dir
        if project_dir.exists() and any(project_dir.iterdir()):
            raise ValidationError(f"{project_dir} already exists and is not empty")
        await check_prerequisites(self.runner)
        project_dir.mkdir(parents=True, exist_ok=True)

        for directory, url in TEMPLATE_REPOSITORIES.items():
            console.print(f"  Cloning {escape(url)} into {escape(str(directory))}/")
            await self._clone(url, project_dir / directory)

        self._write_env_files(answers)
        state = StateStore(self.config.state_path).create(answers.passthrough())
        self.config.save()
        print_success(f"Created {answers.dlp_name} in {project_dir}")
        return state
