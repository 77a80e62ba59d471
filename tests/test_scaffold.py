"""Unit tests for project scaffolding (create_datadao.scaffold).

Tests cover:
- ProjectAnswers.passthrough (what reaches deployment.json)
- collect_answers with provided values, defaults, validation and the derived address
- check_prerequisites: git required, other tools optional
- ProjectScaffolder.create: clones, env files, initial state, errors
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from eth_account import Account
from pydantic import ValidationError as PydanticValidationError

from create_datadao.config import Config
from create_datadao.errors import ErrorKind, ExternalError, ValidationError
from create_datadao.prompts import AutoPrompter
from create_datadao.scaffold import (
    TEMPLATE_REPOSITORIES,
    ProjectAnswers,
    ProjectScaffolder,
    check_prerequisites,
    collect_answers,
)
from create_datadao.state import FLAG_NAMES
from create_datadao.utils import console

OWNER = "0x" + "12" * 20
PRIVATE_KEY = "0x" + "9f" * 32
WALLET = Account.from_key(PRIVATE_KEY).address


def _answers(**overrides) -> ProjectAnswers:
    data = {
        "dlp_name": "Weather DAO",
        "token_name": "Weather Token",
        "token_symbol": "WTHR",
        "address": OWNER,
        "private_key": PRIVATE_KEY,
        "pinata_api_key": "pk",
        "pinata_api_secret": "ps",
    }
    data.update(overrides)
    return ProjectAnswers(**data)


class TestProjectAnswers:
    @pytest.mark.unit
    def test_passthrough_drops_secrets_and_blanks(self):
        data = _answers().passthrough()
        assert data == {
            "dlpName": "Weather DAO",
            "projectName": "weather-dao",
            "tokenName": "Weather Token",
            "tokenSymbol": "WTHR",
            "address": OWNER,
            "pinataApiKey": "pk",
            "pinataApiSecret": "ps",
        }

    @pytest.mark.unit
    def test_name_required(self):
        with pytest.raises(PydanticValidationError):
            _answers(dlp_name="")


class TestCollectAnswers:
    @pytest.mark.unit
    def test_prompts_for_missing_values(self, make_prompter):
        prompter = make_prompter(texts=["", "", "0xabc", "0x1234", PRIVATE_KEY, "alice", "", "", "", ""])
        answers = collect_answers(prompter, "WeatherDAO")

        assert answers.dlp_name == "WeatherDAO"
        assert answers.token_name == "WeatherDAO Token"
        assert answers.token_symbol == "WEAT"
        assert answers.address == WALLET
        assert answers.private_key == PRIVATE_KEY
        assert answers.github_username == "alice"
        assert answers.pinata_api_key == ""
        assert prompter.rejections == [
            "Private key must be hex-encoded (0-9, a-f)",
            "Private key must be 0x followed by 64 hex characters",
        ]
        assert "Wallet address" not in prompter.questions

    @pytest.mark.unit
    def test_provided_values_are_not_asked(self, make_prompter):
        prompter = make_prompter(texts=[PRIVATE_KEY, "", "", "", ""])
        answers = collect_answers(
            prompter,
            "WeatherDAO",
            {"address": WALLET, "token_name": "Rain", "token_symbol": "RAIN", "github_username": "alice"},
        )
        assert answers.token_name == "Rain"
        assert answers.github_username == "alice"
        assert answers.address == WALLET
        assert "GitHub username" not in prompter.questions

    @pytest.mark.unit
    def test_provided_address_must_match_key(self):
        with pytest.raises(ValidationError, match="does not belong to the private key"):
            collect_answers(AutoPrompter(), "WeatherDAO", {"address": OWNER, "private_key": PRIVATE_KEY})

    @pytest.mark.unit
    def test_provided_address_case_is_ignored(self):
        answers = collect_answers(
            AutoPrompter(), "WeatherDAO", {"address": WALLET.lower(), "private_key": PRIVATE_KEY}
        )
        assert answers.address == WALLET

    @pytest.mark.unit
    def test_name_asked_when_missing(self, make_prompter):
        prompter = make_prompter(texts=["Rainfall", "", "", PRIVATE_KEY, "", "", "", "", ""])
        assert collect_answers(prompter, "").dlp_name == "Rainfall"
        assert prompter.questions[0] == "DataDAO name"

    @pytest.mark.unit
    def test_unattended_needs_private_key(self):
        with pytest.raises(ValidationError, match="Wallet private key"):
            collect_answers(AutoPrompter(), "WeatherDAO", {"address": WALLET})

    @pytest.mark.unit
    def test_unattended_with_everything_provided(self):
        answers = collect_answers(AutoPrompter(), "WeatherDAO", {"private_key": PRIVATE_KEY})
        assert answers.token_symbol == "WEAT"
        assert answers.address == WALLET
        assert answers.google_client_id == ""


class TestCheckPrerequisites:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_all_present(self, runner):
        assert await check_prerequisites(runner) == []
        assert runner.commands()[0] == ["git", "--version"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_git_missing_is_fatal(self, runner):
        runner.on("git", raises=FileNotFoundError("git"))
        with pytest.raises(ExternalError) as exc_info:
            await check_prerequisites(runner)
        assert exc_info.value.kind is ErrorKind.TOOL_MISSING
        assert len(runner.calls) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_optional_tools_only_warn(self, runner):
        runner.on("gh", raises=FileNotFoundError("gh"))
        runner.on("docker", "--version", returncode=127, stderr="docker: command not found")
        with console.capture() as capture:
            missing = await check_prerequisites(runner)
        assert missing == ["gh", "docker"]
        assert "gh not found" in capture.get()


class TestProjectScaffolder:
    @pytest.fixture
    def new_config(self, tmp_path) -> Config:
        return Config(project_dir=tmp_path / "weather-dao")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create(self, new_config, runner):
        state = await ProjectScaffolder(new_config, runner).create(_answers())

        clones = [cmd for cmd in runner.commands() if cmd[:2] == ["git", "clone"]]
        assert len(clones) == len(TEMPLATE_REPOSITORIES)
        assert runner.commands()[0] == ["git", "--version"]
        assert clones[0] == [
            "git", "clone", "--depth", "1", TEMPLATE_REPOSITORIES["contracts"], str(new_config.contracts_dir),
        ]

        contracts_env = (new_config.contracts_dir / ".env").read_text(encoding="utf-8")
        assert f"DEPLOYER_PRIVATE_KEY={PRIVATE_KEY}" in contracts_env
        assert "DLP_TOKEN_SYMBOL=WTHR" in contracts_env
        assert "PINATA_API_KEY=pk" in (new_config.refiner_dir / ".env").read_text(encoding="utf-8")
        assert "GOOGLE_CLIENT_ID=" in (new_config.ui_dir / ".env").read_text(encoding="utf-8")

        data = json.loads(new_config.state_path.read_text(encoding="utf-8"))
        assert data["dlpName"] == "Weather DAO"
        assert PRIVATE_KEY not in new_config.state_path.read_text(encoding="utf-8")
        assert data["state"] == {name: False for name in FLAG_NAMES}
        assert state.complete is False
        assert (new_config.project_dir / "datadao.config.json").exists()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_removes_template_history(self, new_config):
        async def cloning_runner(cmd, cwd=None, timeout=120, env=None):
            if cmd[:2] == ["git", "clone"]:
                (Path(cmd[-1]) / ".git").mkdir(parents=True)
            return (0, "", "")

        await ProjectScaffolder(new_config, cloning_runner).create(_answers())

        for directory in TEMPLATE_REPOSITORIES:
            assert (new_config.project_dir / directory).is_dir()
            assert not (new_config.project_dir / directory / ".git").exists()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_refuses_non_empty_directory(self, new_config, runner):
        new_config.project_dir.mkdir()
        (new_config.project_dir / "README.md").write_text("hi", encoding="utf-8")
        with pytest.raises(ValidationError, match="not empty"):
            await ProjectScaffolder(new_config, runner).create(_answers())
        assert runner.calls == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_clone_failure(self, new_config, runner):
        runner.on("git", "clone", returncode=128, stderr="fatal: unable to access: Connection timed out")
        with pytest.raises(ExternalError) as exc_info:
            await ProjectScaffolder(new_config, runner).create(_answers())
        assert exc_info.value.kind is ErrorKind.NETWORK
        assert not new_config.state_path.exists()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_git_missing(self, new_config, runner):
        runner.on("git", raises=FileNotFoundError("git"))
        with pytest.raises(ExternalError) as exc_info:
            await ProjectScaffolder(new_config, runner).create(_answers())
        assert exc_info.value.kind is ErrorKind.TOOL_MISSING
