"""Shared pytest fixtures for the create-datadao test suite.

Provides reusable fixtures for:
- Temporary project directories and configuration
- A scripted prompter that answers from a queue
- A fake ledger client and a virtual clock/sleep pair
- A scripted command runner and mock subprocess helpers
- Contract and provisioning doubles wired into a StageContext
"""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from create_datadao.chain.watcher import ConfirmationWatcher
from create_datadao.config import Config, PollingConfig, RetryConfig
from create_datadao.prompts import Prompter
from create_datadao.provisioning import ProvisioningResult
from create_datadao.stages import StageContext
from create_datadao.validation import Validator

CONTRACT_ADDRESS = "0x" + "ab" * 20
TOKEN_ADDRESS = "0x" + "cd" * 20
OWNER_ADDRESS = "0x" + "12" * 20
TX_HASH = "0x" + "ef" * 32


# ---------------------------------------------------------------------------
# Paths & configuration
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_project_dir(tmp_path: Path) -> Path:
    """Temporary DataDAO project with the four component directories."""
    project_dir = tmp_path / "my-datadao"
    for name in ("contracts", "proof", "refiner", "ui"):
        (project_dir / name).mkdir(parents=True)
    yield project_dir


@pytest.fixture
def config(tmp_project_dir: Path) -> Config:
    """Config pointing at the temporary project with short, test-sized budgets."""
    return Config(
        project_dir=tmp_project_dir,
        polling=PollingConfig(
            key_interval_ms=30_000,
            key_max_attempts=3,
            registry_interval_ms=5_000,
            registry_max_attempts=3,
            event_deadline_ms=9_000,
            event_interval_ms=3_000,
        ),
        retry=RetryConfig(initial_delay_ms=100, multiplier=2.0, max_attempts=3),
    )


@pytest.fixture
def write_state(tmp_project_dir: Path) -> Callable[[dict[str, Any]], Path]:
    """Write a raw ``deployment.json`` into the temporary project."""
    def factory(data: dict[str, Any]) -> Path:
        path = tmp_project_dir / "deployment.json"
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        return path

    return factory


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

class ScriptedPrompter(Prompter):
    """Answers from queues instead of the terminal and records every question.

    Free-text answers are checked against the validator exactly like the real
    prompt; rejected answers are recorded in ``rejections`` and the next
    queued answer is tried.
    """

    def __init__(
        self,
        texts: list[str] | None = None,
        confirms: list[bool] | None = None,
        confirm_default: bool = True,
        selects: list[str] | None = None,
    ) -> None:
        self.texts = list(texts or [])
        self.confirms = list(confirms or [])
        self.selects = list(selects or [])
        self.confirm_default = confirm_default
        self.questions: list[str] = []
        self.rejections: list[str] = []

    def confirm(self, message: str, default: bool = True) -> bool:
        self.questions.append(message)
        return self.confirms.pop(0) if self.confirms else self.confirm_default

    def select(self, message: str, choices: list[tuple[str, str]], default: str | None = None) -> str:
        self.questions.append(message)
        if self.selects:
            return self.selects.pop(0)
        return default if default is not None else choices[0][0]

    def text(
        self,
        message: str,
        default: str | None = None,
        validate: Validator | None = None,
        password: bool = False,
    ) -> str:
        self.questions.append(message)
        while True:
            if not self.texts:
                raise AssertionError(f"Unexpected prompt: {message}")
            answer = self.texts.pop(0)
            if answer == "" and default is not None:
                answer = default
            error = validate(answer) if validate else None
            if error is None:
                return answer
            self.rejections.append(error)


@pytest.fixture
def prompter() -> ScriptedPrompter:
    return ScriptedPrompter()


@pytest.fixture
def make_prompter() -> type[ScriptedPrompter]:
    """The ``ScriptedPrompter`` class, for tests that script their own answers."""
    return ScriptedPrompter


# ---------------------------------------------------------------------------
# Virtual time
# ---------------------------------------------------------------------------

class VirtualClock:
    """A monotonic clock that only moves when ``sleep`` is awaited."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_ledger() -> MagicMock:
    """Ledger double: nothing registered, no key, no receipt."""
    ledger = MagicMock()
    ledger.dlp_ids = AsyncMock(return_value=0)
    ledger.dlp_pub_key = AsyncMock(return_value="")
    ledger.get_transaction_receipt = AsyncMock(return_value=None)
    return ledger


@pytest.fixture
def watcher(fake_ledger: MagicMock, clock: VirtualClock) -> ConfirmationWatcher:
    return ConfirmationWatcher(fake_ledger, sleep=clock.sleep, clock=clock)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

class ScriptedRunner:
    """Stands in for ``run_command``.

    Results are looked up by the longest registered argument prefix; anything
    unregistered succeeds with empty output. Every call is recorded.
    """

    def __init__(self) -> None:
        self.results: dict[tuple[str, ...], Any] = {}
        self.calls: list[dict[str, Any]] = []

    def on(self, *prefix: str, returncode: int = 0, stdout: str = "", stderr: str = "", raises: Exception | None = None) -> None:
        self.results[prefix] = raises if raises is not None else (returncode, stdout, stderr)

    def commands(self) -> list[list[str]]:
        return [call["cmd"] for call in self.calls]

    async def __call__(self, cmd: list[str], cwd: Any = None, timeout: int = 120, env: Any = None) -> tuple[int, str, str]:
        self.calls.append({"cmd": list(cmd), "cwd": cwd, "timeout": timeout, "env": env})
        matches = [prefix for prefix in self.results if tuple(cmd[: len(prefix)]) == prefix]
        if not matches:
            return (0, "", "")
        result = self.results[max(matches, key=len)]
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def runner() -> ScriptedRunner:
    return ScriptedRunner()


@pytest.fixture
def mock_subprocess():
    """Mock asyncio subprocess for testing command execution.

    Returns a factory that creates mock subprocess instances with configurable
    stdout, stderr, and return codes.

    Usage:
        def test_command(mock_subprocess):
            proc = mock_subprocess(stdout="output", returncode=0)
            with patch("asyncio.create_subprocess_exec", return_value=proc):
                ...
    """
    def factory(
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
    ) -> AsyncMock:
        mock_proc = AsyncMock()
        mock_proc.communicate = AsyncMock(
            return_value=(stdout.encode("utf-8"), stderr.encode("utf-8"))
        )
        mock_proc.returncode = returncode
        mock_proc.pid = 99999
        mock_proc.kill = MagicMock()
        mock_proc.wait = AsyncMock(return_value=returncode)
        return mock_proc

    return factory


# ---------------------------------------------------------------------------
# Stage collaborators
# ---------------------------------------------------------------------------

@pytest.fixture
def contracts() -> MagicMock:
    """ContractTool double whose writes succeed with ``TX_HASH``."""
    tool = MagicMock()
    tool.deploy = AsyncMock(return_value={"tokenAddress": TOKEN_ADDRESS, "contractAddress": CONTRACT_ADDRESS})
    tool.register_dlp = AsyncMock(return_value=TX_HASH)
    tool.register_refiner = AsyncMock(return_value=TX_HASH)
    return tool


@pytest.fixture
def provisioner() -> MagicMock:
    """GitHubProvisioner double that provisions both repositories."""
    adapter = MagicMock()
    adapter.provision = AsyncMock(
        return_value=ProvisioningResult(
            primary_resource_url="https://github.com/alice/weather-proof",
            secondary_resource_url="https://github.com/alice/weather-refiner",
            automated=True,
        )
    )
    return adapter


@pytest.fixture
def ctx(config, prompter, watcher, contracts, provisioner, runner, clock) -> StageContext:
    """StageContext wired to the doubles above, running in virtual time."""
    return StageContext(
        config=config,
        prompter=prompter,
        watcher=watcher,
        contracts=contracts,
        provisioner=provisioner,
        runner=runner,
        sleep=clock.sleep,
    )
