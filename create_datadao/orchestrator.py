"""create-datadao Deployment Orchestrator.

Drives the fixed stage sequence to completion across repeated invocations:

Stage 1: CONTRACTS    -- Deploy the token and DLP contracts.
Stage 2: REPOS        -- Provision the proof and refiner repositories.
Stage 3: REGISTRATION -- Register the DLP and wait for its registry id.
Stage 4: PROOF        -- Configure, publish and record the proof release.
Stage 5: REFINER      -- Fetch the encryption key, publish and register the refiner.
Stage 6: UI           -- Write the UI environment.

Every run reloads ``deployment.json``. Finished stages are shown as done,
stages whose prerequisites are missing are shown as blocked, and every other
stage is offered to the user. A failing stage leaves its flags untouched,
prints the command to retry it, and the run moves on to the next stage.
Fields a stage checkpoints before failing (a submitted transaction hash)
are kept.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from create_datadao.config import Config
from create_datadao.errors import ValidationError
from create_datadao.prompts import Prompter
from create_datadao.retry import classify
from create_datadao.stages import STAGES, Stage, StageContext, get_stage
from create_datadao.state import DeploymentState, StateStore
from create_datadao.utils import (
    console,
    format_duration,
    print_classified_error,
    print_dim,
    print_error,
    print_stage_header,
    print_success,
    print_summary_table,
    print_warning,
)

_SUMMARY_FIELDS = (
    ("DataDAO", "dlpName"),
    ("Token", "tokenAddress"),
    ("DLP contract", "contractAddress"),
    ("Registry id", "registryId"),
    ("Proof repository", "proofRepoUrl"),
    ("Refiner repository", "refinerRepoUrl"),
    ("Proof release", "proofUrl"),
    ("Refiner id", "refinerId"),
)


@dataclass
class RunReport:
    """What one orchestrator run did, stage key by stage key."""

    completed: list[str] = field(default_factory=list)
    already_done: list[str] = field(default_factory=list)
    partial: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    blocked: list[str] = field(default_factory=list)
    complete: bool = False

    @property
    def success(self) -> bool:
        return not self.failed and not self.partial


# ---------------------------------------------------------------------------
# Status rendering
# ---------------------------------------------------------------------------


def stage_status(stage: Stage, state: DeploymentState) -> str:
    if stage.is_complete(state):
        return "done"
    if not stage.is_ready(state):
        return "blocked"
    if any(state.flag(name) for name in stage.flags):
        return "partial"
    return "pending"


_STATUS_STYLES = {
    "done": "[green]done[/green]",
    "partial": "[yellow]partial[/yellow]",
    "pending": "[cyan]pending[/cyan]",
    "blocked": "[dim]blocked[/dim]",
}


def print_status(
    state: DeploymentState, stages: tuple[Stage, ...] = STAGES, project_dir: str | Path | None = None
) -> None:
    """Print the progress table and the identifiers recorded so far."""
    table = Table(title="Deployment Progress", show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Stage", style="bold")
    table.add_column("Status")
    table.add_column("Command", style="dim")

    for index, stage in enumerate(stages, start=1):
        status = stage_status(stage, state)
        command = "" if status == "done" else stage.command(project_dir)
        table.add_row(str(index), stage.title, _STATUS_STYLES[status], escape(command))

    console.print(table)
    console.print()

    recorded = {label: str(state.get(key)) for label, key in _SUMMARY_FIELDS if state.get(key) is not None}
    if recorded:
        print_summary_table(recorded, title="DataDAO")


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class Orchestrator:
    """Runs the deployment stages against one project's state file.

    Attributes:
        config: Global configuration.
        prompter: Asks whether to run each eligible stage.
        context: Collaborators handed to every stage action.
        store: The project's ``deployment.json``.
    """

    def __init__(
        self,
        config: Config,
        prompter: Prompter | None = None,
        context: StageContext | None = None,
        store: StateStore | None = None,
        stages: tuple[Stage, ...] = STAGES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.prompter = prompter or Prompter()
        self.context = context or StageContext.build(config, self.prompter)
        self.store = store or StateStore(config.state_path)
        self.stages = stages
        self.clock = clock

    def status(self) -> DeploymentState:
        """Load the state file and print progress without running anything."""
        state = self.store.load()
        print_status(state, self.stages, self.config.project_dir)
        return state

    async def _run_stage(self, index: int, stage: Stage, state: DeploymentState, report: RunReport) -> DeploymentState:
        print_stage_header(index, stage.title)
        started = self.clock()
        saved = state

        def checkpoint(fields: dict[str, Any]) -> None:
            nonlocal saved
            if "state" in fields:
                raise ValidationError("Checkpoints record fields only; flags come from the stage result")
            saved = self.store.merge(saved, fields)
            self.store.save(saved)

        try:
            delta = await stage.action(replace(self.context, checkpoint=checkpoint), state)
            updated = self.store.merge(saved, delta)
            self.store.save(updated)
        except Exception as exc:
            elapsed = self.clock() - started
            print_error(f"{stage.title} failed after {format_duration(elapsed)}")
            print_classified_error(classify(exc), retry_command=stage.command(self.config.project_dir))
            report.failed.append(stage.key)
            return saved

        elapsed = self.clock() - started
        if stage.is_complete(updated):
            print_success(f"{stage.title} completed in {format_duration(elapsed)}")
            report.completed.append(stage.key)
        else:
            pending = [name for name in stage.flags if not updated.flag(name)]
            print_warning(
                f"{stage.title} is only partially complete ({', '.join(pending)} pending). "
                f"Run `{stage.command(self.config.project_dir)}` to finish it."
            )
            report.partial.append(stage.key)
        return updated

    async def run(self, only: str | None = None) -> RunReport:
        """Walk the stages in order (or just *only*) and persist each success.

        Raises:
            StateCorruptionError: If ``deployment.json`` cannot be read.
            ValidationError: If *only* names an unknown stage.
        """
        selected = {get_stage(only).key} if only else None
        state = self.store.load()
        report = RunReport()

        console.print(
            Panel(
                f"[bold bright_cyan]create-datadao deploy[/bold bright_cyan]\n"
                f"Project : {escape(str(self.config.project_dir.resolve()))}\n"
                f"Network : {escape(self.config.network.name)} ({escape(self.config.network.rpc_url)})",
                border_style="bright_cyan",
            )
        )

        for index, stage in enumerate(self.stages, start=1):
            if selected is not None and stage.key not in selected:
                continue

            if stage.is_complete(state):
                console.print(f"  [green]+[/green] {stage.title} [dim](done)[/dim]")
                report.already_done.append(stage.key)
                continue

            if not stage.is_ready(state):
                missing = ", ".join(stage.missing_prerequisites(state))
                console.print(f"  [dim]- {stage.title} (blocked: needs {missing})[/dim]")
                report.blocked.append(stage.key)
                continue

            if not self.prompter.confirm(f"Run '{stage.title}' now?", default=True):
                print_dim(f"  Skipped. Run it later with: {stage.command(self.config.project_dir)}")
                report.skipped.append(stage.key)
                continue

            state = await self._run_stage(index, stage, state, report)

        report.complete = state.complete
        console.print()
        print_status(state, self.stages, self.config.project_dir)
        if report.complete:
            print_success("Your DataDAO is fully deployed. Start the UI with: cd ui && npm install && npm run dev")
        elif report.failed:
            print_warning(f"{len(report.failed)} stage(s) failed; re-run the commands shown above.")
        return report
