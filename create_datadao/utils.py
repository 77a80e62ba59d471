"""Shared helpers for create-datadao.

Running git, gh and hardhat as child processes, editing the component
``.env`` files, and every piece of console output. Console helpers escape
what they are given: messages routinely quote tool output and exception
text, which must never be read as Rich markup.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.markup import escape
from rich.rule import Rule
from rich.table import Table

if TYPE_CHECKING:
    from create_datadao.retry import ClassifiedError

console = Console()

# ---------------------------------------------------------------------------
# Child processes
# ---------------------------------------------------------------------------


async def run_command(
    cmd: list[str],
    cwd: str | Path | None = None,
    timeout: int = 120,
    env: dict[str, str] | None = None,
) -> tuple[int, str, str]:
    """Run one of the external tools and wait for it to exit.

    Stage code and the provisioning adapter inspect the exit status and the
    captured text themselves; nothing here raises for a non-zero exit.

    Args:
        cmd: The tool and its arguments, e.g. ``["gh", "auth", "status"]``.
        cwd: Component directory to run in (``contracts/``, ``proof/`` ...).
        timeout: Seconds to wait before the child is killed. A killed child
            reports ``-1`` and a "timed out" message on stderr.
        env: Variables added to the inherited environment, which is how the
            hardhat scripts receive their arguments.

    Returns:
        ``(returncode, stdout, stderr)`` with both streams decoded and stripped.

    Raises:
        FileNotFoundError: The tool is not installed.
    """
    child_env = {**os.environ, **env} if env else None

    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=str(cwd) if cwd else None,
        env=child_env,
    )

    try:
        out, err = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        return (-1, "", f"Command timed out after {timeout}s: {' '.join(cmd)}")

    def decode(raw: bytes | None) -> str:
        return (raw or b"").decode("utf-8", errors="replace").strip()

    return (process.returncode or 0, decode(out), decode(err))


# ---------------------------------------------------------------------------
# Names
# ---------------------------------------------------------------------------

_UNSAFE_CHARS = re.compile(r"[^a-z0-9_-]+")


def sanitize_name(name: str) -> str:
    """Turn a DataDAO name into the prefix used for its repositories.

    ``"Weather DAO"`` becomes ``"weather-dao"``, so the repositories are
    ``weather-dao-proof`` and ``weather-dao-refiner``.
    """
    slug = _UNSAFE_CHARS.sub("-", name.strip().lower())
    return re.sub(r"-{2,}", "-", slug).strip("-")


# ---------------------------------------------------------------------------
# dotenv I/O
# ---------------------------------------------------------------------------


def update_env_var(content: str, key: str, value: Any) -> str:
    """Set ``KEY=value`` in dotenv text, replacing an existing line or appending one."""
    pattern = re.compile(rf"^{re.escape(key)}=.*$", re.MULTILINE)
    line = f"{key}={value}"
    if pattern.search(content):
        return pattern.sub(lambda _: line, content)
    if content and not content.endswith("\n"):
        content += "\n"
    return content + line + "\n"


def write_env_vars(path: Path, values: dict[str, Any]) -> None:
    """Upsert several variables into a dotenv file, creating it if missing."""
    content = path.read_text(encoding="utf-8") if path.exists() else ""
    for key, value in values.items():
        content = update_env_var(content, key, value)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content.strip() + "\n", encoding="utf-8")


# ---------------------------------------------------------------------------
# Durations
# ---------------------------------------------------------------------------


def format_duration(seconds: float) -> str:
    """Render stage timings and poll budgets.

    Under a minute keeps one decimal (``"3.7s"``); longer spans drop to whole
    seconds (``"1m 5s"``, ``"30m 0s"``, ``"1h 1m 1s"``). Negative input,
    which only a skewed clock produces, reads as ``"0.0s"``.
    """
    if seconds < 60:
        return f"{max(seconds, 0.0):.1f}s"

    hours, rest = divmod(int(seconds), 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    return f"{minutes}m {secs}s"


# ---------------------------------------------------------------------------
# Console output
# ---------------------------------------------------------------------------


def print_stage_header(index: int, title: str) -> None:
    console.print()
    console.print(Rule(f"[bold bright_cyan] Step {index}: {escape(title)} [/bold bright_cyan]", style="bright_cyan"))
    console.print()


def print_summary_table(data: dict[str, str], title: str = "Summary") -> None:
    """Show recorded identifiers (addresses, ids, URLs) one per row."""
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Item", style="dim", no_wrap=True)
    table.add_column("Value")
    for key, value in data.items():
        table.add_row(escape(key), escape(str(value)))
    console.print(table)
    console.print()


def print_success(message: str) -> None:
    console.print(f"[bold green]{escape(message)}[/bold green]")


def print_error(message: str) -> None:
    console.print(f"[bold red]{escape(message)}[/bold red]")


def print_warning(message: str) -> None:
    console.print(f"[bold yellow]{escape(message)}[/bold yellow]")


def print_info(message: str) -> None:
    console.print(f"[blue]{escape(message)}[/blue]")


def print_dim(message: str) -> None:
    console.print(f"[dim]{escape(message)}[/dim]")


def print_classified_error(classified: "ClassifiedError", retry_command: str | None = None) -> None:
    """Print a classified failure with its remediation and the re-run command."""
    print_error(classified.user_message)
    if classified.suggestions:
        console.print("[yellow]Suggestions:[/yellow]")
        for suggestion in classified.suggestions:
            console.print(f"  [yellow]-[/yellow] {escape(suggestion)}")
    if classified.details:
        print_dim(f"Details: {json.dumps(classified.details, default=str)}")
    if retry_command:
        console.print(f"Retry this step later with: [cyan]{escape(retry_command)}[/cyan]")
