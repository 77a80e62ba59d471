"""create-datadao command line interface.

Usage::

    create-datadao create MyDataDAO --dir ./my-datadao
    create-datadao deploy                    # walk every stage
    create-datadao deploy --stage refiner    # re-run one stage
    create-datadao status
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from rich.markup import escape

from create_datadao.config import Config
from create_datadao.errors import DeployError, StateCorruptionError
from create_datadao.orchestrator import Orchestrator
from create_datadao.prompts import AutoPrompter, Prompter
from create_datadao.retry import classify
from create_datadao.scaffold import ProjectScaffolder, collect_answers
from create_datadao.stages import STAGE_KEYS
from create_datadao.utils import console, print_classified_error, print_error, sanitize_name

CONFIG_FILE = "datadao.config.json"


def load_config(project_dir: str | None) -> Config:
    """Use the project's saved configuration when there is one, else the environment."""
    directory = Path(project_dir) if project_dir else None
    saved = (directory or Path(".")) / CONFIG_FILE
    if saved.exists():
        config = Config.load(saved)
        config.project_dir = saved.parent
        return config
    return Config.from_env(directory)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="create-datadao",
        description="Create and deploy a DataDAO on the Vana network",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  create-datadao create MyDataDAO\n"
            "  create-datadao deploy --project-dir ./mydatadao\n"
            "  create-datadao deploy --stage registration\n"
            "  create-datadao status\n"
        ),
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    create = subparsers.add_parser("create", help="Clone the templates into a new project")
    create.add_argument("name", nargs="?", default="", help="DataDAO name")
    create.add_argument("--dir", default=None, help="Project directory (default: ./<name>)")
    create.add_argument("--github-user", default=None, help="GitHub username for the repositories")
    create.add_argument("--address", default=None, help="Expected wallet address, checked against the private key")
    create.add_argument("--token-name", default=None)
    create.add_argument("--token-symbol", default=None)

    deploy = subparsers.add_parser("deploy", help="Run the deployment stages that are not done yet")
    deploy.add_argument("--project-dir", "-p", default=None, help="Project directory (default: .)")
    deploy.add_argument("--stage", choices=STAGE_KEYS, default=None, help="Run only this stage")
    deploy.add_argument("--yes", "-y", action="store_true", help="Accept every prompt with its default")

    status = subparsers.add_parser("status", help="Show deployment progress")
    status.add_argument("--project-dir", "-p", default=None, help="Project directory (default: .)")

    return parser


def _create(args: argparse.Namespace) -> int:
    prompter = Prompter()
    answers = collect_answers(
        prompter,
        args.name,
        {
            "github_username": args.github_user,
            "address": args.address,
            "token_name": args.token_name,
            "token_symbol": args.token_symbol,
        },
    )
    config = Config.from_env(Path(args.dir or sanitize_name(answers.dlp_name)))
    asyncio.run(ProjectScaffolder(config).create(answers))
    console.print(f"\nNext: [cyan]cd {escape(str(config.project_dir))} && create-datadao deploy[/cyan]")
    return 0


def _deploy(args: argparse.Namespace) -> int:
    config = load_config(args.project_dir)
    prompter = AutoPrompter() if args.yes else Prompter()
    report = asyncio.run(Orchestrator(config, prompter).run(only=args.stage))
    return 0 if report.success else 1


def _status(args: argparse.Namespace) -> int:
    config = load_config(args.project_dir)
    state = Orchestrator(config).status()
    return 0 if state.complete else 1


_COMMANDS = {"create": _create, "deploy": _deploy, "status": _status}


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for ``create-datadao`` and ``python -m create_datadao``."""
    args = build_parser().parse_args(argv)
    try:
        code = _COMMANDS[args.command](args)
    except StateCorruptionError as exc:
        print_error(str(exc))
        sys.exit(2)
    except DeployError as exc:
        print_classified_error(classify(exc))
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted. Progress so far is saved; re-run to continue.[/yellow]")
        sys.exit(130)
    sys.exit(code)


if __name__ == "__main__":
    main()
