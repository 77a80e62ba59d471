"""Interactive prompts.

Every decision point is one question: a confirm, a single choice, or free
text with an optional validator that rejects bad input before it is used.
``Prompter`` asks on the terminal through ``rich.prompt``;
``AutoPrompter`` answers with defaults for unattended runs.
"""

from __future__ import annotations

from rich.markup import escape
from rich.prompt import Confirm, Prompt

from create_datadao.errors import ValidationError
from create_datadao.utils import console, print_error
from create_datadao.validation import Validator


class Prompter:
    """Terminal prompts backed by ``rich.prompt``."""

    def confirm(self, message: str, default: bool = True) -> bool:
        return Confirm.ask(f"[bold]{message}[/bold]", default=default, console=console)

    def select(self, message: str, choices: list[tuple[str, str]], default: str | None = None) -> str:
        """Ask for one of *choices*, given as ``(value, label)`` pairs."""
        console.print(f"[bold]{escape(message)}[/bold]")
        for index, (_, label) in enumerate(choices, start=1):
            console.print(f"  {index}) {escape(label)}")
        values = [value for value, _ in choices]
        default_index = str(values.index(default) + 1) if default in values else None
        picked = Prompt.ask(
            "Choose",
            choices=[str(i) for i in range(1, len(choices) + 1)],
            default=default_index,
            console=console,
        )
        return values[int(picked) - 1]

    def text(
        self,
        message: str,
        default: str | None = None,
        validate: Validator | None = None,
        password: bool = False,
    ) -> str:
        """Ask for free text until *validate* accepts it."""
        while True:
            answer = Prompt.ask(message, default=default, password=password, console=console)
            answer = (answer or "").strip()
            error = validate(answer) if validate else None
            if error is None:
                return answer
            print_error(error)


class AutoPrompter(Prompter):
    """Accepts every confirmation and every default without asking.

    Free-text questions without a valid default cannot be answered and raise
    ``ValidationError``.
    """

    def confirm(self, message: str, default: bool = True) -> bool:
        console.print(f"[dim]{escape(message)} -> yes[/dim]")
        return True

    def select(self, message: str, choices: list[tuple[str, str]], default: str | None = None) -> str:
        return default if default is not None else choices[0][0]

    def text(
        self,
        message: str,
        default: str | None = None,
        validate: Validator | None = None,
        password: bool = False,
    ) -> str:
        answer = (default or "").strip()
        error = validate(answer) if validate else (None if answer else "no default available")
        if error is not None:
            raise ValidationError(f"Cannot answer '{message}' unattended: {error}")
        return answer
