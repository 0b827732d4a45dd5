from __future__ import annotations

from collections.abc import Iterable

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from .errors import UserCancelledError, YkgpgError

LABEL_WIDTH = 25
REQUIRED_FIELD_WARNING = "This field is required. Please enter a value."

LOG_STYLES = {
    "INFO": "blue",
    "SUCCESS": "green",
    "WARNING": "yellow",
    "ERROR": "red",
}


class Prompts:
    """Operator-facing output and questions, rendered with rich."""

    def __init__(
        self,
        console: Console | None = None,
        err_console: Console | None = None,
        no_color: bool = False,
    ) -> None:
        self._console = console or Console(no_color=no_color)
        self._err_console = err_console or Console(stderr=True, no_color=no_color)

    @property
    def console(self) -> Console:
        return self._console

    # Logging-style lines

    def _log(self, level: str, message: str) -> None:
        target = self._err_console if level in ("WARNING", "ERROR") else self._console
        target.print(f"[{level}] {message}", style=LOG_STYLES[level], markup=False)

    def info(self, message: str) -> None:
        self._log("INFO", message)

    def success(self, message: str) -> None:
        self._log("SUCCESS", message)

    def warning(self, message: str) -> None:
        self._log("WARNING", message)

    def error(self, message: str) -> None:
        self._log("ERROR", message)

    # Layout

    def header(self, title: str) -> None:
        rule = "=" * 40
        self._console.print()
        self._console.print(rule, style="bold cyan")
        self._console.print(f"       {title}", style="bold cyan", markup=False)
        self._console.print(rule, style="bold cyan")
        self._console.print()

    def section(self, title: str) -> None:
        self._console.print()
        self._console.print(title, style="bold cyan", markup=False)
        self._console.print("-" * len(title), style="bold cyan")
        self._console.print()

    def key_value(self, key: str, value: str) -> None:
        self._console.print(
            f"{key + ':':<{LABEL_WIDTH}} [bright_white]{escape(value)}[/bright_white]"
        )

    def key_value_key(self, key: str, value: str) -> None:
        self._console.print(f"{key + ':':<{LABEL_WIDTH}} [magenta]{escape(value)}[/magenta]")

    def text(self, message: str = "") -> None:
        self._console.print(message, markup=False, highlight=False)

    def instructions(self, title: str, steps: Iterable[str]) -> None:
        self._console.print()
        self._console.print(title, style="bold", markup=False)
        for i, step in enumerate(steps, 1):
            self._console.print(f"{i}. {step}", markup=False, highlight=False)
        self._console.print()

    def panel(self, message: str, title: str, style: str = "yellow") -> None:
        self._console.print()
        self._console.print(Panel(escape(message), title=title, border_style=style))

    def table(
        self,
        columns: list[str],
        rows: Iterable[Iterable[str]],
        title: str | None = None,
    ) -> None:
        table = Table(title=title, show_header=True, header_style="bold")
        for column in columns:
            table.add_column(column)
        for row in rows:
            table.add_row(*(escape(cell) for cell in row))
        self._console.print(table)

    def check(self, label: str, status: str, ok: bool | None = True) -> None:
        """One line of a checklist: ``Checking X... OK``."""
        color = "green" if ok else ("yellow" if ok is None else "red")
        self._console.print(f"{escape(label)}... [{color}]{escape(status)}[/{color}]")

    def show_error(self, error: Exception) -> None:
        body = error.format_full() if isinstance(error, YkgpgError) else f"Error: {error}"
        self._err_console.print()
        self._err_console.print(Panel(escape(body), title="Error", border_style="red"))

    # Questions

    def ask(self, prompt: str, default: str = "") -> str:
        answer = Prompt.ask(
            escape(prompt),
            default=default,
            show_default=bool(default),
            console=self._console,
        )
        return (answer or "").strip()

    def ask_required(self, prompt: str) -> str:
        while True:
            answer = self.ask(prompt)
            if answer:
                return answer
            self.warning(REQUIRED_FIELD_WARNING)

    def confirm(
        self,
        message: str,
        default: bool = False,
        dangerous: bool = False,
    ) -> bool:
        if dangerous:
            self._console.print(
                Panel(
                    f"[bold red]WARNING: DANGER[/bold red]\n\n{escape(message)}",
                    border_style="red",
                )
            )
            return Confirm.ask("Are you absolutely sure?", default=False, console=self._console)

        return Confirm.ask(escape(message), default=default, console=self._console)

    def wait_for_enter(self, message: str = "Press Enter to continue (or 'q' to cancel)") -> bool:
        """Block until Enter; returns False if the operator typed q."""
        answer = Prompt.ask(
            f"[yellow]{escape(message)}[/yellow]",
            default="",
            show_default=False,
            console=self._console,
        )
        return answer.strip().lower() not in ("q", "quit")


class MockPrompts(Prompts):
    """Mock prompts for testing - returns pre-configured values and records output."""

    def __init__(
        self,
        answers: Iterable[str] = (),
        confirmations: bool | Iterable[bool] = True,
        proceed: bool = True,
    ) -> None:
        super().__init__(Console(quiet=True), Console(quiet=True))
        self._answers = list(answers)
        if isinstance(confirmations, bool):
            self._confirm_default: bool = confirmations
            self._confirmations: list[bool] = []
        else:
            self._confirm_default = True
            self._confirmations = list(confirmations)
        self._proceed = proceed
        self.logged: list[tuple[str, str]] = []
        self.questions: list[str] = []
        self.waits = 0
        self.checks: list[tuple[str, str, bool | None]] = []

    def _log(self, level: str, message: str) -> None:
        self.logged.append((level, message))

    def check(self, label: str, status: str, ok: bool | None = True) -> None:
        self.checks.append((label, status, ok))

    def check_status(self, label: str) -> str | None:
        for checked, status, _ in self.checks:
            if checked == label:
                return status
        return None

    def messages(self, level: str) -> list[str]:
        return [msg for lvl, msg in self.logged if lvl == level]

    def ask(self, prompt: str, default: str = "") -> str:
        self.questions.append(prompt)
        if self._answers:
            return self._answers.pop(0)
        return default

    def ask_required(self, prompt: str) -> str:
        while self._answers:
            answer = self.ask(prompt)
            if answer:
                return answer
            self.warning(REQUIRED_FIELD_WARNING)
        raise UserCancelledError(f"no scripted answer for: {prompt}")

    def confirm(
        self,
        message: str,
        default: bool = False,
        dangerous: bool = False,
    ) -> bool:
        self.questions.append(message)
        if self._confirmations:
            return self._confirmations.pop(0)
        return self._confirm_default

    def wait_for_enter(self, message: str = "Press Enter to continue (or 'q' to cancel)") -> bool:
        self.waits += 1
        return self._proceed
