"""Output formatting utilities for the CLI."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import questionary
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.theme import Theme

from gceops.cli.common.tui_style import QUESTIONARY_STYLE_CONFIRM

_THEME = Theme(
    {
        "ok": "bold green",
        "warn": "yellow",
        "err": "bold red",
        "title": "bold cyan",
        "meta": "dim",
    }
)

console = Console(theme=_THEME)

_STATE_STYLE = {
    "READY": "ok",
    "RESOLVED": "ok",
    "STOPPED": "meta",
    "PROVISIONING": "warn",
    "STOPPING": "warn",
    "PENDING": "warn",
    "FAILED": "err",
}

_MAX_VALUE_WIDTH = 60


def state_markup(value: str) -> str:
    """Wrap a state name in its theme style."""
    style = _STATE_STYLE.get(value, "meta")
    return f"[{style}]{value}[/{style}]"


def _short(value: Any) -> str:
    text = repr(value)
    if len(text) <= _MAX_VALUE_WIDTH:
        return text
    return f"{text[: _MAX_VALUE_WIDTH - 3]}..."


@dataclass(frozen=True)
class Out:
    """Output formatter for CLI messages and tables."""

    def _q_try(self, fn, *args, **kwargs):
        """Call questionary prompts and drop unsupported kwargs on older versions."""
        try:
            return fn(*args, **kwargs)
        except TypeError:
            for k in ("pointer", "checked_icon", "unchecked_icon", "auto_enter"):
                kwargs.pop(k, None)
            return fn(*args, **kwargs)

    def _q(self, message: str) -> str:
        """Prefix Questionary prompts to be GCEOPS consistent."""
        return f"[GCEOPS] {message}"

    def info(self, msg: str) -> None:
        """Print an info message."""
        console.print(f"[title]›[/] {msg}")

    @contextmanager
    def status(self, msg: str):
        """Show a transient status spinner while work is in progress."""
        with console.status(msg, spinner="dots"):
            yield

    def success(self, msg: str) -> None:
        """Print a success message."""
        console.print(f"[ok]✓[/] {msg}")

    def warn(self, msg: str) -> None:
        """Print a warning message."""
        console.print(f"[warn]⚠[/] {msg}")

    def error(self, msg: str) -> None:
        """Print an error message."""
        console.print(f"[err]✗[/] {escape(msg)}")

    def header(self, title: str) -> None:
        """Print a header message."""
        console.print(f"[title]{title}[/]")

    def kv(self, items: Mapping[str, Any]) -> None:
        """Print key-value pairs."""
        for k, v in items.items():
            console.print(f"[meta]{k}[/]: {v}")

    def confirm(self, message: str, *, default: bool = False) -> bool:
        """
        Ask the user for confirmation using a standardized Questionary prompt.

        Args:
            message: Confirmation question shown to the user.
            default: Default answer if the user just presses enter.

        Returns:
            True if the user confirms, False otherwise.
        """
        console.print("[meta]Use y/n then Enter[/]")

        prompt = self._q_try(
            questionary.confirm,
            self._q(message),
            default=default,
            style=QUESTIONARY_STYLE_CONFIRM,
            qmark="✦",
            auto_enter=False,
            pointer="❯",
        )
        return bool(prompt.ask())

    def machines_table(self, machines: Iterable[Any], title: str = "Machines") -> None:
        """
        Expects objects with .name .state .endpoint .labels .preemptible .error
        (like gceops.core.machines.Machine)
        """
        t = Table(title=title, show_lines=False)
        t.add_column("Name", style="ok", no_wrap=True)
        t.add_column("State")
        t.add_column("Endpoint", style="meta")
        t.add_column("Preemptible", style="meta")
        t.add_column("Labels", style="meta")
        t.add_column("Error", style="err")

        for m in machines:
            labels = ", ".join(
                f"{k}={v}" for k, v in (getattr(m, "labels", None) or {}).items()
            )
            t.add_row(
                m.name,
                state_markup(m.state.value),
                m.endpoint or "",
                "yes" if getattr(m, "preemptible", False) else "no",
                labels,
                escape(getattr(m, "error", None) or ""),
            )

        console.print(t)

    def results_table(self, futures: Iterable[Any], title: str = "Results") -> None:
        """
        Expects objects with .index .member .attempts .state .value .error
        (like gceops.core.results.FutureResult)
        """
        t = Table(title=title, show_lines=False)
        t.add_column("#", style="ok", no_wrap=True)
        t.add_column("Member", style="meta")
        t.add_column("Attempts", style="meta")
        t.add_column("State")
        t.add_column("Result / error")

        for f in futures:
            state = f.state.value
            if state == "RESOLVED":
                detail = escape(_short(f.value))
            elif f.error is not None:
                detail = f"[err]{escape(str(f.error))}[/err]"
            else:
                detail = ""
            t.add_row(
                str(f.index),
                f.member or "",
                str(f.attempts),
                state_markup(state),
                detail,
            )

        console.print(t)


out = Out()
