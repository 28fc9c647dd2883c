"""Terminal UI utilities for gceops."""

from __future__ import annotations

import questionary

from gceops.cli.common.tui_style import QUESTIONARY_STYLE_SELECT
from gceops.core.machines import Machine

_MAX_MACHINE_NAME_WIDTH = 63


def _truncate(text: str, max_len: int) -> str:
    """Return text capped at max_len characters using an ASCII ellipsis."""
    if max_len <= 3 or len(text) <= max_len:
        return text[:max_len]
    return f"{text[: max_len - 3]}..."


def _machine_choice_title(machine: Machine, *, name_width: int) -> str:
    """Format one machine choice as `<name>  [<state>]` with an aligned state column."""
    short_name = _truncate(machine.name, _MAX_MACHINE_NAME_WIDTH)
    return f"{short_name.ljust(name_width)}  [{machine.state.value}]"


def select_machines(machines: list[Machine], message: str = "Select machines:") -> list[Machine]:
    """Display a checkbox prompt to select machines from a list.

    All machines start checked.

    Args:
        machines: Machines to choose from.
        message: Prompt text.

    Returns:
        The selected machines, or an empty list if none selected.
    """
    shown_names = [_truncate(m.name, _MAX_MACHINE_NAME_WIDTH) for m in machines]
    name_width = max((len(name) for name in shown_names), default=0)

    choices = [
        questionary.Choice(
            title=_machine_choice_title(m, name_width=name_width),
            value=m,
            checked=True,
        )
        for m in machines
    ]

    return (
        questionary.checkbox(
            message,
            choices=choices,
            style=QUESTIONARY_STYLE_SELECT,
        ).ask()
        or []
    )
