"""Prompt styles for the interactive questionary prompts.

Questionary renders through prompt_toolkit, so both styles are plain
prompt_toolkit ``Style`` objects built from one palette.
"""

from __future__ import annotations

from prompt_toolkit.styles import Style

_MUTED = "ansibrightblack"


def _prompt_style(question: str, accent: str, *, checkbox: bool) -> Style:
    """Build a prompt style with a question colour and an accent for picks."""
    rules = {
        "question": f"bold {question}",
        "answer": f"bold {accent}",
        "pointer": f"bold {accent}",
        "highlighted": f"bold {accent}",
        "selected": f"bold {accent}",
        "separator": _MUTED,
        "instruction": _MUTED,
        "disabled": _MUTED,
        "error": "bold ansired",
    }
    if checkbox:
        rules["checkbox"] = _MUTED
        rules["checkbox-selected"] = f"bold {accent}"
    return Style.from_dict(rules)


# machine pickers
QUESTIONARY_STYLE_SELECT = _prompt_style("ansibrightcyan", "ansibrightgreen", checkbox=True)

# deletes are confirmed in red throughout
QUESTIONARY_STYLE_CONFIRM = _prompt_style("ansibrightred", "ansibrightred", checkbox=False)
