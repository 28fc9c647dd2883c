"""Exit handling for gceops commands.

Exit codes: 0 when everything settled as asked, 1 when a machine or work
item failed (or auth failed), 2 for invalid input.
"""

from typing import Iterable, NoReturn

import typer

from gceops.cli.common.output import out
from gceops.core.machines import Machine, MachineState
from gceops.core.results import BatchSummary

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def ok_exit(msg: str | None = None) -> NoReturn:
    """Exit successfully with an optional informational message."""
    if msg:
        out.info(msg)
    raise typer.Exit(EXIT_OK)


def die(msg: str, code: int = EXIT_FAILED) -> NoReturn:
    """Exit with an error message."""
    out.error(msg)
    raise typer.Exit(code)


def warn_exit(msg: str, code: int = EXIT_OK) -> NoReturn:
    """Exit with a warning message."""
    out.warn(msg)
    raise typer.Exit(code)


def exit_from_exc(exc: Exception, *, message: str, code: int = EXIT_FAILED) -> NoReturn:
    """Print an error message and exit, chaining the original exception."""
    out.error(message)
    raise typer.Exit(code) from exc


def exit_if_failed(machines: Iterable[Machine]) -> None:
    """Exit with EXIT_FAILED if any machine ended up FAILED."""
    failed = [m.name for m in machines if m.state == MachineState.FAILED]
    if failed:
        die(f"{len(failed)} machine(s) FAILED: {', '.join(failed)}")


def exit_if_incomplete(summary: BatchSummary) -> None:
    """Exit with EXIT_FAILED if any work item failed or never finished."""
    if summary.failed or summary.pending:
        raise typer.Exit(EXIT_FAILED)
