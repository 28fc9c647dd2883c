"""Live progress displays for machine lifecycles and dispatched work."""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from typing import Sequence

from rich.console import Group
from rich.live import Live
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from gceops.cli.common.output import console
from gceops.core.machines import Machine, MachinePool, MachineState
from gceops.core.results import FutureResult, FutureState

_MAX_LABEL_WIDTH = 48

_STYLE = {
    MachineState.READY.value: "green",
    MachineState.STOPPED.value: "green",
    FutureState.RESOLVED.value: "green",
    MachineState.FAILED.value: "red",
    FutureState.FAILED.value: "red",
}


def _truncate(text: str, max_len: int) -> str:
    """Return text capped at max_len characters using an ASCII ellipsis."""
    if max_len <= 3 or len(text) <= max_len:
        return text[:max_len]
    return f"{text[: max_len - 3]}..."


def _style_for(value: str) -> str:
    return _STYLE.get(value, "yellow")


def _display_item_label(future: FutureResult, *, label_width: int) -> str:
    """
    Render a work item label for the live progress list.

    `#<index>  <callable>` with the callable column aligned.
    """
    index = f"#{future.index}".ljust(label_width)
    return f"{index}  {_truncate(future.item.label, _MAX_LABEL_WIDTH)}"


def _overall() -> Progress:
    return Progress(
        TextColumn("[bold]Overall[/]"),
        BarColumn(),
        TaskProgressColumn(),
        TextColumn("failures=[bold red]{task.fields[failures]}[/]"),
        TimeElapsedColumn(),
        console=console,
    )


def await_machines_with_progress(
    pool: MachinePool,
    machines: Sequence[Machine],
    *,
    timeout: float,
    stopping: bool = False,
    refresh_interval: float = 0.5,
) -> list[Machine]:
    """
    Wait for machines to settle while showing one row per machine.

    The wait itself runs through MachinePool.await_ready (or await_stopped);
    this function only renders the pool's registry while it happens.

    Returns the settled machines in input order.
    """
    target = MachineState.STOPPED if stopping else MachineState.READY
    settled_states = {target, MachineState.FAILED}

    overall = _overall()
    per_machine = Progress(
        SpinnerColumn(),
        TextColumn("[bold]{task.fields[name]}[/]"),
        TextColumn(
            "state=[{task.fields[style]}]{task.fields[state]}[/{task.fields[style]}]"
        ),
        TimeElapsedColumn(),
        console=console,
    )

    overall_id = overall.add_task("overall", total=max(len(machines), 1), failures=0)
    name_width = max((len(m.name) for m in machines), default=0)
    rows = {
        m.name: per_machine.add_task(
            "",
            total=1,
            name=_truncate(m.name, _MAX_LABEL_WIDTH).ljust(min(name_width, _MAX_LABEL_WIDTH)),
            state=m.state.value,
            style=_style_for(m.state.value),
        )
        for m in machines
    }
    done: set[str] = set()
    failures = 0

    wait = pool.await_stopped if stopping else pool.await_ready
    with ThreadPoolExecutor(max_workers=1) as executor:
        future = executor.submit(wait, list(machines), timeout)
        with Live(Group(overall, per_machine), console=console, refresh_per_second=10, transient=True):
            while True:
                finished = future.done()
                for m in machines:
                    if m.name in done:
                        continue
                    current = pool.get(m.name) or m
                    state = current.state.value
                    per_machine.update(rows[m.name], state=state, style=_style_for(state))
                    if current.state in settled_states:
                        done.add(m.name)
                        if current.state == MachineState.FAILED:
                            failures += 1
                            overall.update(overall_id, failures=failures)
                        per_machine.update(rows[m.name], completed=1)
                        overall.advance(overall_id, 1)
                if finished:
                    break
                time.sleep(refresh_interval)
            overall.update(overall_id, completed=len(machines))
        return future.result()


def wait_for_futures_with_progress(
    futures: Sequence[FutureResult],
    *,
    timeout: float | None = None,
    refresh_interval: float = 0.5,
) -> None:
    """
    Follow dispatched work until every future is resolved or the timeout passes.

    Shows an overall bar plus one row per item with its member and state.
    Leaving on timeout does not cancel remote work.
    """
    overall = _overall()
    per_item = Progress(
        SpinnerColumn(),
        TextColumn("[bold]{task.fields[item]}[/]"),
        TextColumn("member={task.fields[member]}"),
        TextColumn(
            "state=[{task.fields[style]}]{task.fields[state]}[/{task.fields[style]}]"
        ),
        TimeElapsedColumn(),
        console=console,
    )
    overall_id = overall.add_task("overall", total=max(len(futures), 1), failures=0)
    label_width = len(f"#{len(futures) - 1}") if futures else 0
    rows = {
        f.index: per_item.add_task(
            "",
            total=1,
            item=_display_item_label(f, label_width=label_width),
            member=f.member or "-",
            state=f.state.value,
            style=_style_for(f.state.value),
        )
        for f in futures
    }
    done: set[int] = set()
    failures = 0
    deadline = None if timeout is None else time.monotonic() + timeout

    with Live(Group(overall, per_item), console=console, refresh_per_second=10, transient=True):
        while len(done) < len(futures):
            for f in futures:
                if f.index in done:
                    continue
                per_item.update(rows[f.index], member=f.member or "-")
                if f.state == FutureState.PENDING:
                    continue
                done.add(f.index)
                if f.state == FutureState.FAILED:
                    failures += 1
                    overall.update(overall_id, failures=failures)
                per_item.update(
                    rows[f.index],
                    state=f.state.value,
                    style=_style_for(f.state.value),
                    completed=1,
                )
                overall.advance(overall_id, 1)
            if len(done) == len(futures):
                break
            if deadline is not None and time.monotonic() >= deadline:
                break
            time.sleep(refresh_interval)
