"""Commands for running work on a cluster of machines."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import typer

from gceops.cli.common.context import AppContext, build_context
from gceops.cli.common.exits import (
    EXIT_USAGE,
    die,
    exit_from_exc,
    exit_if_incomplete,
    warn_exit,
)
from gceops.cli.common.options import LabelOpt, NameOpt, ProjectOpt, UseOrOpt, ZoneOpt
from gceops.cli.common.output import out
from gceops.cli.common.progress import wait_for_futures_with_progress
from gceops.core.adapters.ssh import SSHTransport
from gceops.core.cluster import ClusterHandle, ExecConfig, assemble
from gceops.core.dispatch import TaskDispatcher
from gceops.core.errors import AssemblyError, SerializationError
from gceops.core.machines import MachineState
from gceops.core.results import FutureResult, summarize
from gceops.core.selector_builder import build_selector
from gceops.core.work import WorkItem

cluster_app = typer.Typer(
    help="Run work on a cluster of READY machines.",
    no_args_is_help=False,
    invoke_without_command=True,
)


@cluster_app.callback()
def _init(
    ctx: typer.Context,
    project: str | None = ProjectOpt,
    zone: str | None = ZoneOpt,
):
    """Initialize the cluster context."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(0)
    ctx.obj = build_context(project, zone)


def load_work_items(function: str, args_file: Path) -> list[WorkItem]:
    """
    Build one work item per entry of a JSON array.

    Each entry becomes the call arguments: a list is passed positionally,
    an object as keyword arguments, anything else as a single argument.
    """
    data: Any = json.loads(args_file.read_text())
    if not isinstance(data, list):
        raise ValueError(f"{args_file} must contain a JSON array")

    items: list[WorkItem] = []
    for entry in data:
        if isinstance(entry, list):
            items.append(WorkItem.reference(function, *entry))
        elif isinstance(entry, dict):
            items.append(WorkItem.reference(function, **entry))
        else:
            items.append(WorkItem.reference(function, entry))
    return items


def run_batch(
    dispatcher: TaskDispatcher,
    cluster: ClusterHandle,
    items: list[WorkItem],
    *,
    timeout: float | None,
) -> tuple[list[FutureResult], int]:
    """
    Dispatch items, follow them with live progress, then shut the dispatcher down.

    Returns the futures, all settled by the shutdown, and how many items were
    still running when ``timeout`` passed. Those items fail on shutdown.
    """
    with dispatcher:
        futures = dispatcher.dispatch(cluster, items)
        wait_for_futures_with_progress(futures, timeout=timeout)
        unfinished = summarize(futures).pending
    return futures, unfinished


@cluster_app.command()
def run(
    ctx: typer.Context,
    function: str = typer.Argument(..., help="Function to run, as module:function"),
    args_file: Path = typer.Option(
        ..., "--args", exists=True, dir_okay=False, help="JSON array of call arguments"
    ),
    image: str = typer.Option(..., "--image", help="Container image the worker runs in"),
    name: str | None = NameOpt,
    label: list[str] = LabelOpt,
    use_or: bool = UseOrOpt,
    launch_command: str | None = typer.Option(
        None, "--launch-command", help="Worker launch command template ({image} is substituted)"
    ),
    ssh_user: str | None = typer.Option(None, "--ssh-user"),
    ssh_key: str | None = typer.Option(None, "--ssh-key"),
    per_member: int | None = typer.Option(
        None, "--per-member", help="Items in flight per machine"
    ),
    redispatch: int = typer.Option(
        0, "--redispatch", help="Resend items lost with their machine this many times"
    ),
    timeout: float | None = typer.Option(None, "--timeout", help="Seconds to wait for results"),
):
    """
    Dispatch FUNCTION once per argument entry over the selected READY machines.
    """
    appctx: AppContext = ctx.obj
    settings = appctx.settings

    try:
        selector = build_selector(name=name, labels=label, use_or=use_or)
        items = load_work_items(function, args_file)
    except (ValueError, json.JSONDecodeError) as e:
        die(str(e), code=EXIT_USAGE)

    if not items:
        warn_exit("No work items in the argument file", code=0)

    with out.status("Loading machines..."):
        machines = [
            m for m in selector.select(appctx.pool.refresh()) if m.state == MachineState.READY
        ]

    config = ExecConfig(
        image=image,
        launch_command=launch_command or settings.launch_command,
        ssh_user=ssh_user or settings.ssh_user,
        ssh_key_file=ssh_key or settings.ssh_key_file,
    )
    try:
        cluster = assemble(sorted(machines, key=lambda m: m.name), config)
    except AssemblyError as exc:
        exit_from_exc(exc, message=f"{exc} (no READY machines matched?)", code=1)

    out.kv(
        {
            "members": ", ".join(m.name for m in cluster),
            "items": len(items),
            "command": config.render_command(),
        }
    )

    dispatcher = TaskDispatcher(
        SSHTransport(),
        max_outstanding_per_member=per_member or settings.max_outstanding_per_member,
        poll_interval=settings.task_poll_interval,
        redispatch_lost=redispatch,
    )
    try:
        futures, unfinished = run_batch(dispatcher, cluster, items, timeout=timeout)
    except SerializationError as exc:
        exit_from_exc(exc, message=str(exc), code=EXIT_USAGE)
    if unfinished:
        out.warn(
            f"{unfinished} item(s) still running after {timeout:g}s; "
            "remote work is not cancelled"
        )

    summary = summarize(futures)
    out.results_table(futures, title="Results")
    out.info(
        f"resolved={summary.resolved} failed={summary.failed} pending={summary.pending}"
    )
    if summary.lost:
        out.warn(f"Lost with their machine (safe to rerun): {list(summary.lost)}")

    exit_if_incomplete(summary)
