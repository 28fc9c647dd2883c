"""Commands for managing Compute Engine machines."""

import typer

from gceops.cli.common.context import AppContext, build_context
from gceops.cli.common.exits import EXIT_USAGE, die, exit_if_failed, ok_exit, warn_exit
from gceops.cli.common.options import (
    ConfirmOpt,
    DryRunOpt,
    LabelOpt,
    NameOpt,
    ParallelOpt,
    ProjectOpt,
    TimeoutOpt,
    UseOrOpt,
    WaitOpt,
    ZoneOpt,
)
from gceops.cli.common.output import out
from gceops.cli.common.progress import await_machines_with_progress
from gceops.cli.tui import select_machines
from gceops.core.adapters.gce import DEFAULT_IMAGE
from gceops.core.machines import MachineSpec, MachineState
from gceops.core.selector_builder import build_selector, parse_label

app = typer.Typer(
    help="Create / list / stop Compute Engine machines",
    no_args_is_help=False,
    invoke_without_command=True,
)


@app.callback()
def _init(
    ctx: typer.Context,
    project: str | None = ProjectOpt,
    zone: str | None = ZoneOpt,
    parallel: int | None = ParallelOpt,
):
    """Initialize the machine context."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(0)
    ctx.obj = build_context(project, zone, max_parallel=parallel)


@app.command()
def create(
    ctx: typer.Context,
    names: list[str] = typer.Argument(..., help="Names of the machines to create"),
    machine_type: str = typer.Option("n1-standard-1", "--machine-type", "-t"),
    image: str = typer.Option(
        DEFAULT_IMAGE, "--image", help="Boot image: family, project/family or image path"
    ),
    custom_image: str | None = typer.Option(
        None, "--custom-image", help="Image overriding --image for the boot disk"
    ),
    preemptible: bool = typer.Option(False, "--preemptible", help="Create preemptible machines"),
    label: list[str] = LabelOpt,
    disk_size: int = typer.Option(10, "--disk-size", help="Boot disk size in GB"),
    wait: bool = WaitOpt,
    timeout: float | None = TimeoutOpt,
):
    """
    Create machines (all requests are issued at once).
    """
    appctx: AppContext = ctx.obj

    try:
        labels = dict(parse_label(raw) for raw in label)
    except ValueError as e:
        die(str(e), code=EXIT_USAGE)

    specs = [
        MachineSpec(
            name=name,
            machine_type=machine_type,
            image=image,
            custom_image=custom_image,
            preemptible=preemptible,
            labels=labels or None,
            disk_size_gb=disk_size,
        )
        for name in names
    ]

    try:
        with out.status("Requesting machines..."):
            machines = appctx.pool.create_many(specs)
    except ValueError as e:
        die(str(e), code=EXIT_USAGE)

    requested = [m for m in machines if m.state == MachineState.PROVISIONING]
    out.success(f"Create requested: {len(requested)} machine(s)")

    if wait and requested:
        machines = await_machines_with_progress(
            appctx.pool,
            machines,
            timeout=timeout or appctx.settings.operation_timeout,
        )

    out.machines_table(machines, title="Machines")

    exit_if_failed(machines)


@app.command("list")
def list_(
    ctx: typer.Context,
    name: str | None = NameOpt,
    label: list[str] = LabelOpt,
    use_or: bool = UseOrOpt,
):
    """
    List machines, optionally filtered by selectors.
    """
    appctx: AppContext = ctx.obj

    with out.status("Loading machines..."):
        machines = appctx.pool.refresh()

    if name or label:
        try:
            selector = build_selector(name=name, labels=label, use_or=use_or)
        except ValueError as e:
            die(str(e), code=EXIT_USAGE)
        machines = selector.select(machines)

    if not machines:
        warn_exit("No machines found", code=0)

    out.machines_table(sorted(machines, key=lambda m: m.name), title="Machines")


@app.command()
def stop(
    ctx: typer.Context,
    name: str | None = NameOpt,
    label: list[str] = LabelOpt,
    use_or: bool = UseOrOpt,
    confirm: bool = ConfirmOpt,
    wait: bool = WaitOpt,
    timeout: float | None = TimeoutOpt,
    dry_run: bool = DryRunOpt,
):
    """
    Stop (delete) machines selected by name and/or label.
    """
    appctx: AppContext = ctx.obj

    try:
        selector = build_selector(name=name, labels=label, use_or=use_or)
    except ValueError as e:
        die(str(e), code=EXIT_USAGE)

    with out.status("Loading machines..."):
        machines = selector.select(appctx.pool.refresh())

    candidates = [
        m for m in machines if m.state not in (MachineState.STOPPED, MachineState.STOPPING)
    ]
    if not candidates:
        warn_exit("No running machines matched", code=0)

    selected = select_machines(candidates) if confirm else candidates
    if not selected:
        warn_exit("No machines selected", code=0)

    out.header("Selected machines")
    out.machines_table(selected, title="Selected")

    if dry_run:
        warn_exit("Dry-run enabled: no machines were stopped", code=0)

    if confirm and not out.confirm(f"Delete {len(selected)} machine(s)?"):
        ok_exit("Cancelled")

    with out.status("Requesting deletes..."):
        stopped = appctx.pool.stop_many(selected)

    out.success(f"Delete requested: {len(stopped)} machine(s)")

    if wait:
        stopped = await_machines_with_progress(
            appctx.pool,
            stopped,
            timeout=timeout or appctx.settings.operation_timeout,
            stopping=True,
        )

    out.machines_table(stopped, title="Machines")

    exit_if_failed(stopped)
