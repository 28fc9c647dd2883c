"""Common CLI options for the CLI."""

import typer

ProjectOpt = typer.Option(
    None,
    "--project",
    help="Google Cloud project (default: GCEOPS_PROJECT or the credentials' project)",
)

ZoneOpt = typer.Option(
    None,
    "--zone",
    "-z",
    help="Compute Engine zone (default: GCEOPS_ZONE)",
)

NameOpt = typer.Option(
    None,
    "--name",
    help="Regex on machine name",
)

LabelOpt = typer.Option(
    [],
    "--label",
    help="Label selector (key=value). This is reusable.",
    show_default=False,
)

UseOrOpt = typer.Option(
    False,
    "--or",
    help="Use OR instead of AND between selectors",
)

ParallelOpt = typer.Option(
    None,
    "--parallel",
    "-n",
    help="Number of create/delete requests to issue in parallel",
)

ConfirmOpt = typer.Option(
    True,
    "--confirm/--no-confirm",
    help="Ask for confirmation before acting on machines",
)

WaitOpt = typer.Option(
    False,
    "--wait",
    "-w",
    help="Wait until the machines reach their target state",
)

TimeoutOpt = typer.Option(
    None,
    "--timeout",
    help="Seconds to wait (default: GCEOPS_OPERATION_TIMEOUT)",
)

DryRunOpt = typer.Option(
    False,
    "--dry-run",
    help="Show which machines would be affected, but don't change anything",
)
