"""CLI application for Compute Engine cluster tooling."""

import logging

import typer
from rich.logging import RichHandler

from gceops.cli.commands.cluster import cluster_app
from gceops.cli.commands.vms import app as vms_app
from gceops.cli.common.output import console

app = typer.Typer(
    help="gceops - run Python work on Compute Engine clusters",
    no_args_is_help=True,
)

app.add_typer(vms_app, name="vms", help="Create / list / stop machines.")
app.add_typer(cluster_app, name="cluster")


def setup_logging(verbose: bool) -> None:
    """Route library logging through rich; warnings only unless verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )
    # keep third-party HTTP chatter out of -v output
    for noisy in ("google", "urllib3", "grpc"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


@app.callback()
def _main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Configure logging for every command."""
    setup_logging(verbose)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
