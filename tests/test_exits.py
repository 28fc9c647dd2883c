import pytest
import typer

from gceops.cli.common.exits import EXIT_FAILED, exit_if_failed, exit_if_incomplete
from gceops.core.machines import Machine, MachineState
from gceops.core.results import BatchSummary


def test_exit_if_failed_names_failed_machines(capsys):
    machines = [
        Machine(name="vm-0", state=MachineState.READY),
        Machine(name="vm-1", state=MachineState.FAILED, error="quota"),
    ]

    with pytest.raises(typer.Exit) as excinfo:
        exit_if_failed(machines)

    assert excinfo.value.exit_code == EXIT_FAILED
    assert "vm-1" in capsys.readouterr().out


def test_exit_if_failed_passes_healthy_machines(ready_machines):
    exit_if_failed(ready_machines(2))


@pytest.mark.parametrize(
    "summary, exits",
    [
        (BatchSummary(total=2, resolved=2, failed=0, pending=0, lost=()), False),
        (BatchSummary(total=2, resolved=1, failed=1, pending=0, lost=(1,)), True),
        (BatchSummary(total=2, resolved=1, failed=0, pending=1, lost=()), True),
    ],
)
def test_exit_if_incomplete(summary, exits):
    if exits:
        with pytest.raises(typer.Exit):
            exit_if_incomplete(summary)
    else:
        exit_if_incomplete(summary)
