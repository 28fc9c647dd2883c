import io

from gceops import remote
from gceops.core.work import WorkItem, load_outcome


def test_main_writes_outcome_to_stdout():
    stdout = io.BytesIO()

    rc = remote.main(io.BytesIO(WorkItem.reference("builtins:pow", 2, 10).payload()), stdout)

    assert rc == 0
    outcome = load_outcome(stdout.getvalue())
    assert outcome.ok
    assert outcome.value == 1024


def test_main_keeps_prints_off_stdout(capsys):
    stdout = io.BytesIO()

    remote.main(io.BytesIO(WorkItem.reference("builtins:print", "hello").payload()), stdout)

    assert load_outcome(stdout.getvalue()).ok
    assert "hello" in capsys.readouterr().err


def test_main_rejects_empty_input(capsys):
    stdout = io.BytesIO()

    assert remote.main(io.BytesIO(b""), stdout) == 2
    assert stdout.getvalue() == b""
    assert "no work item" in capsys.readouterr().err
