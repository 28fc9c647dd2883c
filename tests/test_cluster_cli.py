import json

import pytest

from gceops.cli.commands.cluster import load_work_items, run_batch
from gceops.core.cluster import ExecConfig, assemble
from gceops.core.dispatch import TaskDispatcher
from gceops.core.results import summarize
from gceops.core.work import WorkItem, WorkKind


def test_load_work_items_maps_entries_to_call_arguments(tmp_path):
    args_file = tmp_path / "args.json"
    args_file.write_text(json.dumps([[2, 10], {"base": 2, "exp": 3}, 7]))

    items = load_work_items("builtins:pow", args_file)

    assert [i.kind for i in items] == [WorkKind.REFERENCE] * 3
    assert items[0].args == (2, 10)
    assert dict(items[1].kwargs) == {"base": 2, "exp": 3}
    assert items[2].args == (7,)


def test_load_work_items_requires_array(tmp_path):
    args_file = tmp_path / "args.json"
    args_file.write_text(json.dumps({"x": 1}))

    with pytest.raises(ValueError, match="JSON array"):
        load_work_items("builtins:pow", args_file)


def test_load_work_items_validates_function_reference(tmp_path):
    args_file = tmp_path / "args.json"
    args_file.write_text("[1]")

    with pytest.raises(ValueError, match="module:function"):
        load_work_items("pow", args_file)


class _StuckTransport:
    """Accepts every item and never reports an outcome."""

    def send(self, machine, item, config):
        return machine.name

    def poll(self, handle):
        return None


def test_run_batch_reports_unfinished_items_and_settles_them(ready_machines):
    cluster = assemble(ready_machines(2), ExecConfig(image="unused"))
    items = [WorkItem.reference("builtins:abs", -i) for i in range(3)]
    dispatcher = TaskDispatcher(_StuckTransport(), poll_interval=0.01)

    futures, unfinished = run_batch(dispatcher, cluster, items, timeout=0.05)

    assert unfinished == 3
    summary = summarize(futures)
    # the table and the counts agree once the dispatcher has shut down
    assert (summary.failed, summary.pending) == (3, 0)
    assert all("shut down" in str(f.error) for f in futures)
