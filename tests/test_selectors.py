import pytest

from gceops.core.machines import Machine, MachineState
from gceops.core.selectors import (
    AndSelector,
    LabelSelector,
    NameRegexSelector,
    OrSelector,
    StateSelector,
)


def test_name_regex_selector_matches():
    machine = Machine(name="train-worker-0", state=MachineState.READY, labels={"pool": "train"})
    selector = NameRegexSelector("worker")

    assert selector.matches(machine) is True


def test_name_regex_selector_no_match():
    machine = Machine(name="eval-0", state=MachineState.READY)
    selector = NameRegexSelector("^train-")

    assert selector.matches(machine) is False


def test_name_regex_selector_rejects_bad_pattern():
    with pytest.raises(ValueError, match="Invalid regex"):
        NameRegexSelector("train-(")


def test_label_selector_handles_missing_labels():
    machine = Machine(name="vm-0", state=MachineState.READY, labels=None)
    selector = LabelSelector("pool", "train")

    assert selector.matches(machine) is False


def test_state_selector_and_select_keep_order():
    machines = [
        Machine(name="vm-0", state=MachineState.READY),
        Machine(name="vm-1", state=MachineState.FAILED),
        Machine(name="vm-2", state=MachineState.READY),
    ]

    selected = StateSelector(MachineState.READY).select(machines)

    assert [m.name for m in selected] == ["vm-0", "vm-2"]


def test_and_or_selectors():
    machine = Machine(name="train-0", state=MachineState.READY, labels={"pool": "train"})

    name_sel = NameRegexSelector("train")
    label_sel = LabelSelector("pool", "train")

    assert AndSelector([name_sel, label_sel]).matches(machine) is True
    assert AndSelector([name_sel, LabelSelector("pool", "eval")]).matches(machine) is False
    assert OrSelector([name_sel, LabelSelector("pool", "eval")]).matches(machine) is True
