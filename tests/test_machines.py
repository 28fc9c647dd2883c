import threading
import time
from dataclasses import replace

import pytest

from gceops.core.machines import Machine, MachinePool, MachineSpec, MachineState
from gceops.core.operations import Operation, OperationKind, OperationStatus


class _CloudStub:
    def __init__(
        self,
        *,
        fail: tuple[str, ...] = (),
        create_errors: tuple[str, ...] = (),
        barrier: threading.Barrier | None = None,
        status: OperationStatus | None = None,
    ):
        self.fail = set(fail)
        self.create_errors = set(create_errors)
        self.barrier = barrier
        self.status = status
        self.created: list[str] = []
        self.deleted: list[str] = []
        self.operation_calls = 0
        self.listed: list[Machine] | None = None
        self.list_error: Exception | None = None
        self.polled = threading.Event()
        self._lock = threading.Lock()

    def create_vm(self, spec: MachineSpec) -> Operation:
        if self.barrier is not None:
            self.barrier.wait(timeout=5)
        with self._lock:
            self.created.append(spec.name)
        if spec.name in self.create_errors:
            raise RuntimeError("quota exceeded")
        return Operation(id=f"op-insert-{spec.name}", target=spec.name, kind=OperationKind.INSERT)

    def delete_vm(self, name: str) -> Operation:
        with self._lock:
            self.deleted.append(name)
        return Operation(id=f"op-delete-{name}", target=name, kind=OperationKind.DELETE)

    def get_operation(self, operation: Operation) -> Operation:
        with self._lock:
            self.operation_calls += 1
        self.polled.set()
        if self.status is not None:
            return replace(operation, status=self.status)
        if operation.target in self.fail:
            return replace(
                operation, status=OperationStatus.ERROR, error="ZONE_RESOURCE_POOL_EXHAUSTED"
            )
        return replace(operation, status=OperationStatus.DONE)

    def list_vms(self) -> list[Machine]:
        if self.list_error is not None:
            raise self.list_error
        if self.listed is not None:
            return self.listed
        return [
            Machine(name=n, state=MachineState.READY, endpoint=f"10.0.0.{i + 2}")
            for i, n in enumerate(self.created)
            if n not in self.fail and n not in self.deleted
        ]


def _specs(*names: str) -> list[MachineSpec]:
    return [MachineSpec(name=n, machine_type="n1-standard-1", image="debian-12") for n in names]


def _pool(adapter: _CloudStub, **kwargs) -> MachinePool:
    kwargs.setdefault("poll_interval", 0.01)
    return MachinePool(adapter, **kwargs)


def test_pool_rejects_non_positive_parallel():
    with pytest.raises(ValueError, match="max_parallel"):
        MachinePool(_CloudStub(), max_parallel=0)


def test_create_many_issues_all_creates_without_waiting():
    names = [f"vm-{i}" for i in range(4)]
    # every create blocks until all four are in flight at once
    adapter = _CloudStub(barrier=threading.Barrier(len(names)))

    machines = _pool(adapter, max_parallel=8).create_many(_specs(*names))

    assert [m.name for m in machines] == names
    assert all(m.state == MachineState.PROVISIONING for m in machines)
    assert all(m.operation is not None for m in machines)
    assert sorted(adapter.created) == names


def test_create_many_returns_empty_on_empty_input():
    adapter = _CloudStub()

    assert _pool(adapter).create_many([]) == []
    assert adapter.created == []


def test_create_many_rejects_duplicate_names():
    with pytest.raises(ValueError, match="Duplicate machine names: vm-0"):
        _pool(_CloudStub()).create_many(_specs("vm-0", "vm-1", "vm-0"))


def test_create_many_surfaces_create_errors_per_machine():
    adapter = _CloudStub(create_errors=("vm-1",))

    machines = _pool(adapter).create_many(_specs("vm-0", "vm-1"))

    assert machines[0].state == MachineState.PROVISIONING
    assert machines[1].state == MachineState.FAILED
    assert "vm-1" in machines[1].error
    assert "quota exceeded" in machines[1].error


def test_await_ready_represents_partial_failure():
    adapter = _CloudStub(fail=("vm-1",))
    pool = _pool(adapter)

    machines = pool.await_ready(pool.create_many(_specs("vm-0", "vm-1", "vm-2")), timeout=5)

    assert [m.state for m in machines] == [
        MachineState.READY,
        MachineState.FAILED,
        MachineState.READY,
    ]
    assert machines[0].endpoint == "10.0.0.2"
    assert machines[0].operation is None
    assert "op-insert-vm-1" in machines[1].error
    assert "ERROR" in machines[1].error
    assert pool.get("vm-1").state == MachineState.FAILED


def test_await_ready_marks_timeouts_failed():
    adapter = _CloudStub(status=OperationStatus.RUNNING)
    pool = _pool(adapter)

    machines = pool.await_ready(pool.create_many(_specs("vm-0")), timeout=0.05)

    assert machines[0].state == MachineState.FAILED
    assert "still RUNNING" in machines[0].error


def test_await_ready_passes_settled_machines_through(ready_machines):
    adapter = _CloudStub()
    machines = ready_machines(2)

    assert _pool(adapter).await_ready(machines, timeout=1) == machines
    assert adapter.operation_calls == 0


def test_concurrent_await_ready_transitions_each_machine_once():
    adapter = _CloudStub()
    pool = _pool(adapter)
    created = pool.create_many(_specs("vm-0"))
    results: list[list[Machine]] = []

    threads = [
        threading.Thread(target=lambda: results.append(pool.await_ready(created, timeout=5)))
        for _ in range(2)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert [r[0].state for r in results] == [MachineState.READY, MachineState.READY]
    assert adapter.operation_calls == 1


def test_stop_many_is_idempotent():
    adapter = _CloudStub()
    pool = _pool(adapter)
    ready = pool.await_ready(pool.create_many(_specs("vm-0")), timeout=5)

    first = pool.stop_many(ready, wait=True, timeout=5)
    second = pool.stop_many(first)

    assert first[0].state == MachineState.STOPPED
    assert second[0].state == MachineState.STOPPED
    assert adapter.deleted == ["vm-0"]


def test_stop_many_flips_to_stopping_without_waiting(ready_machines):
    adapter = _CloudStub()

    stopped = _pool(adapter).stop_many(ready_machines(2))

    assert [m.state for m in stopped] == [MachineState.STOPPING, MachineState.STOPPING]
    assert [m.operation.kind for m in stopped] == [OperationKind.DELETE, OperationKind.DELETE]


def test_stop_many_skips_machines_already_stopping(ready_machines):
    adapter = _CloudStub()
    pool = _pool(adapter)

    pool.stop_many(ready_machines(1))
    pool.stop_many(ready_machines(1))

    assert adapter.deleted == ["vm-0"]


def test_await_stopped_records_delete_errors(ready_machines):
    adapter = _CloudStub(fail=("vm-0",))
    pool = _pool(adapter)

    stopped = pool.await_stopped(pool.stop_many(ready_machines(1)), timeout=5)

    assert stopped[0].state == MachineState.FAILED
    assert "op-delete-vm-0" in stopped[0].error


def test_refresh_marks_reclaimed_and_vanished_machines():
    adapter = _CloudStub()
    pool = _pool(adapter)
    pool.await_ready(pool.create_many(_specs("vm-0", "vm-1")), timeout=5)

    adapter.listed = [
        Machine(name="vm-0", state=MachineState.FAILED, error="instance is TERMINATED"),
        Machine(name="other", state=MachineState.READY, endpoint="10.9.9.9"),
    ]
    pool.refresh()

    assert pool.get("vm-0").state == MachineState.FAILED
    assert pool.get("vm-0").error == "instance is TERMINATED"
    assert pool.get("vm-1").state == MachineState.STOPPED
    assert pool.get("other").endpoint == "10.9.9.9"


def test_stop_many_is_not_held_up_by_a_running_await_ready():
    adapter = _CloudStub(status=OperationStatus.RUNNING)
    pool = _pool(adapter)
    created = pool.create_many(_specs("vm-0"))
    waited: list[list[Machine]] = []
    waiter = threading.Thread(target=lambda: waited.append(pool.await_ready(created, timeout=3)))
    waiter.start()
    assert adapter.polled.wait(timeout=5)

    started = time.monotonic()
    stopped = pool.stop_many(created)
    elapsed = time.monotonic() - started
    waiter.join(timeout=10)

    assert elapsed < 1.0
    assert stopped[0].state == MachineState.STOPPING
    assert adapter.deleted == ["vm-0"]
    # the insert wait must not overwrite the newer delete transition
    assert waited[0][0].state == MachineState.STOPPING
    assert pool.get("vm-0").state == MachineState.STOPPING


def test_await_ready_marks_endpoint_lookup_errors_failed():
    adapter = _CloudStub()
    adapter.list_error = RuntimeError("503 backend unavailable")
    pool = _pool(adapter)

    machines = pool.await_ready(pool.create_many(_specs("vm-0", "vm-1")), timeout=5)

    assert [m.state for m in machines] == [MachineState.FAILED, MachineState.FAILED]
    assert "503 backend unavailable" in machines[0].error
    assert "op-insert-vm-0" in machines[0].error
    assert "op-insert-vm-1" in machines[1].error
