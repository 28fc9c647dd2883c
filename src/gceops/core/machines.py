"""Virtual machine models and the pool that provisions and tears them down.

The MachinePool is the single source of truth for machine lifecycle state.
Create and delete requests are fanned out over a thread pool so that N
machines never wait on each other; the slow part (waiting for the provider
to finish) is done afterwards, again concurrently, by following each
machine's Operation to a terminal state.

Failures are recorded per machine: a batch where some machines come up and
others do not is returned as such, and callers inspect the per-machine state
to decide what to do.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Iterable, Mapping, Protocol

from gceops.core.errors import OperationTimeout, ProvisionError
from gceops.core.operations import (
    Operation,
    OperationKind,
    OperationStatus,
    wait_for_operation,
)

_log = logging.getLogger(__name__)


class MachineState(str, Enum):
    """
    Lifecycle of a machine as tracked by the pool.

    Values:
        PROVISIONING: Create requested, not usable yet.
        READY: Running and reachable at its endpoint.
        STOPPING: Delete requested, not finished yet.
        STOPPED: Deleted, or gone from the provider listing.
        FAILED: A create or delete operation ended in error, or the
                provider stopped the instance (e.g. preemption).
    """

    PROVISIONING = "PROVISIONING"
    READY = "READY"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class MachineSpec:
    """
    Description of a machine to create.

    Attributes:
        name: Unique instance name.
        machine_type: Provider machine type (e.g. ``n1-standard-1``).
        image: Base boot image reference.
        custom_image: Optional image that replaces ``image`` for the boot disk.
        preemptible: Request a preemptible (reclaimable) instance.
        labels: Optional provider labels attached to the instance.
        disk_size_gb: Boot disk size.
    """

    name: str
    machine_type: str
    image: str
    custom_image: str | None = None
    preemptible: bool = False
    labels: Mapping[str, str] | None = None
    disk_size_gb: int = 10

    @property
    def boot_image(self) -> str:
        return self.custom_image or self.image


@dataclass(frozen=True)
class Machine:
    """
    Snapshot of a machine.

    Attributes:
        name: Instance name.
        state: Lifecycle state.
        endpoint: Network address, set once the machine is READY.
        operation: Operation the machine is transitioning on, if any.
        spec: The spec it was created from (None for machines discovered
              through listing).
        error: Diagnostic message when the state is FAILED.
        labels: Provider labels.
        preemptible: Whether the provider may reclaim the instance.
    """

    name: str
    state: MachineState
    endpoint: str | None = None
    operation: Operation | None = None
    spec: MachineSpec | None = None
    error: str | None = None
    labels: Mapping[str, str] | None = None
    preemptible: bool = False

    @property
    def ready(self) -> bool:
        return self.state == MachineState.READY


class CloudAdapter(Protocol):
    """Interface to the cloud provider used by the pool."""

    def create_vm(self, spec: MachineSpec) -> Operation:
        """Request creation of a machine and return the insert operation."""
        ...

    def delete_vm(self, name: str) -> Operation:
        """Request deletion of a machine and return the delete operation."""
        ...

    def get_operation(self, operation: Operation) -> Operation:
        """Return a fresh snapshot of an operation."""
        ...

    def list_vms(self) -> list[Machine]:
        """Return all machines visible in the configured project/zone."""
        ...


class _EndpointLookup:
    """Resolves machine endpoints from provider listings, listing lazily."""

    def __init__(self, adapter: CloudAdapter):
        self._adapter = adapter
        self._lock = threading.Lock()
        self._endpoints: dict[str, str | None] | None = None

    def get(self, name: str) -> str | None:
        with self._lock:
            if self._endpoints is None or not self._endpoints.get(name):
                self._endpoints = {m.name: m.endpoint for m in self._adapter.list_vms()}
            return self._endpoints.get(name)


class MachinePool:
    """
    Provision, track and delete a set of machines.

    Each machine has its own lock. It is held only to read or write the
    registry entry, never across a remote wait, so stop_many is not held up
    by an await_ready on the same machine. A transition is written only if
    the registry still holds the from-state and operation the wait started
    from, and one caller at a time follows a given operation, so concurrent
    waits never transition a machine twice.
    """

    def __init__(
        self,
        adapter: CloudAdapter,
        *,
        max_parallel: int = 16,
        poll_interval: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_parallel < 1:
            raise ValueError("max_parallel must be >= 1")
        self.adapter = adapter
        self.max_parallel = max_parallel
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock
        self._registry: dict[str, Machine] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        # operation id -> set once the caller following it has recorded the outcome
        self._following: dict[str, threading.Event] = {}

    # -- registry -----------------------------------------------------------

    def _lock_for(self, name: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = threading.Lock()
            return lock

    def _current(self, machine: Machine) -> Machine:
        with self._registry_lock:
            return self._registry.setdefault(machine.name, machine)

    def _record(self, machine: Machine) -> Machine:
        with self._registry_lock:
            self._registry[machine.name] = machine
        return machine

    def get(self, name: str) -> Machine | None:
        """Return the current snapshot of a machine, or None if unknown."""
        with self._registry_lock:
            return self._registry.get(name)

    def machines(self) -> list[Machine]:
        """Return snapshots of every machine the pool knows about."""
        with self._registry_lock:
            return list(self._registry.values())

    def _fan_out(self, fn: Callable[[Machine], Machine], machines: list[Machine]) -> list[Machine]:
        if not machines:
            return []
        workers = min(self.max_parallel, len(machines))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(fn, machines))

    # -- create -------------------------------------------------------------

    def create_many(self, specs: Iterable[MachineSpec]) -> list[Machine]:
        """
        Request creation of one machine per spec without waiting for any.

        All create requests are issued concurrently. A spec whose create call
        itself fails is returned as a FAILED machine; the others are
        unaffected.

        Args:
            specs: Machine specs; names must be unique.

        Returns:
            Machines in PROVISIONING (or FAILED) state, in input order.

        Raises:
            ValueError: If two specs share a name or a name is already tracked
                as an active machine.
        """
        specs = list(specs)
        names = [s.name for s in specs]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"Duplicate machine names: {', '.join(dupes)}")
        for name in names:
            known = self.get(name)
            if known is not None and known.state not in (MachineState.STOPPED, MachineState.FAILED):
                raise ValueError(f"Machine '{name}' is already {known.state.value}")
        if not specs:
            return []

        def _create(spec: MachineSpec) -> Machine:
            with self._lock_for(spec.name):
                try:
                    op = self.adapter.create_vm(spec)
                except Exception as exc:  # noqa: BLE001
                    _log.warning("create request for %s failed: %s", spec.name, exc)
                    return self._record(
                        Machine(
                            name=spec.name,
                            state=MachineState.FAILED,
                            spec=spec,
                            error=f"create request for '{spec.name}' failed: {exc}",
                            labels=spec.labels,
                            preemptible=spec.preemptible,
                        )
                    )
                _log.info("create requested for %s (operation %s)", spec.name, op.id)
                return self._record(
                    Machine(
                        name=spec.name,
                        state=MachineState.PROVISIONING,
                        operation=op,
                        spec=spec,
                        labels=spec.labels,
                        preemptible=spec.preemptible,
                    )
                )

        workers = min(self.max_parallel, len(specs))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(_create, specs))

    # -- wait ---------------------------------------------------------------

    def _settle(
        self,
        machine: Machine,
        *,
        from_state: MachineState,
        deadline: float,
        endpoints: _EndpointLookup | None,
    ) -> Machine:
        """Follow a transitioning machine's operation and record the outcome.

        The machine lock is only held to read the starting entry and to write
        the outcome. Callers that find the same operation already followed
        wait for that caller instead of polling it again.
        """
        with self._lock_for(machine.name):
            current = self._current(machine)
            if current.state != from_state or current.operation is None:
                return current
            started = current.operation
            with self._registry_lock:
                following = self._following.get(started.id)
                owner = following is None
                if owner:
                    following = self._following[started.id] = threading.Event()

        if not owner:
            following.wait(max(deadline - self._clock(), 0.0))
            return self.get(current.name) or current

        try:
            settled = self._follow(
                current, from_state=from_state, deadline=deadline, endpoints=endpoints
            )
            with self._lock_for(current.name):
                latest = self._current(current)
                if latest.state != from_state or latest.operation != started:
                    # superseded while we waited, e.g. stop_many on a provisioning machine
                    return latest
                return self._record(settled)
        finally:
            with self._registry_lock:
                self._following.pop(started.id, None)
            following.set()

    def _follow(
        self,
        current: Machine,
        *,
        from_state: MachineState,
        deadline: float,
        endpoints: _EndpointLookup | None,
    ) -> Machine:
        """Wait for ``current``'s operation and return the machine it settles into."""
        remaining = max(deadline - self._clock(), 0.0)
        try:
            op = wait_for_operation(
                self.adapter,
                current.operation,
                timeout=remaining,
                poll_interval=self.poll_interval,
                sleep=self._sleep,
                clock=self._clock,
            )
        except OperationTimeout as exc:
            _log.warning("%s", exc)
            return replace(current, state=MachineState.FAILED, error=str(exc))
        except Exception as exc:  # noqa: BLE001
            _log.warning("polling %s failed: %s", current.name, exc)
            return replace(
                current,
                state=MachineState.FAILED,
                error=(
                    f"polling operation {current.operation.id} for '{current.name}' "
                    f"failed (last status {current.operation.status.value}): {exc}"
                ),
            )

        if op.status == OperationStatus.ERROR:
            if op.kind == OperationKind.INSERT:
                err = str(ProvisionError(current.name, op.id, op.status.value, op.error))
            else:
                err = (
                    f"Deleting '{current.name}' failed (operation {op.id}, "
                    f"status {op.status.value})"
                    + (f": {op.error}" if op.error else "")
                )
            _log.warning("%s", err)
            return replace(current, state=MachineState.FAILED, operation=op, error=err)

        if from_state == MachineState.STOPPING:
            _log.info("%s stopped", current.name)
            return replace(current, state=MachineState.STOPPED, operation=None, endpoint=None)

        try:
            endpoint = endpoints.get(current.name) if endpoints else None
        except Exception as exc:  # noqa: BLE001
            err = (
                f"looking up the endpoint of '{current.name}' failed "
                f"(operation {op.id}, status {op.status.value}): {exc}"
            )
            _log.warning("%s", err)
            return replace(current, state=MachineState.FAILED, operation=op, error=err)
        if not endpoint:
            err = (
                f"'{current.name}' finished provisioning (operation {op.id}, "
                f"status {op.status.value}) but reported no network endpoint"
            )
            _log.warning("%s", err)
            return replace(current, state=MachineState.FAILED, operation=op, error=err)

        _log.info("%s ready at %s", current.name, endpoint)
        return replace(current, state=MachineState.READY, endpoint=endpoint, operation=None)

    def await_ready(self, machines: Iterable[Machine], timeout: float = 600.0) -> list[Machine]:
        """
        Wait for PROVISIONING machines to become READY or FAILED.

        Machines are waited on concurrently under a single deadline. Machines
        that are not PROVISIONING are returned unchanged.

        Args:
            machines: Machines returned by create_many (or snapshots of them).
            timeout: Maximum number of seconds to wait for the whole set.

        Returns:
            Updated machines in input order. Nothing is dropped: check each
            machine's state to detect partial failure.
        """
        machines = list(machines)
        deadline = self._clock() + timeout
        endpoints = _EndpointLookup(self.adapter)
        return self._fan_out(
            lambda m: self._settle(
                m,
                from_state=MachineState.PROVISIONING,
                deadline=deadline,
                endpoints=endpoints,
            ),
            machines,
        )

    def await_stopped(self, machines: Iterable[Machine], timeout: float = 600.0) -> list[Machine]:
        """Wait for STOPPING machines to become STOPPED or FAILED."""
        machines = list(machines)
        deadline = self._clock() + timeout
        return self._fan_out(
            lambda m: self._settle(
                m,
                from_state=MachineState.STOPPING,
                deadline=deadline,
                endpoints=None,
            ),
            machines,
        )

    # -- stop ---------------------------------------------------------------

    def stop_many(
        self,
        machines: Iterable[Machine],
        *,
        wait: bool = False,
        timeout: float = 600.0,
    ) -> list[Machine]:
        """
        Request deletion of machines.

        Machines that are already STOPPED or STOPPING are left alone and no
        new operation is issued for them, so calling this twice is safe.

        Args:
            machines: Machines to stop.
            wait: If True, block until the deletes finish (see await_stopped).
            timeout: Deadline used when ``wait`` is True.

        Returns:
            Updated machines in input order.
        """
        machines = list(machines)

        def _stop(machine: Machine) -> Machine:
            with self._lock_for(machine.name):
                current = self._current(machine)
                if current.state in (MachineState.STOPPED, MachineState.STOPPING):
                    _log.debug("%s already %s", current.name, current.state.value)
                    return current
                try:
                    op = self.adapter.delete_vm(current.name)
                except Exception as exc:  # noqa: BLE001
                    _log.warning("delete request for %s failed: %s", current.name, exc)
                    return self._record(
                        replace(
                            current,
                            state=MachineState.FAILED,
                            error=(
                                f"delete request for '{current.name}' failed "
                                f"(last state {current.state.value}): {exc}"
                            ),
                        )
                    )
                _log.info("delete requested for %s (operation %s)", current.name, op.id)
                return self._record(
                    replace(current, state=MachineState.STOPPING, operation=op, error=None)
                )

        stopped = self._fan_out(_stop, machines)
        if wait:
            return self.await_stopped(stopped, timeout=timeout)
        return stopped

    # -- discovery ----------------------------------------------------------

    def refresh(self) -> list[Machine]:
        """
        Merge the provider's machine listing into the registry.

        Unknown machines are added as reported. A READY machine the provider
        no longer reports as running (for example a reclaimed preemptible
        instance) is marked FAILED, or STOPPED if it is gone entirely.
        """
        listed_by_name = {m.name: m for m in self.adapter.list_vms()}

        for listed in listed_by_name.values():
            with self._lock_for(listed.name):
                known = self.get(listed.name)
                if known is None:
                    self._record(listed)
                elif known.state != MachineState.READY:
                    continue
                elif listed.state == MachineState.READY:
                    if listed.endpoint and listed.endpoint != known.endpoint:
                        self._record(replace(known, endpoint=listed.endpoint))
                elif listed.state != MachineState.PROVISIONING:
                    err = listed.error or f"reported {listed.state.value} by the provider"
                    _log.warning("%s is no longer running: %s", known.name, err)
                    self._record(
                        replace(known, state=MachineState.FAILED, endpoint=None, error=err)
                    )

        for known in self.machines():
            if known.state == MachineState.READY and known.name not in listed_by_name:
                with self._lock_for(known.name):
                    if self.get(known.name) == known:
                        _log.warning("%s disappeared from the provider listing", known.name)
                        self._record(replace(known, state=MachineState.STOPPED, endpoint=None))
        return self.machines()
