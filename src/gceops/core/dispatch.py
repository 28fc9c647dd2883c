"""Dispatch of work items across the members of a cluster.

Items are assigned round-robin: item ``i`` goes to member ``i % n``. Each
member has at most ``max_outstanding_per_member`` items in flight across
every batch the dispatcher runs; the rest queue behind it in input order,
so a slow member never accumulates an unbounded amount of sent work. Nothing is rejected for volume.

``dispatch`` sends whatever fits immediately and returns one FutureResult
per item, in input order. A pump thread owned by the batch then polls the
transport, resolves futures as outcomes arrive and feeds queued items into
freed slots. Resolution order follows completion, not input order.

Each item is sent exactly once per dispatch call. When a member becomes
unreachable (TransportLost, e.g. a reclaimed preemptible machine) the item's
future fails with TransportLost and the caller decides whether to dispatch
it again (see ``lost_items``). Setting ``redispatch_lost`` makes the
dispatcher re-send such items to the next member itself, up to that many
times per item.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any, Iterable, Protocol, Sequence

from gceops.core.cluster import ClusterHandle, ExecConfig
from gceops.core.errors import TaskFailed, TransportLost
from gceops.core.machines import Machine
from gceops.core.results import FutureResult, FutureState, resolved
from gceops.core.work import Outcome, WorkItem

_log = logging.getLogger(__name__)


class Transport(Protocol):
    """Interface to the channel that runs work items on cluster members."""

    def send(self, machine: Machine, item: WorkItem, config: ExecConfig) -> Any:
        """Start running an item on a machine and return an opaque handle."""
        ...

    def poll(self, handle: Any) -> Outcome | None:
        """Return the Outcome for a handle, or None while still running."""
        ...


class _Slots:
    """In-flight counts per member name, shared by every batch of a dispatcher."""

    def __init__(self, limit: int):
        self.limit = limit
        self._counts: dict[str, int] = {}
        self._lock = threading.Lock()

    def acquire(self, member: str) -> bool:
        with self._lock:
            if self._counts.get(member, 0) >= self.limit:
                return False
            self._counts[member] = self._counts.get(member, 0) + 1
            return True

    def release(self, member: str) -> None:
        with self._lock:
            self._counts[member] -= 1


class _Batch:
    """Per-dispatch scheduling state; only its pump thread writes futures."""

    def __init__(
        self,
        transport: Transport,
        cluster: ClusterHandle,
        futures: list[FutureResult],
        *,
        slots: _Slots,
        poll_interval: float,
        redispatch_lost: int,
    ):
        self.transport = transport
        self.cluster = cluster
        self.futures = futures
        self.slots = slots
        self.poll_interval = poll_interval
        self.redispatch_lost = redispatch_lost

        n = cluster.member_count()
        self.queues: list[deque[FutureResult]] = [deque() for _ in range(n)]
        for f in futures:
            self.queues[f.index % n].append(f)
        self.inflight: list[list[tuple[FutureResult, Any]]] = [[] for _ in range(n)]

        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._finished = threading.Event()

    # -- scheduling ---------------------------------------------------------

    def _busy(self) -> bool:
        return any(self.queues) or any(self.inflight)

    def _fill(self) -> None:
        """Send queued items into free slots, visiting members in turn."""
        sent = True
        while sent:
            sent = False
            for m, queue in enumerate(self.queues):
                if queue and self.slots.acquire(self.cluster.member(m).name):
                    self._send(m, queue.popleft())
                    sent = True

    def _send(self, m: int, future: FutureResult) -> None:
        machine = self.cluster.member(m)
        future._assigned(machine.name)
        _log.debug("sending item %d to %s (attempt %d)", future.index, machine.name, future.attempts)
        try:
            handle = self.transport.send(machine, future.item, self.cluster.exec_config)
        except TransportLost as exc:
            self.slots.release(machine.name)
            self._lost(m, future, exc)
            return
        except Exception as exc:  # noqa: BLE001
            self.slots.release(machine.name)
            future.set_error(
                TaskFailed(f"send failed: {exc}", index=future.index, member=machine.name)
            )
            return
        self.inflight[m].append((future, handle))

    def _lost(self, m: int, future: FutureResult, exc: Exception) -> None:
        if future.attempts <= self.redispatch_lost:
            nxt = (m + 1) % self.cluster.member_count()
            _log.warning(
                "item %d lost on %s (%s); redispatching to %s",
                future.index,
                future.member,
                exc,
                self.cluster.member(nxt).name,
            )
            self.queues[nxt].appendleft(future)
            return
        _log.warning("item %d lost on %s: %s", future.index, future.member, exc)
        future.set_error(TransportLost(str(exc), index=future.index, member=future.member))

    def _release(self, m: int) -> None:
        self.slots.release(self.cluster.member(m).name)

    def _poll_once(self) -> bool:
        """Poll every in-flight handle once; return True if any completed."""
        progressed = False
        for m, inflight in enumerate(self.inflight):
            for entry in list(inflight):
                future, handle = entry
                try:
                    outcome = self.transport.poll(handle)
                except TransportLost as exc:
                    inflight.remove(entry)
                    self._release(m)
                    self._lost(m, future, exc)
                    progressed = True
                    continue
                except Exception as exc:  # noqa: BLE001
                    inflight.remove(entry)
                    self._release(m)
                    future.set_error(
                        TaskFailed(f"poll failed: {exc}", index=future.index, member=future.member)
                    )
                    progressed = True
                    continue

                if outcome is None:
                    continue

                inflight.remove(entry)
                self._release(m)
                progressed = True
                if outcome.ok:
                    future.set_result(outcome.value)
                else:
                    future.set_error(outcome.to_error(index=future.index, member=future.member))
        return progressed

    # -- lifecycle ----------------------------------------------------------

    def start(self) -> None:
        self._fill()
        if not self._busy():
            self._finished.set()
            return
        self._thread = threading.Thread(
            target=self._run, name="gceops-dispatch", daemon=True
        )
        self._thread.start()

    def _run(self) -> None:
        try:
            self._pump()
        finally:
            self._finished.set()

    def _pump(self) -> None:
        while not self._stop.is_set():
            progressed = self._poll_once()
            self._fill()
            if not self._busy():
                break
            if not progressed:
                self._stop.wait(self.poll_interval)

        summary = {s: 0 for s in FutureState}
        for f in self.futures:
            summary[f.state] += 1
        _log.info(
            "batch of %d finished: %d resolved, %d failed",
            len(self.futures),
            summary[FutureState.RESOLVED],
            summary[FutureState.FAILED],
        )

    @property
    def finished(self) -> bool:
        """True once every item settled or the pump stopped."""
        return self._finished.is_set()

    def stop(self) -> None:
        """Stop the pump and fail whatever is still pending."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
        for m, inflight in enumerate(self.inflight):
            for _ in inflight:
                self._release(m)
            inflight.clear()
        for f in self.futures:
            if not resolved(f):
                f.set_error(
                    TaskFailed(
                        "dispatcher shut down before the item completed",
                        index=f.index,
                        member=f.member,
                    )
                )


class TaskDispatcher:
    """
    Distribute work items across a cluster and hand back futures.

    Args:
        transport: Channel used to run items on cluster members.
        max_outstanding_per_member: Items a member may have in flight.
        poll_interval: Seconds between transport polls when nothing completed.
        redispatch_lost: How many times an item lost with its member is sent
            to another member automatically. 0 leaves redispatch to the caller.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        max_outstanding_per_member: int = 2,
        poll_interval: float = 0.5,
        redispatch_lost: int = 0,
    ):
        if max_outstanding_per_member < 1:
            raise ValueError("max_outstanding_per_member must be >= 1")
        if poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")
        if redispatch_lost < 0:
            raise ValueError("redispatch_lost must be >= 0")
        self.transport = transport
        self.max_outstanding_per_member = max_outstanding_per_member
        self.poll_interval = poll_interval
        self.redispatch_lost = redispatch_lost
        self._slots = _Slots(max_outstanding_per_member)
        self._batches: list[_Batch] = []
        self._lock = threading.Lock()

    def dispatch(self, cluster: ClusterHandle, items: Iterable[WorkItem]) -> list[FutureResult]:
        """
        Send work items to the cluster.

        Args:
            cluster: Cluster to run on; shared read-only.
            items: Work items; each is checked for serializability before
                   anything is sent.

        Returns:
            One FutureResult per item, in input order.

        Raises:
            SerializationError: If any item cannot be serialized. No item is
                sent in that case.
        """
        items = list(items)
        for item in items:
            item.payload()
        if not items:
            return []

        futures = [FutureResult(i, item) for i, item in enumerate(items)]
        batch = _Batch(
            self.transport,
            cluster,
            futures,
            slots=self._slots,
            poll_interval=self.poll_interval,
            redispatch_lost=self.redispatch_lost,
        )
        with self._lock:
            self._batches = [b for b in self._batches if not b.finished]
            self._batches.append(batch)
        _log.info(
            "dispatching %d item(s) over %d member(s)", len(items), cluster.member_count()
        )
        batch.start()
        return futures

    def shutdown(self) -> None:
        """Stop all pump threads; pending futures fail with TaskFailed.

        Remote work already sent is not cancelled.
        """
        with self._lock:
            batches, self._batches = self._batches, []
        for batch in batches:
            batch.stop()

    def __enter__(self) -> TaskDispatcher:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()


def lost_items(futures: Sequence[FutureResult]) -> list[WorkItem]:
    """Return the items whose futures failed because their member was lost."""
    return [f.item for f in futures if isinstance(f.error, TransportLost)]
