"""Future results and the helpers used to wait for them.

A FutureResult is created PENDING by the dispatcher for every work item and
resolved exactly once, to RESOLVED (with a value) or FAILED (with an error),
by the dispatcher's completion path. After that it never changes.

Waiting is local only: a timeout stops the caller from waiting but does not
cancel the work already sent to a cluster member.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable, Sequence

from gceops.core.errors import AwaitTimeout, BatchFailed, TaskFailed, TransportLost

if TYPE_CHECKING:
    from gceops.core.work import WorkItem


class FutureState(str, Enum):
    """State of a FutureResult."""

    PENDING = "PENDING"
    RESOLVED = "RESOLVED"
    FAILED = "FAILED"


class FutureResult:
    """Placeholder for the outcome of one dispatched work item."""

    def __init__(self, index: int, item: WorkItem):
        self.index = index
        self.item = item
        self.member: str | None = None
        self.attempts = 0
        self._state = FutureState.PENDING
        self._value: Any = None
        self._error: TaskFailed | None = None
        self._lock = threading.Lock()
        self._done = threading.Event()

    def __repr__(self) -> str:
        return (
            f"FutureResult(index={self.index}, state={self._state.value}, "
            f"member={self.member!r})"
        )

    @property
    def state(self) -> FutureState:
        return self._state

    @property
    def value(self) -> Any:
        return self._value

    @property
    def error(self) -> TaskFailed | None:
        return self._error

    def _assigned(self, member: str) -> None:
        self.member = member
        self.attempts += 1

    def _transition(self, state: FutureState, value: Any, error: TaskFailed | None) -> None:
        with self._lock:
            if self._state != FutureState.PENDING:
                raise RuntimeError(
                    f"FutureResult {self.index} already {self._state.value}"
                )
            self._value = value
            self._error = error
            self._state = state
        self._done.set()

    def set_result(self, value: Any) -> None:
        self._transition(FutureState.RESOLVED, value, None)

    def set_error(self, error: TaskFailed) -> None:
        self._transition(FutureState.FAILED, None, error)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until resolved or timeout; return True if resolved."""
        return self._done.wait(timeout)


def resolved(future: FutureResult) -> bool:
    """Return True if the future is no longer PENDING. Never blocks."""
    return future.state != FutureState.PENDING


def await_result(future: FutureResult, timeout: float | None = None) -> Any:
    """
    Wait for a single future and return its value.

    Args:
        future: Future to wait on.
        timeout: Seconds to wait, or None to wait indefinitely.

    Returns:
        The value produced by the work item.

    Raises:
        TaskFailed: The work item failed (TransportLost if its member was lost).
        AwaitTimeout: The future was still PENDING at the deadline.
    """
    if not future.wait(timeout):
        raise AwaitTimeout(
            f"item {future.index} on '{future.member}' still {future.state.value} "
            f"after {timeout:g}s (remote work is not cancelled)",
            pending=[future.index],
        )
    if future.state == FutureState.FAILED:
        assert future.error is not None
        raise future.error
    return future.value


def await_all(
    futures: Sequence[FutureResult],
    timeout: float | None = None,
    *,
    aggregate: bool = False,
) -> list[Any]:
    """
    Wait for every future of a batch and return their values in order.

    All futures are waited on under one deadline, even after one of them
    has failed, so that every item gets its outcome.

    Args:
        futures: Futures returned by a dispatch call.
        timeout: Seconds to wait for the whole batch, or None.
        aggregate: If True, raise a BatchFailed carrying every failure and
                   the partial results instead of the first failure.

    Returns:
        The values, in the same order as ``futures``.

    Raises:
        TaskFailed: The first failed item, in input order.
        BatchFailed: When ``aggregate`` is True and at least one item failed.
        AwaitTimeout: Some futures were still PENDING at the deadline.
    """
    deadline = None if timeout is None else time.monotonic() + timeout
    for f in futures:
        remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
        f.wait(remaining)

    pending = [f.index for f in futures if f.state == FutureState.PENDING]
    if pending:
        raise AwaitTimeout(
            f"{len(pending)} of {len(futures)} item(s) still PENDING after "
            f"{timeout:g}s: {pending} (remote work is not cancelled)",
            pending=pending,
        )

    failures = [f.error for f in futures if f.state == FutureState.FAILED]
    if failures:
        if aggregate:
            raise BatchFailed(failures, [f.value for f in futures])
        raise failures[0]

    return [f.value for f in futures]


@dataclass(frozen=True)
class BatchSummary:
    """Counts of a batch's futures by state."""

    total: int
    resolved: int
    failed: int
    pending: int
    lost: tuple[int, ...]


def summarize(futures: Iterable[FutureResult]) -> BatchSummary:
    """Count futures by state and list the indices lost with their member."""
    futures = list(futures)
    return BatchSummary(
        total=len(futures),
        resolved=sum(1 for f in futures if f.state == FutureState.RESOLVED),
        failed=sum(1 for f in futures if f.state == FutureState.FAILED),
        pending=sum(1 for f in futures if f.state == FutureState.PENDING),
        lost=tuple(f.index for f in futures if isinstance(f.error, TransportLost)),
    )
