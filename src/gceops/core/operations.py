"""Asynchronous cloud operations and the logic that tracks them.

Creating or deleting a virtual machine returns immediately with an
operation handle; the machine is only usable once the provider reports the
operation as finished. This module defines the Operation model and the
polling helpers used to follow an operation to a terminal state. Polling is
explicit and synchronous: nothing here starts threads or registers
callbacks.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Protocol

from gceops.core.errors import OperationTimeout

_log = logging.getLogger(__name__)


class OperationKind(str, Enum):
    """Kind of provider action an operation represents."""

    INSERT = "INSERT"
    DELETE = "DELETE"


class OperationStatus(str, Enum):
    """
    Lifecycle of a provider operation.

    Values:
        PENDING: Accepted by the provider, not started yet.
        RUNNING: In progress.
        DONE: Finished successfully.
        ERROR: Finished with an error.
    """

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    DONE = "DONE"
    ERROR = "ERROR"


TERMINAL_STATUSES = frozenset({OperationStatus.DONE, OperationStatus.ERROR})


def is_terminal(status: OperationStatus) -> bool:
    """Return True if the status is DONE or ERROR."""
    return status in TERMINAL_STATUSES


@dataclass(frozen=True)
class Operation:
    """
    Snapshot of a provider operation.

    Attributes:
        id: Provider identifier of the operation.
        target: Name of the resource the operation acts on.
        kind: INSERT for creates, DELETE for deletes.
        status: Last known status.
        started_at: When the operation started (provider time when known).
        ended_at: When the operation ended; only set once terminal.
        error: Provider error message when the status is ERROR.
    """

    id: str
    target: str
    kind: OperationKind
    status: OperationStatus = OperationStatus.PENDING
    started_at: datetime | None = None
    ended_at: datetime | None = None
    error: str | None = None

    @property
    def terminal(self) -> bool:
        return is_terminal(self.status)


class OperationsAdapter(Protocol):
    """Interface for querying operation status from the provider."""

    def get_operation(self, operation: Operation) -> Operation:
        """Return a fresh snapshot of the given operation."""
        ...


def poll_operation(adapter: OperationsAdapter, operation: Operation) -> Operation:
    """
    Query the current status of an operation once.

    Args:
        adapter: Provider adapter used to fetch the operation.
        operation: Operation snapshot to refresh.

    Returns:
        An updated Operation value. The input value is left untouched.
    """
    updated = adapter.get_operation(operation)
    if updated.status != operation.status:
        _log.debug(
            "operation %s on %s: %s -> %s",
            operation.id,
            operation.target,
            operation.status.value,
            updated.status.value,
        )
    return updated


def wait_for_operation(
    adapter: OperationsAdapter,
    operation: Operation,
    *,
    timeout: float,
    poll_interval: float = 5.0,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Operation:
    """
    Block until an operation reaches DONE or ERROR.

    An operation that already is terminal is returned as-is without a remote
    call. An ERROR result is returned, not raised: the caller decides what a
    failed operation means for its resource.

    Args:
        adapter: Provider adapter used to fetch the operation.
        operation: Operation to follow.
        timeout: Maximum number of seconds to wait.
        poll_interval: Seconds to sleep between status checks.
        sleep: Sleep function (injectable for tests).
        clock: Monotonic clock (injectable for tests).

    Returns:
        The terminal Operation.

    Raises:
        OperationTimeout: If the deadline passes while the operation is still
            PENDING or RUNNING.
    """
    if poll_interval <= 0:
        raise ValueError("poll_interval must be > 0")

    deadline = clock() + timeout
    current = operation

    while not current.terminal:
        current = poll_operation(adapter, current)
        if current.terminal:
            break

        remaining = deadline - clock()
        if remaining <= 0:
            raise OperationTimeout(
                current.id, current.target, current.status.value, timeout
            )
        sleep(min(poll_interval, remaining))

    return current
