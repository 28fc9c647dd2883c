"""Error kinds raised by the orchestration core.

Every error that reaches a caller carries the identifier of the Operation,
Machine or work item it is about plus the last status that was observed, so
a single line of output is enough to start diagnosing a failure.
"""

from __future__ import annotations

from typing import Any, Sequence


class GceopsError(RuntimeError):
    """Base class for all gceops errors."""


class ProvisionError(GceopsError):
    """Raised when a create operation for a machine reached ERROR."""

    def __init__(self, machine: str, operation_id: str, status: str, detail: str | None = None):
        self.machine = machine
        self.operation_id = operation_id
        self.status = status
        self.detail = detail
        msg = f"Provisioning of '{machine}' failed (operation {operation_id}, status {status})"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class OperationTimeout(GceopsError):
    """Raised when an operation did not reach a terminal state in time."""

    def __init__(self, operation_id: str, target: str, status: str, timeout: float):
        self.operation_id = operation_id
        self.target = target
        self.status = status
        self.timeout = timeout
        super().__init__(
            f"Operation {operation_id} on '{target}' still {status} after {timeout:g}s"
        )


class AssemblyError(GceopsError):
    """Raised when a cluster is assembled from an empty or non-READY machine set."""

    def __init__(self, message: str, offenders: Sequence[tuple[str, str]] = ()):
        self.offenders = list(offenders)
        if self.offenders:
            listed = ", ".join(f"{name} ({state})" for name, state in self.offenders)
            message = f"{message}: {listed}"
        super().__init__(message)


class TaskFailed(GceopsError):
    """
    Raised when a work item failed remotely.

    Attributes:
        index: Position of the work item in its dispatch batch.
        member: Name of the machine the item ran on (if known).
        error_type: Qualified name of the remote exception type.
        remote_traceback: Formatted traceback captured by the worker.
    """

    retryable = False

    def __init__(
        self,
        message: str,
        *,
        index: int | None = None,
        member: str | None = None,
        error_type: str | None = None,
        remote_traceback: str | None = None,
    ):
        self.index = index
        self.member = member
        self.error_type = error_type
        self.remote_traceback = remote_traceback
        prefix = []
        if index is not None:
            prefix.append(f"item {index}")
        if member:
            prefix.append(f"on '{member}'")
        if prefix:
            message = f"{' '.join(prefix)}: {message}"
        super().__init__(message)


class TransportLost(TaskFailed):
    """Raised when a machine became unreachable while running a work item.

    Preemptible machines can be reclaimed at any time, so this is a retryable
    condition: the item can be dispatched again.
    """

    retryable = True


class AwaitTimeout(GceopsError):
    """Raised when a local wait for results passed its deadline.

    The remote work is not cancelled; it may still complete.
    """

    def __init__(self, message: str, pending: Sequence[int] = ()):
        self.pending = list(pending)
        super().__init__(message)


class SerializationError(GceopsError, ValueError):
    """Raised when a work item cannot be serialized for remote execution."""


class BatchFailed(GceopsError):
    """Aggregate of every failure in a batch, with the partial results."""

    def __init__(self, failures: Sequence[TaskFailed], results: Sequence[Any]):
        self.failures = list(failures)
        self.results = list(results)
        super().__init__(
            f"{len(self.failures)} of {len(self.results)} work item(s) failed; "
            f"first: {self.failures[0]}"
        )
