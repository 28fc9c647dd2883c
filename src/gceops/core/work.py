"""Work items and the serialized round trip used to execute them remotely.

A WorkItem is one call to run on a cluster member. It is one of two kinds:

- REFERENCE: an importable ``module:qualname`` string. The worker imports
  the function itself, so only the arguments travel over the wire.
- CLOSURE: a callable serialized with cloudpickle (lambdas, nested
  functions, functions defined in ``__main__``).

Serializability is checked when the item is dispatched, not when it runs:
``payload()`` serializes the whole item once and raises SerializationError
if that is not possible.
"""

from __future__ import annotations

import importlib
import sys
import traceback
from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from typing import Any, Callable, Mapping

import cloudpickle

from gceops.core.errors import SerializationError, TaskFailed


class WorkKind(str, Enum):
    """How the callable of a work item is carried."""

    REFERENCE = "REFERENCE"
    CLOSURE = "CLOSURE"


def _reference_for(fn: Callable[..., Any]) -> str | None:
    """Return ``module:qualname`` if fn can be re-imported by name, else None."""
    module = getattr(fn, "__module__", None)
    qualname = getattr(fn, "__qualname__", None)
    if not module or not qualname or module == "__main__" or "<" in qualname:
        return None

    obj: Any = sys.modules.get(module)
    for part in qualname.split("."):
        obj = getattr(obj, part, None)
        if obj is None:
            return None
    return f"{module}:{qualname}" if obj is fn else None


def _import_reference(ref: str) -> Callable[..., Any]:
    module_name, _, qualname = ref.partition(":")
    obj: Any = importlib.import_module(module_name)
    for part in qualname.split("."):
        obj = getattr(obj, part)
    if not callable(obj):
        raise TypeError(f"'{ref}' is not callable")
    return obj


@dataclass(frozen=True, eq=False)
class WorkItem:
    """
    One unit of work: a callable plus its arguments.

    Use ``WorkItem.of`` to build one from a Python callable, or
    ``WorkItem.reference`` when only the import path is known. Items compare
    and hash by identity, so they can key dicts and sets whatever their
    arguments hold.
    """

    kind: WorkKind
    target: str | bytes
    args: tuple[Any, ...] = ()
    kwargs: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def of(cls, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> WorkItem:
        """Build a work item, preferring an import reference over pickling."""
        if not callable(fn):
            raise TypeError(f"Work item target must be callable, got {type(fn).__name__}")

        ref = _reference_for(fn)
        if ref is not None:
            return cls(WorkKind.REFERENCE, ref, tuple(args), dict(kwargs))

        try:
            blob = cloudpickle.dumps(fn)
        except Exception as exc:  # cloudpickle raises a wide range of types
            raise SerializationError(
                f"Cannot serialize callable {getattr(fn, '__qualname__', fn)!r}: {exc}"
            ) from exc
        return cls(WorkKind.CLOSURE, blob, tuple(args), dict(kwargs))

    @classmethod
    def reference(cls, ref: str, *args: Any, **kwargs: Any) -> WorkItem:
        """Build a work item from a ``module:qualname`` string."""
        module_name, sep, qualname = ref.partition(":")
        if not sep or not module_name or not qualname:
            raise ValueError(f"Invalid function reference '{ref}' (expected module:function)")
        return cls(WorkKind.REFERENCE, ref, tuple(args), dict(kwargs))

    @property
    def label(self) -> str:
        """Short human-readable name of the callable."""
        if self.kind == WorkKind.REFERENCE:
            return str(self.target)
        return "<closure>"

    @cached_property
    def _payload(self) -> bytes:
        try:
            return cloudpickle.dumps(
                (self.kind.value, self.target, self.args, dict(self.kwargs))
            )
        except Exception as exc:
            raise SerializationError(
                f"Cannot serialize arguments of work item {self.label}: {exc}"
            ) from exc

    def payload(self) -> bytes:
        """Return the serialized item (computed once)."""
        return self._payload

    @classmethod
    def from_payload(cls, payload: bytes) -> WorkItem:
        kind, target, args, kwargs = cloudpickle.loads(payload)
        return cls(WorkKind(kind), target, tuple(args), dict(kwargs))

    def resolve(self) -> Callable[..., Any]:
        """Return the callable this item runs."""
        if self.kind == WorkKind.REFERENCE:
            return _import_reference(str(self.target))
        return cloudpickle.loads(self.target)

    def run(self) -> Any:
        return self.resolve()(*self.args, **dict(self.kwargs))


@dataclass(frozen=True)
class Outcome:
    """
    Result of executing a work item, as sent back by a worker.

    Attributes:
        ok: True if the callable returned normally.
        value: Return value when ``ok``.
        error_type: Qualified exception type name when not ``ok``.
        error_message: Exception message when not ``ok``.
        traceback: Formatted remote traceback when not ``ok``.
    """

    ok: bool
    value: Any = None
    error_type: str | None = None
    error_message: str | None = None
    traceback: str | None = None

    @classmethod
    def failure(cls, exc: BaseException) -> Outcome:
        kind = type(exc)
        return cls(
            ok=False,
            error_type=f"{kind.__module__}.{kind.__qualname__}",
            error_message=str(exc),
            traceback="".join(traceback.format_exception(kind, exc, exc.__traceback__)),
        )

    def to_error(self, *, index: int | None = None, member: str | None = None) -> TaskFailed:
        """Convert a failing outcome into a TaskFailed error."""
        message = self.error_type or "error"
        if self.error_message:
            message = f"{message}: {self.error_message}"
        return TaskFailed(
            message,
            index=index,
            member=member,
            error_type=self.error_type,
            remote_traceback=self.traceback,
        )


def execute_payload(payload: bytes) -> bytes:
    """
    Run a serialized work item and return the serialized Outcome.

    Exceptions raised by the work itself (or by loading it) become failing
    outcomes; the caller only has to ship bytes back.
    """
    try:
        outcome = Outcome(ok=True, value=WorkItem.from_payload(payload).run())
    except Exception as exc:  # noqa: BLE001
        outcome = Outcome.failure(exc)

    try:
        return cloudpickle.dumps(outcome)
    except Exception as exc:  # noqa: BLE001
        return cloudpickle.dumps(
            Outcome.failure(SerializationError(f"Cannot serialize result: {exc}"))
        )


def load_outcome(data: bytes) -> Outcome:
    outcome = cloudpickle.loads(data)
    if not isinstance(outcome, Outcome):
        raise TypeError(f"Expected an Outcome, got {type(outcome).__name__}")
    return outcome
