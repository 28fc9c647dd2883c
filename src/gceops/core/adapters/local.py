from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor

from gceops.core.cluster import ExecConfig
from gceops.core.machines import Machine
from gceops.core.work import Outcome, WorkItem, execute_payload, load_outcome


class LocalTransport:
    """Runs work items in a local thread pool.

    Items go through the same serialize, execute, deserialize round trip as
    on a remote member, which makes this useful for dry runs of a batch.
    """

    def __init__(self, max_workers: int = 4):
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self._pool = ThreadPoolExecutor(max_workers=max_workers)

    def send(self, machine: Machine, item: WorkItem, config: ExecConfig) -> Future:
        return self._pool.submit(execute_payload, item.payload())

    def poll(self, handle: Future) -> Outcome | None:
        if not handle.done():
            return None
        return load_outcome(handle.result())

    def close(self) -> None:
        self._pool.shutdown(wait=True)

    def __enter__(self) -> LocalTransport:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
