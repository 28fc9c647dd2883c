from __future__ import annotations

import logging
import subprocess
import tempfile
from dataclasses import dataclass
from typing import IO, Sequence

from gceops.core.cluster import ExecConfig
from gceops.core.errors import TaskFailed, TransportLost
from gceops.core.machines import Machine
from gceops.core.work import Outcome, WorkItem, load_outcome

_log = logging.getLogger(__name__)

# ssh reports its own connection failures with this exit status
_SSH_CONNECTION_ERROR = 255

_DEFAULT_OPTIONS = (
    "-o",
    "BatchMode=yes",
    "-o",
    "StrictHostKeyChecking=accept-new",
    "-o",
    "ServerAliveInterval=15",
    "-o",
    "ServerAliveCountMax=4",
)


@dataclass
class SSHHandle:
    """A work item running on a member through one ssh process."""

    machine: str
    process: subprocess.Popen
    stdout: IO[bytes]
    stderr: IO[bytes]


class SSHTransport:
    """Runs work items with ``ssh <member> <launch command>``.

    The serialized item is written to the remote command's stdin and the
    serialized Outcome is read back from its stdout. Output is buffered in
    temporary files so a chatty worker cannot stall on a full pipe.
    """

    def __init__(
        self,
        ssh_binary: str = "ssh",
        *,
        connect_timeout: int = 30,
        options: Sequence[str] = _DEFAULT_OPTIONS,
    ):
        self.ssh_binary = ssh_binary
        self.connect_timeout = connect_timeout
        self.options = list(options)

    def build_command(self, machine: Machine, config: ExecConfig) -> list[str]:
        """Return the ssh argv used to run one item on a member."""
        if not machine.endpoint:
            raise TransportLost(f"'{machine.name}' has no endpoint (state {machine.state.value})")
        cmd = [self.ssh_binary, *self.options, "-o", f"ConnectTimeout={self.connect_timeout}"]
        if config.ssh_key_file:
            cmd += ["-i", config.ssh_key_file]
        host = f"{config.ssh_user}@{machine.endpoint}" if config.ssh_user else machine.endpoint
        cmd += [host, config.render_command()]
        return cmd

    def send(self, machine: Machine, item: WorkItem, config: ExecConfig) -> SSHHandle:
        """Start the worker on the member and feed it the item."""
        cmd = self.build_command(machine, config)
        stdout = tempfile.TemporaryFile()
        stderr = tempfile.TemporaryFile()
        try:
            process = subprocess.Popen(
                cmd, stdin=subprocess.PIPE, stdout=stdout, stderr=stderr
            )
        except OSError as exc:
            stdout.close()
            stderr.close()
            raise TransportLost(f"cannot start ssh to '{machine.name}': {exc}") from exc

        try:
            process.stdin.write(item.payload())
            process.stdin.close()
        except BrokenPipeError:
            # the exit status is picked up by poll()
            _log.debug("ssh to %s closed stdin early", machine.name)

        return SSHHandle(machine=machine.name, process=process, stdout=stdout, stderr=stderr)

    def poll(self, handle: SSHHandle) -> Outcome | None:
        """Return the Outcome once the ssh process exited, else None."""
        rc = handle.process.poll()
        if rc is None:
            return None

        try:
            handle.stdout.seek(0)
            data = handle.stdout.read()
            handle.stderr.seek(0)
            err = handle.stderr.read().decode(errors="replace").strip()
        finally:
            handle.stdout.close()
            handle.stderr.close()

        if rc == _SSH_CONNECTION_ERROR:
            raise TransportLost(
                f"connection to '{handle.machine}' lost (exit status {rc}): {err[-500:]}"
            )
        if not data:
            raise TaskFailed(
                f"worker on '{handle.machine}' exited with status {rc} without a result: "
                f"{err[-500:]}"
            )
        try:
            return load_outcome(data)
        except Exception as exc:  # noqa: BLE001
            raise TaskFailed(
                f"worker on '{handle.machine}' returned unreadable output "
                f"(exit status {rc}): {exc}"
            ) from exc
