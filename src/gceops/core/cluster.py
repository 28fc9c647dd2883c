"""Cluster handles: a fixed set of READY machines plus how to run work on them.

A ClusterHandle is an immutable value. It is built once from machines that
are READY at that moment and then shared, read-only, by every batch of work
dispatched to it. Growing or shrinking a cluster means assembling a new
handle; there is no process-wide "current cluster".
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator

from gceops.core.errors import AssemblyError
from gceops.core.machines import Machine, MachineState

DEFAULT_LAUNCH_COMMAND = "docker run -i --rm {image} python -m gceops.remote"


@dataclass(frozen=True)
class ExecConfig:
    """
    Remote execution configuration shared by all cluster members.

    Attributes:
        image: Container image the worker runs in.
        launch_command: Command template started on the member for each work
                        item; ``{image}`` is substituted with ``image``.
        ssh_user: Remote user to connect as.
        ssh_key_file: Optional private key used for the connection.
    """

    image: str
    launch_command: str = DEFAULT_LAUNCH_COMMAND
    ssh_user: str | None = None
    ssh_key_file: str | None = None

    def render_command(self) -> str:
        """Return the launch command with the image substituted."""
        return self.launch_command.format(image=self.image)


@dataclass(frozen=True)
class ClusterHandle:
    """Immutable view of the machines work is dispatched to."""

    members: tuple[Machine, ...]
    exec_config: ExecConfig

    def member_count(self) -> int:
        return len(self.members)

    def member(self, i: int) -> Machine:
        return self.members[i]

    def __len__(self) -> int:
        return len(self.members)

    def __iter__(self) -> Iterator[Machine]:
        return iter(self.members)

    def replace_members(self, machines: Iterable[Machine]) -> ClusterHandle:
        """Assemble a new handle with other machines and the same config."""
        return assemble(machines, self.exec_config)


def assemble(machines: Iterable[Machine], exec_config: ExecConfig) -> ClusterHandle:
    """
    Build a cluster handle from READY machines.

    Args:
        machines: Machines that will become the cluster members, in order.
        exec_config: How work is launched on each member.

    Returns:
        A new ClusterHandle.

    Raises:
        AssemblyError: If no machines are given or any machine is not READY.
    """
    members = tuple(machines)
    if not members:
        raise AssemblyError("Cannot assemble a cluster without machines")

    not_ready = [(m.name, m.state.value) for m in members if m.state != MachineState.READY]
    if not_ready:
        raise AssemblyError("Cluster members must be READY", not_ready)

    names = [m.name for m in members]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise AssemblyError(
            "Cluster members must be distinct", [(n, "duplicate") for n in dupes]
        )

    return ClusterHandle(members=members, exec_config=exec_config)
