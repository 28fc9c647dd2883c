"""Runtime settings read from ``GCEOPS_*`` environment variables.

Malformed numeric values fall back to the defaults instead of failing, so a
typo in the environment never prevents tearing a cluster down.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from gceops.core.cluster import DEFAULT_LAUNCH_COMMAND

_PREFIX = "GCEOPS_"


def _env_int(env: Mapping[str, str], key: str, default: int, *, minimum: int = 0) -> int:
    raw = env.get(_PREFIX + key)
    if raw is None:
        return default
    try:
        return max(int(raw), minimum)
    except ValueError:
        return default


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(_PREFIX + key)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_str(env: Mapping[str, str], key: str, default: str | None = None) -> str | None:
    raw = env.get(_PREFIX + key, "").strip()
    return raw or default


@dataclass(frozen=True)
class Settings:
    """
    Settings shared by the library entry points and the CLI.

    Attributes:
        project: Google Cloud project (None: use the credentials' project).
        zone: Compute Engine zone.
        poll_interval: Seconds between operation status checks.
        operation_timeout: Seconds to wait for machines to become READY/STOPPED.
        max_parallel: Concurrent create/delete requests.
        ssh_user: Remote user for the SSH transport.
        ssh_key_file: Private key for the SSH transport.
        launch_command: Worker launch command template.
        max_outstanding_per_member: Items in flight per cluster member.
        task_poll_interval: Seconds between transport polls.
    """

    project: str | None = None
    zone: str | None = None
    poll_interval: float = 5.0
    operation_timeout: float = 600.0
    max_parallel: int = 16
    ssh_user: str | None = None
    ssh_key_file: str | None = None
    launch_command: str = DEFAULT_LAUNCH_COMMAND
    max_outstanding_per_member: int = 2
    task_poll_interval: float = 0.5

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        """Build settings from the environment (``os.environ`` by default)."""
        env = os.environ if env is None else env
        defaults = cls()
        return cls(
            project=_env_str(env, "PROJECT"),
            zone=_env_str(env, "ZONE"),
            poll_interval=_env_float(env, "POLL_INTERVAL", defaults.poll_interval),
            operation_timeout=_env_float(env, "OPERATION_TIMEOUT", defaults.operation_timeout),
            max_parallel=_env_int(env, "MAX_PARALLEL", defaults.max_parallel, minimum=1),
            ssh_user=_env_str(env, "SSH_USER"),
            ssh_key_file=_env_str(env, "SSH_KEY_FILE"),
            launch_command=_env_str(env, "LAUNCH_COMMAND", defaults.launch_command),
            max_outstanding_per_member=_env_int(
                env, "MAX_OUTSTANDING", defaults.max_outstanding_per_member, minimum=1
            ),
            task_poll_interval=_env_float(env, "TASK_POLL_INTERVAL", defaults.task_poll_interval),
        )
