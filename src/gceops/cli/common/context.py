"""Application context management for the CLI."""

from dataclasses import dataclass, replace

from gceops.cli.common.exits import die
from gceops.core.adapters.gce import GceAdapter
from gceops.core.auth import AuthError, get_adapter
from gceops.core.machines import MachinePool
from gceops.core.settings import Settings


@dataclass
class AppContext:
    """Application context holding settings, the GCE adapter and the machine pool."""

    settings: Settings
    adapter: GceAdapter
    pool: MachinePool


def build_context(
    project: str | None,
    zone: str | None,
    *,
    max_parallel: int | None = None,
) -> AppContext:
    """Build the application context from the environment plus CLI overrides.

    Args:
        project: Optional project overriding GCEOPS_PROJECT.
        zone: Optional zone overriding GCEOPS_ZONE.
        max_parallel: Optional override of concurrent create/delete requests.

    Returns:
        AppContext: Context with a configured adapter and an empty pool.
    """
    settings = Settings.from_env()
    overrides = {}
    if project:
        overrides["project"] = project
    if zone:
        overrides["zone"] = zone
    if max_parallel:
        overrides["max_parallel"] = max_parallel
    settings = replace(settings, **overrides)

    try:
        adapter = get_adapter(settings.project, settings.zone)
    except AuthError as exc:
        die(str(exc), code=1)

    pool = MachinePool(
        adapter,
        max_parallel=settings.max_parallel,
        poll_interval=settings.poll_interval,
    )
    return AppContext(settings=settings, adapter=adapter, pool=pool)
