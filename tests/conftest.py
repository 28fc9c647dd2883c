from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Import the local src tree, not an installed copy.
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from gceops.core.machines import Machine, MachineState  # noqa: E402


@pytest.fixture
def ready_machines():
    """Factory for READY machines named vm-0..vm-(n-1)."""

    def _make(n: int) -> list[Machine]:
        return [
            Machine(name=f"vm-{i}", state=MachineState.READY, endpoint=f"10.0.0.{i + 2}")
            for i in range(n)
        ]

    return _make
