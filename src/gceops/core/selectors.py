"""Machine selector abstractions and implementations.

Selectors decide whether a machine matches a set of criteria (name, labels,
lifecycle state) and can be composed with AND / OR. They are pure objects
used by the CLI to pick the machines a command acts on, and equally usable
from scripts and tests.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from gceops.core.machines import Machine, MachineState


class MachineSelector(ABC):
    """
    Abstract base class for all machine selectors.

    A MachineSelector encapsulates a single piece of matching logic that
    determines whether a given Machine satisfies a specific criterion.
    """

    @abstractmethod
    def matches(self, machine: Machine) -> bool:
        """
        Determine whether the given machine matches this selector.

        Args:
            machine: Machine instance to evaluate.

        Returns:
            True if the machine matches the selector criteria, False otherwise.
        """
        ...

    def select(self, machines: Iterable[Machine]) -> list[Machine]:
        """Return the machines that match, preserving order."""
        return [m for m in machines if self.matches(m)]


class NameRegexSelector(MachineSelector):
    """Selector that matches machines whose name matches a regular expression."""

    def __init__(self, pattern: str):
        try:
            self.regex = re.compile(pattern)
        except re.error as exc:
            raise ValueError(f"Invalid regex expression: {exc}") from exc

    def matches(self, machine: Machine) -> bool:
        return bool(self.regex.search(machine.name))


class LabelSelector(MachineSelector):
    """Selector that matches machines carrying a label with a given value."""

    def __init__(self, key: str, value: str):
        self.key = key
        self.value = value

    def matches(self, machine: Machine) -> bool:
        if not machine.labels:
            return False
        return machine.labels.get(self.key) == self.value


class StateSelector(MachineSelector):
    """Selector that matches machines in one of the given lifecycle states."""

    def __init__(self, *states: MachineState):
        self.states = frozenset(states)

    def matches(self, machine: Machine) -> bool:
        return machine.state in self.states


class AndSelector(MachineSelector):
    """Composite selector that matches only if all child selectors match."""

    def __init__(self, selectors: list[MachineSelector]):
        self.selectors = selectors

    def matches(self, machine: Machine) -> bool:
        return all(s.matches(machine) for s in self.selectors)


class OrSelector(MachineSelector):
    """Composite selector that matches if any child selector matches."""

    def __init__(self, selectors: list[MachineSelector]):
        self.selectors = selectors

    def matches(self, machine: Machine) -> bool:
        return any(s.matches(machine) for s in self.selectors)
