"""Selector construction utilities.

Translates user intent (CLI arguments or API inputs) into a single
MachineSelector, validating the ``key=value`` label syntax on the way.
"""

from typing import Iterable

from gceops.core.selectors import (
    AndSelector,
    LabelSelector,
    MachineSelector,
    NameRegexSelector,
    OrSelector,
)


def parse_label(raw: str) -> tuple[str, str]:
    """Split a ``key=value`` label expression."""
    if "=" not in raw:
        raise ValueError(f"Invalid label selector: '{raw}' (expected key=value)")
    key, value = raw.split("=", 1)
    if not key:
        raise ValueError(f"Invalid label selector: '{raw}' (empty key)")
    return key, value


def build_selector(
    *,
    name: str | None,
    labels: Iterable[str],
    use_or: bool,
) -> MachineSelector:
    """
    Build a composite MachineSelector from user-provided criteria.

    Args:
        name: Optional regular expression used to match machine names.
        labels: Iterable of label selector strings in the form `key=value`.
        use_or: If True, combine multiple selectors using logical OR.
                If False, combine them using logical AND.

    Returns:
        A MachineSelector instance representing the composed selection logic.

    Raises:
        ValueError: If no selectors are provided or if a label selector
                    does not follow the `key=value` format.
    """
    selectors: list[MachineSelector] = []

    if name:
        selectors.append(NameRegexSelector(name))

    for label in labels:
        key, value = parse_label(label)
        selectors.append(LabelSelector(key, value))

    if not selectors:
        raise ValueError("At least one selector is required (--name or --label)")

    if len(selectors) == 1:
        return selectors[0]

    return OrSelector(selectors) if use_or else AndSelector(selectors)
