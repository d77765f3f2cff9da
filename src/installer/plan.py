"""Plan builder for component installs.

Turns the declared component list into a topological order of the 'needs'
edges: every component appears after its predecessor.
"""

import logging
from typing import Iterator, Sequence

from manifest import Component, ManifestError, validate_components

logger = logging.getLogger(__name__)


class CycleError(ManifestError):
    """The 'needs' relation contains a cycle.

    Attributes:
        ids: Ids of the components that could not be ordered
    """

    def __init__(self, ids: Sequence[str]):
        self.ids = list(ids)
        super().__init__(
            f"Cycle detected in 'needs' among components: {', '.join(self.ids)}"
        )


class Plan:
    """Components in a valid install order (predecessors first)."""

    def __init__(self, components: Sequence[Component]):
        self._components = tuple(components)

    @property
    def components(self) -> tuple[Component, ...]:
        return self._components

    def ids(self) -> list[str]:
        return [c.id for c in self._components]

    def __iter__(self) -> Iterator[Component]:
        return iter(self._components)

    def __len__(self) -> int:
        return len(self._components)

    def __getitem__(self, index: int) -> Component:
        return self._components[index]

    def __str__(self) -> str:
        return ', '.join(self.ids())

    def __repr__(self) -> str:
        return f"Plan({self.ids()})"


def build_plan(components: Sequence[Component]) -> Plan:
    """Order components so that each follows the component it needs.

    Repeatedly scans the not-yet-placed components in declaration order,
    placing any whose predecessor is already placed (or that has none).
    Identical input always yields identical output.

    Args:
        components: Components in declaration order

    Returns:
        Plan containing every component exactly once

    Raises:
        ManifestError: If ids are duplicated or a 'needs' is dangling
        CycleError: If a full scan places nothing while components remain
    """
    validate_components(list(components))

    placed: set[str] = set()
    ordered: list[Component] = []
    remaining = list(components)

    while remaining:
        unplaced: list[Component] = []
        for c in remaining:
            if c.needs is None or c.needs in placed:
                ordered.append(c)
                placed.add(c.id)
            else:
                unplaced.append(c)

        if len(unplaced) == len(remaining):
            raise CycleError([c.id for c in unplaced])
        remaining = unplaced

    plan = Plan(ordered)
    logger.debug(f"Built plan: {plan}")
    return plan
