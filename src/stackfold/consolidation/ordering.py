"""Order stacks so that dependencies come before their dependents."""

from __future__ import annotations

import heapq
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from stackfold.models import Stack, StackType

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class OrderingResult:
    """Stacks in emission order plus any stack types caught in a cycle.

    When ``cycle`` is non-empty the stacks are in their original input order.
    """

    stacks: list[Stack]
    cycle: list[StackType] = field(default_factory=list)

    @property
    def has_cycle(self) -> bool:
        return bool(self.cycle)


def order_stacks(stacks: Sequence[Stack]) -> OrderingResult:
    """Topologically sort *stacks* by their declared ``depends_on``.

    Kahn's algorithm with a priority queue: among stacks that are ready,
    the lowest StackType ordinal goes first, then the name. Dependencies on
    stack types absent from *stacks* are ignored.

    Args:
        stacks: Stacks to order; several stacks may share a type.

    Returns:
        OrderingResult. On a cycle the input order is kept and the cyclic
        stack types are reported, sorted by ordinal.
    """
    present = {stack.type for stack in stacks}
    in_degree = [0] * len(stacks)
    dependents: dict[StackType, list[int]] = {}

    for index, stack in enumerate(stacks):
        for dependency in dict.fromkeys(stack.depends_on):
            if dependency in present and dependency != stack.type:
                in_degree[index] += 1
                dependents.setdefault(dependency, []).append(index)

    # A stack type is "emitted" once every stack of that type has been emitted.
    remaining_of_type: dict[StackType, int] = {}
    for stack in stacks:
        remaining_of_type[stack.type] = remaining_of_type.get(stack.type, 0) + 1

    ready: list[tuple[int, str, int]] = [
        (stack.type.ordinal, stack.name, index)
        for index, stack in enumerate(stacks)
        if in_degree[index] == 0
    ]
    heapq.heapify(ready)

    ordered: list[Stack] = []
    while ready:
        _, _, index = heapq.heappop(ready)
        stack = stacks[index]
        ordered.append(stack)
        remaining_of_type[stack.type] -= 1
        if remaining_of_type[stack.type]:
            continue
        for dependent in dependents.get(stack.type, []):
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                candidate = stacks[dependent]
                heapq.heappush(ready, (candidate.type.ordinal, candidate.name, dependent))

    if len(ordered) == len(stacks):
        return OrderingResult(stacks=ordered)

    emitted = {id(stack) for stack in ordered}
    cyclic = sorted(
        {stack.type for stack in stacks if id(stack) not in emitted},
        key=lambda st: st.ordinal,
    )
    logger.warning("Dependency cycle between stacks %s; keeping input order", cyclic)
    return OrderingResult(stacks=list(stacks), cycle=cyclic)
