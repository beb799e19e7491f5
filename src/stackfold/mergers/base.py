"""Port: Stack-specific consolidation."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from stackfold.models import MappingResult, MergeOptions, Stack, StackType


class MergerPort(Protocol):
    """Port for folding a group of same-stack resources into one Stack.

    Implementations must be pure: they read only their arguments and
    return a freshly built Stack, so the consolidator may run them in
    worker threads.
    """

    @property
    def stack_type(self) -> StackType:
        """The stack type this merger produces."""
        ...

    def can_merge(self, results: Sequence[MappingResult]) -> bool:
        """Quick applicability check for a resource group."""
        ...

    def merge(self, results: Sequence[MappingResult], options: MergeOptions) -> Stack:
        """Synthesize one Stack from *results*.

        Raises:
            MergeError: If the group cannot be synthesized.
        """
        ...
