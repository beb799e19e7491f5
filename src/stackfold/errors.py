"""Exception hierarchy for stackfold.

All exceptions inherit from StackfoldError (single catch point).
Only ValidationError aborts a consolidation run; merge failures are
downgraded to warnings by the consolidator.
"""

from __future__ import annotations


class StackfoldError(Exception):
    """Base exception for all stackfold errors."""


class ValidationError(StackfoldError):
    """Input to a consolidation run is empty or entirely unusable."""


class MergeError(StackfoldError):
    """A merger could not synthesize a stack from its resource group."""


class InputLoadError(StackfoldError):
    """A mapping-results file could not be read or parsed."""
