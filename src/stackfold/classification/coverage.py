"""Coverage audit: does every taxonomy type resolve to a stack explicitly?

A type is *covered* when the classifier resolves it through a passthrough
entry, a type override or a category mapping. Types that only reach the
fallback tier are gaps: they would silently become passthrough at runtime.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from stackfold.classification.classifier import ResolutionSource, StackMembership
from stackfold.classification.taxonomy import (
    RESOURCE_TYPES,
    category_of,
    known_resource_types,
    provider_of,
)
from stackfold.models import Category


@dataclass(frozen=True, slots=True)
class CoverageReport:
    """Outcome of comparing a membership against a list of resource types."""

    total: int
    covered: int
    uncovered: list[str] = field(default_factory=list)
    by_stack: dict[str, list[str]] = field(default_factory=dict)
    by_category: dict[str, int] = field(default_factory=dict)
    by_provider: dict[str, int] = field(default_factory=dict)

    @property
    def percentage(self) -> float:
        if self.total == 0:
            return 100.0
        return self.covered / self.total * 100.0

    @property
    def is_fully_covered(self) -> bool:
        return not self.uncovered

    def stack_summary(self) -> dict[str, int]:
        return {stack: len(types) for stack, types in sorted(self.by_stack.items())}

    def to_dict(self) -> dict[str, object]:
        return {
            "total": self.total,
            "covered": self.covered,
            "uncovered": list(self.uncovered),
            "percentage": round(self.percentage, 1),
            "is_fully_covered": self.is_fully_covered,
            "by_stack": self.stack_summary(),
            "by_category": dict(sorted(self.by_category.items())),
            "by_provider": dict(sorted(self.by_provider.items())),
        }


def validate_coverage(
    membership: StackMembership,
    known_types: Iterable[str] | None = None,
) -> CoverageReport:
    """Audit *membership* against *known_types* (default: the whole taxonomy).

    Args:
        membership: The classifier tables to audit.
        known_types: Resource types to check. Defaults to every taxonomy type.

    Returns:
        CoverageReport with uncovered types sorted by name.
    """
    types = sorted(set(known_types)) if known_types is not None else known_resource_types()

    uncovered: list[str] = []
    by_stack: dict[str, list[str]] = {}
    by_category: dict[str, int] = {}
    by_provider: dict[str, int] = {}

    for resource_type in types:
        stack_type, source = membership.resolve(resource_type)
        if source is ResolutionSource.FALLBACK:
            uncovered.append(resource_type)
            continue
        by_stack.setdefault(str(stack_type), []).append(resource_type)
        category = str(category_of(resource_type))
        by_category[category] = by_category.get(category, 0) + 1
        provider = str(provider_of(resource_type))
        by_provider[provider] = by_provider.get(provider, 0) + 1

    return CoverageReport(
        total=len(types),
        covered=len(types) - len(uncovered),
        uncovered=uncovered,
        by_stack=by_stack,
        by_category=by_category,
        by_provider=by_provider,
    )


def missing_types(membership: StackMembership) -> list[str]:
    """Taxonomy types with no explicit stack resolution, sorted."""
    return validate_coverage(membership).uncovered


def coverage_stats(membership: StackMembership | None = None) -> dict[str, object]:
    """Coverage summary for the taxonomy, grouped by provider and stack."""
    report = validate_coverage(membership or StackMembership())
    totals_by_provider: dict[str, int] = {}
    for info in RESOURCE_TYPES.values():
        totals_by_provider[str(info.provider)] = totals_by_provider.get(str(info.provider), 0) + 1
    return {
        "total_types": report.total,
        "covered_types": report.covered,
        "uncovered_types": len(report.uncovered),
        "coverage_percentage": round(report.percentage, 1),
        "types_by_provider": dict(sorted(totals_by_provider.items())),
        "covered_by_provider": dict(sorted(report.by_provider.items())),
        "types_by_stack": report.stack_summary(),
    }


def unmapped_categories(membership: StackMembership) -> list[Category]:
    """Categories (excluding UNKNOWN) with no default stack mapping."""
    return [
        category
        for category in Category
        if category is not Category.UNKNOWN and category not in membership.by_category
    ]
