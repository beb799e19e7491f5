"""Consolidator -- group mapped resources by stack type and merge each group."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from stackfold.classification.classifier import StackMembership
from stackfold.classification.taxonomy import category_of, provider_of
from stackfold.consolidation.ordering import order_stacks
from stackfold.errors import ValidationError
from stackfold.mergers.helpers import sorted_results, stack_manual_steps, stack_warnings
from stackfold.models import (
    Category,
    ConsolidatedResult,
    ConsolidationMetadata,
    MappingResult,
    MergeOptions,
    Stack,
    StackType,
)
from stackfold.registry.registry import MergerRegistry

logger = logging.getLogger(__name__)

_KNOWN_BROKERS = frozenset({"rabbitmq"})


@dataclass(frozen=True, slots=True)
class _GroupOutcome:
    stack: Stack | None
    warnings: list[str] = field(default_factory=list)


@dataclass
class Consolidator:
    """Fold a flat list of mapping results into stacks.

    Args:
        registry: Mergers and definitions to dispatch to.
        membership: Classifier tables. Defaults to the built-in tables.
    """

    registry: MergerRegistry
    membership: StackMembership = field(default_factory=StackMembership)

    async def consolidate(
        self,
        results: Sequence[MappingResult | None],
        options: MergeOptions | None = None,
    ) -> ConsolidatedResult:
        """Group *results* by stack type and synthesize one stack per group.

        Cancellation is checked before every group; a cancelled run raises
        ``asyncio.CancelledError`` and returns nothing.

        Args:
            results: Mapping results from the resource mapper. ``None``
                entries are skipped.
            options: Merge options. Defaults to ``MergeOptions()``.

        Returns:
            ConsolidatedResult with stacks in dependency order.

        Raises:
            ValidationError: If no result can be processed.
        """
        options = options or MergeOptions()
        groups = self.group_by_stack_type(results)
        if not groups:
            raise ValidationError("No resources could be mapped: the input list is empty.")

        consolidated = ConsolidatedResult()
        if options.messaging_broker.lower() not in _KNOWN_BROKERS:
            consolidated.warnings.append(
                f"Unknown messaging broker '{options.messaging_broker}'; using rabbitmq"
            )
            logger.warning("Unknown messaging broker %r, using rabbitmq", options.messaging_broker)

        pending: list[tuple[StackType, list[MappingResult]]] = []
        for stack_type, group in groups.items():
            await asyncio.sleep(0)
            if stack_type is StackType.PASSTHROUGH:
                self._add_passthrough(group, consolidated)
                continue
            if not options.is_enabled(stack_type) and options.exclude_disabled:
                consolidated.warnings.append(
                    f"Skipped {len(group)} {stack_type} resource(s): stack type is disabled"
                )
                continue
            pending.append((stack_type, group))

        if options.parallel and len(pending) > 1:
            outcomes = await asyncio.gather(
                *(
                    asyncio.to_thread(self._merge_group, stack_type, group, options)
                    for stack_type, group in pending
                )
            )
        else:
            outcomes = []
            for stack_type, group in pending:
                await asyncio.sleep(0)
                outcomes.append(self._merge_group(stack_type, group, options))

        stacks: list[Stack] = []
        for outcome in outcomes:
            consolidated.warnings.extend(outcome.warnings)
            if outcome.stack is not None:
                stacks.append(outcome.stack)

        ordering = order_stacks(stacks)
        if ordering.has_cycle:
            consolidated.warnings.append(
                "Dependency cycle detected between stacks: "
                + ", ".join(str(st) for st in ordering.cycle)
                + "; keeping input order"
            )
        consolidated.stacks = ordering.stacks

        for stack in consolidated.stacks:
            consolidated.warnings.extend(stack_warnings(stack))
            consolidated.manual_steps.extend(
                f"[{stack.name}] {step}" for step in stack_manual_steps(stack)
            )

        consolidated.metadata = calculate_metadata(consolidated)
        logger.info(
            "Consolidated %d resources into %d stacks (%d passthrough)",
            consolidated.metadata.total_source_resources,
            len(consolidated.stacks),
            len(consolidated.passthrough),
        )
        return consolidated

    def group_by_stack_type(
        self, results: Sequence[MappingResult | None]
    ) -> dict[StackType, list[MappingResult]]:
        """Classify every result; groups come back in StackType order, members sorted."""
        grouped: dict[StackType, list[MappingResult]] = {}
        for result in sorted_results(results):
            if result.source_resource_type:
                stack_type = self.membership.classify_result(
                    result.source_resource_type, result.source_category
                )
            else:
                stack_type = StackType.PASSTHROUGH
            grouped.setdefault(stack_type, []).append(result)
        return {st: grouped[st] for st in sorted(grouped, key=lambda st: st.ordinal)}

    def _merge_group(
        self,
        stack_type: StackType,
        group: list[MappingResult],
        options: MergeOptions,
    ) -> _GroupOutcome:
        merger = self.registry.get(stack_type) if options.is_enabled(stack_type) else None
        if merger is not None and merger.can_merge(group):
            logger.debug("Merging %d resources into %s stack", len(group), stack_type)
            try:
                return _GroupOutcome(stack=merger.merge(group, options))
            except Exception as exc:
                logger.warning("Merger for %s stack failed: %s", stack_type, exc)
                return _GroupOutcome(
                    stack=self.registry.synthesize_default_stack(stack_type, group, options),
                    warnings=[f"Failed to merge {stack_type} stack: {exc}"],
                )

        logger.debug("Using default %s stack for %d resources", stack_type, len(group))
        return _GroupOutcome(
            stack=self.registry.synthesize_default_stack(stack_type, group, options)
        )

    @staticmethod
    def _add_passthrough(group: list[MappingResult], consolidated: ConsolidatedResult) -> None:
        for result in group:
            consolidated.passthrough.append(result)
            consolidated.warnings.extend(result.warnings)
            consolidated.manual_steps.extend(result.manual_steps)


def calculate_metadata(result: ConsolidatedResult) -> ConsolidationMetadata:
    """Summary counts for a consolidated result.

    Every passthrough resource counts as one generated service. The ratio
    is resources per service, floored at 1.0.
    """
    by_provider: dict[str, int] = {}
    by_category: dict[str, int] = {}
    by_stack_type: dict[str, int] = {}

    def _count(res: MappingResult) -> None:
        provider = str(provider_of(res.source_resource_type))
        by_provider[provider] = by_provider.get(provider, 0) + 1
        category = res.source_category
        if category is Category.UNKNOWN:
            category = category_of(res.source_resource_type)
        by_category[str(category)] = by_category.get(str(category), 0) + 1

    total_resources = 0
    total_services = 0
    for stack in result.stacks:
        by_stack_type[str(stack.type)] = by_stack_type.get(str(stack.type), 0) + 1
        total_resources += stack.source_resource_count
        total_services += stack.service_count
        for res in stack.source_resources:
            _count(res)

    if result.passthrough:
        by_stack_type[str(StackType.PASSTHROUGH)] = len(result.passthrough)
    for res in result.passthrough:
        _count(res)
    total_resources += len(result.passthrough)
    total_services += len(result.passthrough)

    ratio = total_resources / total_services if total_services else 1.0
    return ConsolidationMetadata(
        total_source_resources=total_resources,
        total_stacks=len(result.stacks),
        total_services=total_services,
        consolidation_ratio=max(ratio, 1.0),
        by_provider=by_provider,
        by_stack_type=by_stack_type,
        by_category=by_category,
    )


def filter_results_by_stack_type(
    results: Sequence[MappingResult | None],
    stack_type: StackType,
    membership: StackMembership | None = None,
) -> list[MappingResult]:
    membership = membership or StackMembership()
    return [
        r
        for r in results
        if r is not None
        and membership.classify_result(r.source_resource_type, r.source_category) == stack_type
    ]


def stack_types_in(
    results: Sequence[MappingResult | None],
    membership: StackMembership | None = None,
) -> list[StackType]:
    """Distinct stack types present in *results*, in canonical order."""
    membership = membership or StackMembership()
    found = {
        membership.classify_result(r.source_resource_type, r.source_category)
        for r in results
        if r is not None
    }
    return sorted(found, key=lambda st: st.ordinal)


def validate_results(results: Sequence[MappingResult | None]) -> list[str]:
    """Describe results the mapper left incomplete (informational, never raises)."""
    problems: list[str] = []
    for index, result in enumerate(results):
        if result is None:
            problems.append(f"result at index {index} is missing")
        elif not result.source_resource_type:
            problems.append(f"result {index} has no source resource type")
        elif result.docker_service is None:
            problems.append(f"result {index} ({result.source_resource_name}) has no docker service")
        elif not result.docker_service.name:
            problems.append(f"result {index} docker service has no name")
    return problems
