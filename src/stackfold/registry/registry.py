"""MergerRegistry -- mergers and static definitions keyed by stack type.

Built once at process start (see ``build_default_registry``) and passed by
reference to the consolidator. Registration may happen at runtime, so every
access goes through a re-entrant lock.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field

from stackfold.mergers.base import MergerPort
from stackfold.mergers.helpers import (
    extract_configs,
    extract_manual_steps,
    extract_networks,
    extract_scripts,
    extract_volumes,
    generate_unique_name,
    record_manual_steps,
)
from stackfold.models import MappingResult, MergeOptions, Service, Stack, StackType
from stackfold.registry.definitions import (
    ALTERNATIVE_IMAGES,
    DEFAULT_DEFINITIONS,
    StackDefinition,
)

logger = logging.getLogger(__name__)


@dataclass
class MergerRegistry:
    """Holds merger implementations and stack definitions.

    Args:
        definitions: Initial definitions. Defaults to a copy of
            ``DEFAULT_DEFINITIONS``.
    """

    definitions: dict[StackType, StackDefinition] = field(
        default_factory=lambda: dict(DEFAULT_DEFINITIONS)
    )
    _mergers: dict[StackType, MergerPort] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    # ─── Mergers ──────────────────────────────────────────────

    def register(self, merger: MergerPort) -> None:
        """Register *merger* for its stack type, replacing any previous one."""
        with self._lock:
            previous = self._mergers.get(merger.stack_type)
            self._mergers[merger.stack_type] = merger
        if previous is not None:
            logger.debug("Replaced merger for %s stack", merger.stack_type)

    def get(self, stack_type: StackType) -> MergerPort | None:
        with self._lock:
            return self._mergers.get(stack_type)

    def list_mergers(self) -> list[StackType]:
        with self._lock:
            return sorted(self._mergers, key=lambda st: st.ordinal)

    # ─── Definitions ──────────────────────────────────────────

    def get_definition(self, stack_type: StackType) -> StackDefinition | None:
        with self._lock:
            return self.definitions.get(stack_type)

    def set_definition(self, definition: StackDefinition) -> None:
        with self._lock:
            self.definitions[definition.type] = definition

    def list_definitions(self) -> list[StackType]:
        with self._lock:
            return sorted(self.definitions, key=lambda st: st.ordinal)

    def alternative_images(self, stack_type: StackType) -> dict[str, str]:
        """Alternative images users may pick instead of the default primary image."""
        return dict(ALTERNATIVE_IMAGES.get(stack_type, {}))

    # ─── Default-stack synthesis ──────────────────────────────

    def create_default_stack(self, stack_type: StackType, name_prefix: str = "") -> Stack:
        """Build an empty-but-deployable stack from the type's definition.

        Unknown types get a bare stack named after the type.
        """
        definition = self.get_definition(stack_type)
        base = definition.name if definition is not None else stack_type.value
        stack = Stack(type=stack_type, name=_prefixed(name_prefix, base))
        if definition is None:
            return stack

        stack.description = definition.description
        stack.add_service(
            Service(
                name=_prefixed(name_prefix, definition.name),
                image=definition.primary_image,
                ports=list(definition.default_ports),
            )
        )
        for support in definition.support_services:
            stack.add_service(
                Service(
                    name=_prefixed(name_prefix, support.name),
                    image=support.image,
                    ports=list(support.ports),
                    labels={"role": support.role},
                )
            )
        for dependency in definition.dependencies:
            stack.add_dependency(dependency)
        return stack

    def synthesize_default_stack(
        self,
        stack_type: StackType,
        results: Sequence[MappingResult],
        options: MergeOptions,
    ) -> Stack:
        """Default-stack fallback: definition services plus every source resource.

        Source configs and scripts are merged in verbatim; each source warning
        is kept as ``warning_<resource name>`` metadata. Source manual steps
        become ``manual_step_NN`` metadata.
        """
        stack = self.create_default_stack(stack_type, options.name_prefix)
        if not options.include_support_services:
            stack.services = [s for s in stack.services if "role" not in s.labels]

        for result in results:
            stack.add_source_resource(result)
            for warning in result.warnings:
                key = generate_unique_name(f"warning_{result.source_resource_name}", stack.metadata)
                stack.metadata[key] = warning

        for name, body in sorted(extract_configs(results).items()):
            stack.add_config(name, body)
        for name, body in sorted(extract_scripts(results).items()):
            stack.add_script(name, body)
        for volume in extract_volumes(results):
            stack.add_volume(volume)
        for network in extract_networks(results):
            stack.add_network(network)
        record_manual_steps(stack, extract_manual_steps(results))
        return stack


def _prefixed(name_prefix: str, name: str) -> str:
    return f"{name_prefix}-{name}" if name_prefix else name


def build_default_registry() -> MergerRegistry:
    """Registry with the default definitions and all built-in mergers."""
    from stackfold.mergers.auth import AuthMerger
    from stackfold.mergers.cache import CacheMerger
    from stackfold.mergers.compute import ComputeMerger
    from stackfold.mergers.database import DatabaseMerger
    from stackfold.mergers.messaging import MessagingMerger
    from stackfold.mergers.observability import ObservabilityMerger
    from stackfold.mergers.secrets import SecretsMerger
    from stackfold.mergers.storage import StorageMerger

    registry = MergerRegistry()
    for merger in (
        DatabaseMerger(),
        CacheMerger(),
        MessagingMerger(),
        AuthMerger(),
        StorageMerger(),
        SecretsMerger(),
        ComputeMerger(),
        ObservabilityMerger(),
    ):
        registry.register(merger)
    return registry
