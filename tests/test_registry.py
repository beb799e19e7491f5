"""Tests for the merger registry and default-stack synthesis."""

from __future__ import annotations

import threading

from stackfold.mergers.cache import CacheMerger
from stackfold.models import MappingResult, MergeOptions, StackType, Volume
from stackfold.registry.definitions import DEFAULT_DEFINITIONS
from stackfold.registry.registry import MergerRegistry


class TestRegistration:
    def test_default_registry_has_every_merger(self, registry: MergerRegistry) -> None:
        assert registry.list_mergers() == [st for st in StackType if st.is_consolidated]

    def test_register_replaces(self) -> None:
        registry = MergerRegistry()
        first, second = CacheMerger(), CacheMerger()
        registry.register(first)
        registry.register(second)
        assert registry.get(StackType.CACHE) is second

    def test_get_unknown(self) -> None:
        assert MergerRegistry().get(StackType.AUTH) is None

    def test_concurrent_registration(self) -> None:
        registry = MergerRegistry()
        threads = [threading.Thread(target=registry.register, args=(CacheMerger(),)) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert registry.list_mergers() == [StackType.CACHE]


class TestDefinitions:
    def test_definitions_copied_per_registry(self) -> None:
        registry = MergerRegistry()
        registry.definitions.pop(StackType.CACHE)
        assert StackType.CACHE in DEFAULT_DEFINITIONS
        assert MergerRegistry().get_definition(StackType.CACHE) is not None

    def test_list_definitions_in_canonical_order(self, registry: MergerRegistry) -> None:
        listed = registry.list_definitions()
        assert listed == sorted(listed, key=lambda st: st.ordinal)
        assert StackType.PASSTHROUGH not in listed

    def test_alternative_images(self, registry: MergerRegistry) -> None:
        assert registry.alternative_images(StackType.DATABASE)["mysql"] == "mysql:8"
        assert registry.alternative_images(StackType.PASSTHROUGH) == {}


class TestCreateDefaultStack:
    def test_services_from_definition(self, registry: MergerRegistry) -> None:
        stack = registry.create_default_stack(StackType.OBSERVABILITY)
        assert [s.name for s in stack.services] == ["observability", "grafana", "loki", "alertmanager"]
        assert stack.services[0].image == "prom/prometheus:latest"

    def test_dependencies_and_prefix(self, registry: MergerRegistry) -> None:
        stack = registry.create_default_stack(StackType.AUTH, name_prefix="acme")
        assert stack.name == "acme-auth"
        assert all(s.name.startswith("acme-") for s in stack.services)
        assert stack.depends_on == [StackType.DATABASE]

    def test_type_without_definition(self, registry: MergerRegistry) -> None:
        stack = registry.create_default_stack(StackType.PASSTHROUGH)
        assert stack.name == "passthrough"
        assert stack.services == []


class TestSynthesizeDefaultStack:
    def test_carries_sources_and_files(self, registry: MergerRegistry) -> None:
        results = [
            MappingResult(
                "aws_sqs_queue",
                "jobs",
                configs={"queue.json": "{}"},
                scripts={"setup.sh": "echo"},
                volumes=[Volume(name="q-data")],
                warnings=["FIFO semantics lost"],
            )
        ]
        stack = registry.synthesize_default_stack(StackType.MESSAGING, results, MergeOptions())
        assert stack.source_resources == results
        assert stack.configs == {"queue.json": "{}"}
        assert stack.scripts == {"setup.sh": "echo"}
        assert [v.name for v in stack.volumes] == ["q-data"]
        assert stack.metadata["warning_jobs"] == "FIFO semantics lost"

    def test_support_services_dropped_when_disabled(self, registry: MergerRegistry) -> None:
        stack = registry.synthesize_default_stack(
            StackType.DATABASE,
            [MappingResult("aws_db_instance", "orders")],
            MergeOptions(include_support_services=False),
        )
        assert [s.name for s in stack.services] == ["database"]

    def test_prefix_applies_to_every_service(self, registry: MergerRegistry) -> None:
        stack = registry.synthesize_default_stack(
            StackType.DATABASE,
            [MappingResult("aws_db_instance", "orders")],
            MergeOptions(name_prefix="t1"),
        )
        assert stack.name == "t1-database"
        assert stack.services
        assert all(s.name.startswith("t1-") for s in stack.services)
        assert stack.services[0].name == "t1-database"

    def test_source_manual_steps_recorded(self, registry: MergerRegistry) -> None:
        results = [
            MappingResult("aws_sqs_queue", "a", manual_steps=["Drain the FIFO queue"]),
            MappingResult("aws_sqs_queue", "b", manual_steps=["Drain the FIFO queue", "Recreate the DLQ"]),
        ]
        stack = registry.synthesize_default_stack(StackType.MESSAGING, results, MergeOptions())
        assert stack.metadata["manual_step_01"] == "Drain the FIFO queue"
        assert stack.metadata["manual_step_02"] == "Recreate the DLQ"
        assert "manual_step_03" not in stack.metadata
