"""Tests for the messaging merger."""

from __future__ import annotations

import json
import re

from stackfold.mergers.messaging import (
    DEFAULT_STREAM_MAX_BYTES,
    MessagingKind,
    MessagingMerger,
    build_definitions,
    messaging_kind,
)
from stackfold.models import MergeOptions, StackType


def _queue(defs: dict, name: str) -> dict:
    return next(q for q in defs["queues"] if q["name"] == name)


def _exchange(defs: dict, name: str) -> dict:
    return next(e for e in defs["exchanges"] if e["name"] == name)


class TestMessagingKind:
    def test_exact_table(self) -> None:
        assert messaging_kind("aws_sqs_queue") is MessagingKind.QUEUE
        assert messaging_kind("aws_sns_topic") is MessagingKind.TOPIC
        assert messaging_kind("azurerm_eventgrid_topic") is MessagingKind.EVENT_BUS
        assert messaging_kind("aws_kinesis_stream") is MessagingKind.STREAM

    def test_keyword_fallback(self) -> None:
        assert messaging_kind("aws_sqs_queue_policy") is MessagingKind.QUEUE
        assert messaging_kind("custom_event_hub_stream") is MessagingKind.STREAM

    def test_unrelated_type(self) -> None:
        assert messaging_kind("aws_s3_bucket") is None


class TestBuildDefinitions:
    def test_queue_and_topic(self, make_result) -> None:
        defs = build_definitions(
            [make_result("aws_sns_topic", "orders-topic"), make_result("aws_sqs_queue", "orders-q")]
        ).to_dict()

        queue = _queue(defs, "orders-q")
        assert queue["durable"] is True
        assert _exchange(defs, "orders-topic")["type"] == "topic"
        _queue(defs, "orders-topic-default")
        assert {
            "source": "orders-topic",
            "vhost": "/",
            "destination": "orders-topic-default",
            "destination_type": "queue",
            "routing_key": "#",
            "arguments": {},
        } in defs["bindings"]

    def test_dead_letter_setup_always_present(self, make_result) -> None:
        defs = build_definitions([make_result("aws_sqs_queue", "q")]).to_dict()
        assert _exchange(defs, "dlx")["type"] == "direct"
        _queue(defs, "dead-letters")
        assert defs["policies"][0]["name"] == "dlx-policy"
        assert defs["policies"][0]["definition"]["dead-letter-exchange"] == "dlx"

    def test_dead_letter_binding_matches_policy_routing_key(self, make_result) -> None:
        defs = build_definitions([make_result("aws_sqs_queue", "q")]).to_dict()
        policy = defs["policies"][0]
        [binding] = [b for b in defs["bindings"] if b["source"] == "dlx"]

        assert binding["destination"] == "dead-letters"
        assert binding["routing_key"] == policy["definition"]["dead-letter-routing-key"]

    def test_dead_letter_policy_skips_streams_and_itself(self, make_result) -> None:
        defs = build_definitions([make_result("aws_sqs_queue", "q")]).to_dict()
        policy = defs["policies"][0]

        assert policy["apply-to"] == "classic_queues"
        assert re.match(policy["pattern"], "q")
        assert not re.match(policy["pattern"], "dead-letters")

    def test_source_names_never_shadow_dead_letter_objects(self, make_result) -> None:
        defs = build_definitions(
            [make_result("aws_sqs_queue", "dead-letters"), make_result("aws_sns_topic", "dlx")]
        ).to_dict()

        queue_names = [q["name"] for q in defs["queues"]]
        exchange_names = [e["name"] for e in defs["exchanges"]]
        assert len(queue_names) == len(set(queue_names))
        assert len(exchange_names) == len(set(exchange_names))
        assert _exchange(defs, "dlx")["type"] == "direct"
        assert _exchange(defs, "dlx-1")["type"] == "topic"
        _queue(defs, "dead-letters-1")

    def test_queue_retention_becomes_ttl(self, make_result) -> None:
        defs = build_definitions(
            [make_result("aws_sqs_queue", "q", env={"MESSAGE_RETENTION_PERIOD": "60"})]
        ).to_dict()
        assert _queue(defs, "q")["arguments"] == {"x-message-ttl": 60000}

    def test_stream_arguments(self, make_result) -> None:
        defs = build_definitions(
            [make_result("aws_kinesis_stream", "clicks", env={"RETENTION_PERIOD_HOURS": "24"})]
        ).to_dict()
        assert _queue(defs, "clicks")["arguments"] == {
            "x-queue-type": "stream",
            "x-max-length-bytes": DEFAULT_STREAM_MAX_BYTES,
            "x-max-age": "24h",
        }

    def test_event_bus_is_headers_exchange(self, make_result) -> None:
        defs = build_definitions([make_result("aws_cloudwatch_event_rule", "nightly")]).to_dict()
        assert _exchange(defs, "nightly")["type"] == "headers"

    def test_name_clash_gets_suffix(self, make_result) -> None:
        defs = build_definitions(
            [make_result("aws_sqs_queue", "jobs"), make_result("google_cloud_tasks_queue", "jobs")]
        ).to_dict()
        names = [q["name"] for q in defs["queues"]]
        assert names[:2] == ["jobs", "jobs-1"]


class TestMessagingMerger:
    def test_can_merge(self, make_result) -> None:
        merger = MessagingMerger()
        assert merger.stack_type is StackType.MESSAGING
        assert merger.can_merge([make_result("google_pubsub_topic", "t")])
        assert not merger.can_merge([make_result("aws_s3_bucket", "b")])

    def test_single_broker_with_definitions(self, make_result) -> None:
        results = [make_result("aws_sns_topic", "orders-topic"), make_result("aws_sqs_queue", "orders-q")]
        stack = MessagingMerger().merge(results, MergeOptions())

        assert [s.name for s in stack.services] == ["rabbitmq"]
        defs = json.loads(stack.configs["rabbitmq/definitions.json"])
        assert defs["rabbit_version"] == "3.13.0"
        assert "load_definitions" in stack.configs["rabbitmq/rabbitmq.conf"]
        assert stack.metadata["source_queues"] == "1"
        assert stack.metadata["source_topics"] == "1"
        assert stack.metadata["source_streams"] == "0"

    def test_source_specific_manual_steps(self, make_result) -> None:
        stack = MessagingMerger().merge([make_result("aws_sns_topic", "t")], MergeOptions())
        steps = [v for k, v in sorted(stack.metadata.items()) if k.startswith("manual_step_")]
        assert len(steps) == 6
        assert steps[-1].startswith("SNS:")

    def test_name_prefix_applies_to_broker(self, make_result) -> None:
        stack = MessagingMerger().merge([make_result("aws_sqs_queue", "q")], MergeOptions(name_prefix="t1"))
        assert [s.name for s in stack.services] == ["t1-rabbitmq"]
        assert "docker compose up -d t1-rabbitmq" in stack.scripts["MIGRATION.md"]

    def test_source_manual_steps_follow_builtin_steps(self, make_result) -> None:
        result = make_result("aws_sqs_queue", "q", manual_steps=["Recreate the redrive policy"])
        stack = MessagingMerger().merge([result], MergeOptions())
        steps = [v for k, v in sorted(stack.metadata.items()) if k.startswith("manual_step_")]
        assert steps[-1] == "Recreate the redrive policy"
