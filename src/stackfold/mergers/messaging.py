"""Messaging merger: queues, topics, event buses and streams -> one RabbitMQ broker.

Topology mapping:

- queue      -> durable queue (retention becomes ``x-message-ttl``)
- topic      -> topic exchange + ``<name>-default`` queue bound with ``#``
- event bus  -> headers exchange
- stream     -> ``x-queue-type: stream`` queue with a byte retention cap

A ``dlx`` exchange, a ``dead-letters`` queue and a dead-letter policy for
classic queues are always present. Source names never reuse those two names.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum

from stackfold.errors import MergeError
from stackfold.mergers.helpers import (
    attach_sources,
    carry_source_files,
    extract_manual_steps,
    extract_warnings,
    generate_unique_name,
    new_stack,
    normalize_name,
    record_manual_steps,
    record_warnings,
)
from stackfold.mergers.rendering import markdown_table, to_json
from stackfold.models import (
    HealthCheck,
    MappingResult,
    MergeOptions,
    Service,
    Stack,
    StackType,
    Volume,
)

RABBIT_VERSION = "3.13.0"
VHOST = "/"
DEFAULT_STREAM_MAX_BYTES = 10 * 1024 * 1024 * 1024

DLX_EXCHANGE = "dlx"
DEAD_LETTER_QUEUE = "dead-letters"
DEAD_LETTER_ROUTING_KEY = "dead-letter"


class MessagingKind(StrEnum):
    QUEUE = "queue"
    TOPIC = "topic"
    EVENT_BUS = "event_bus"
    STREAM = "stream"


MESSAGING_TYPES: dict[str, MessagingKind] = {
    # AWS
    "aws_sqs_queue": MessagingKind.QUEUE,
    "aws_ses_domain_identity": MessagingKind.QUEUE,
    "aws_sns_topic": MessagingKind.TOPIC,
    "aws_cloudwatch_event_rule": MessagingKind.EVENT_BUS,
    "aws_cloudwatch_event_bus": MessagingKind.EVENT_BUS,
    "aws_kinesis_stream": MessagingKind.STREAM,
    # GCP
    "google_cloud_tasks_queue": MessagingKind.QUEUE,
    "google_pubsub_subscription": MessagingKind.QUEUE,
    "google_pubsub_topic": MessagingKind.TOPIC,
    "google_cloud_scheduler_job": MessagingKind.EVENT_BUS,
    # Azure
    "azurerm_servicebus_namespace": MessagingKind.QUEUE,
    "azurerm_servicebus_queue": MessagingKind.QUEUE,
    "azurerm_servicebus_topic": MessagingKind.TOPIC,
    "azurerm_eventgrid_topic": MessagingKind.EVENT_BUS,
    "azurerm_logic_app_workflow": MessagingKind.EVENT_BUS,
    "azurerm_eventhub": MessagingKind.STREAM,
}

# Keyword fallback for types missing from MESSAGING_TYPES, checked in order.
_FALLBACK_KINDS: tuple[tuple[str, MessagingKind], ...] = (
    ("kinesis", MessagingKind.STREAM),
    ("stream", MessagingKind.STREAM),
    ("eventhub", MessagingKind.STREAM),
    ("sqs", MessagingKind.QUEUE),
    ("queue", MessagingKind.QUEUE),
    ("sns", MessagingKind.TOPIC),
    ("topic", MessagingKind.TOPIC),
    ("pubsub", MessagingKind.TOPIC),
    ("event", MessagingKind.EVENT_BUS),
    ("servicebus", MessagingKind.QUEUE),
)

_DEFAULT_NAMES: dict[MessagingKind, str] = {
    MessagingKind.QUEUE: "queue",
    MessagingKind.TOPIC: "topic",
    MessagingKind.EVENT_BUS: "event-bus",
    MessagingKind.STREAM: "stream",
}

_SOURCE_STEPS: dict[str, str] = {
    "aws_sqs_queue": "SQS: map visibility timeout settings to RabbitMQ consumer acknowledgement timeouts",
    "aws_sns_topic": "SNS: recreate topic subscriptions as RabbitMQ queue bindings",
    "aws_kinesis_stream": "Kinesis: point ordered consumers at the RabbitMQ stream queue",
    "aws_cloudwatch_event_rule": "EventBridge: translate event patterns into header bindings",
    "aws_ses_domain_identity": "SES: configure an SMTP relay for outbound mail; the queue only buffers send requests",
    "google_pubsub_topic": "Pub/Sub: migrate acknowledgement deadlines to RabbitMQ consumer settings",
    "google_pubsub_subscription": "Pub/Sub: migrate acknowledgement deadlines to RabbitMQ consumer settings",
    "google_cloud_scheduler_job": "Cloud Scheduler: recreate schedules as cron jobs that publish to the exchange",
    "azurerm_servicebus_namespace": "Service Bus: review session-based messaging requirements",
    "azurerm_servicebus_queue": "Service Bus: review session-based messaging requirements",
    "azurerm_eventhub": "Event Hubs: map consumer groups to stream consumers with offsets",
    "azurerm_logic_app_workflow": "Logic Apps: re-implement workflow steps as consumers of the headers exchange",
}

MANUAL_STEPS = (
    "Update application connection strings to use RabbitMQ (amqp://localhost:5672)",
    "Review message format compatibility; RabbitMQ speaks AMQP",
    "Drain or migrate in-flight messages from cloud queues before cutover",
    "Point dead-letter handling at the RabbitMQ dlx exchange",
    "Set up monitoring for queue depth and consumer lag",
)


def messaging_kind(resource_type: str) -> MessagingKind | None:
    """Topology kind for a resource type; exact table first, keywords last."""
    kind = MESSAGING_TYPES.get(resource_type)
    if kind is not None:
        return kind
    lowered = resource_type.lower()
    for keyword, fallback in _FALLBACK_KINDS:
        if keyword in lowered:
            return fallback
    return None


# ─── Broker definitions ───────────────────────────────────────


@dataclass
class BrokerDefinitions:
    """In-memory form of RabbitMQ's ``definitions.json``."""

    queues: list[dict[str, object]] = field(default_factory=list)
    exchanges: list[dict[str, object]] = field(default_factory=list)
    bindings: list[dict[str, object]] = field(default_factory=list)
    policies: list[dict[str, object]] = field(default_factory=list)

    def add_queue(self, name: str, arguments: dict[str, object] | None = None) -> None:
        self.queues.append(
            {
                "name": name,
                "vhost": VHOST,
                "durable": True,
                "auto_delete": False,
                "arguments": arguments or {},
            }
        )

    def add_exchange(self, name: str, exchange_type: str) -> None:
        self.exchanges.append(
            {
                "name": name,
                "vhost": VHOST,
                "type": exchange_type,
                "durable": True,
                "auto_delete": False,
                "internal": False,
                "arguments": {},
            }
        )

    def bind(self, source: str, destination: str, routing_key: str) -> None:
        self.bindings.append(
            {
                "source": source,
                "vhost": VHOST,
                "destination": destination,
                "destination_type": "queue",
                "routing_key": routing_key,
                "arguments": {},
            }
        )

    def names(self) -> set[str]:
        return {str(q["name"]) for q in self.queues} | {str(e["name"]) for e in self.exchanges}

    def to_dict(self) -> dict[str, object]:
        return {
            "rabbit_version": RABBIT_VERSION,
            "vhosts": [{"name": VHOST}],
            "users": [],
            "permissions": [],
            "parameters": [],
            "queues": self.queues,
            "exchanges": self.exchanges,
            "bindings": self.bindings,
            "policies": self.policies,
        }


def build_definitions(results: Sequence[MappingResult]) -> BrokerDefinitions:
    """Translate source resources into broker topology, plus the dead-letter setup."""
    defs = BrokerDefinitions()
    reserved = {DLX_EXCHANGE, DEAD_LETTER_QUEUE}
    for result in results:
        kind = messaging_kind(result.source_resource_type) or MessagingKind.QUEUE
        base = normalize_name(result.source_resource_name) or _DEFAULT_NAMES[kind]
        name = generate_unique_name(base, defs.names() | reserved)
        env = result.environment

        if kind is MessagingKind.QUEUE:
            arguments: dict[str, object] = {}
            retention = env.get("MESSAGE_RETENTION_PERIOD", "")
            if retention.isdigit():
                arguments["x-message-ttl"] = int(retention) * 1000
            defs.add_queue(name, arguments)
        elif kind is MessagingKind.TOPIC:
            defs.add_exchange(name, "topic")
            default_queue = generate_unique_name(f"{name}-default", defs.names() | reserved)
            defs.add_queue(default_queue)
            defs.bind(name, default_queue, "#")
        elif kind is MessagingKind.EVENT_BUS:
            defs.add_exchange(name, "headers")
        else:
            arguments = {"x-queue-type": "stream", "x-max-length-bytes": DEFAULT_STREAM_MAX_BYTES}
            retention_hours = env.get("RETENTION_PERIOD_HOURS", "")
            if retention_hours.isdigit():
                arguments["x-max-age"] = f"{retention_hours}h"
            defs.add_queue(name, arguments)

    defs.add_exchange(DLX_EXCHANGE, "direct")
    defs.add_queue(DEAD_LETTER_QUEUE)
    defs.bind(DLX_EXCHANGE, DEAD_LETTER_QUEUE, DEAD_LETTER_ROUTING_KEY)
    # Classic queues only, never the dead-letter queue itself.
    defs.policies.append(
        {
            "name": "dlx-policy",
            "vhost": VHOST,
            "pattern": f"^(?!{DEAD_LETTER_QUEUE}$).*",
            "apply-to": "classic_queues",
            "definition": {
                "dead-letter-exchange": DLX_EXCHANGE,
                "dead-letter-routing-key": DEAD_LETTER_ROUTING_KEY,
            },
            "priority": 0,
        }
    )
    return defs


@dataclass(frozen=True, slots=True)
class MessagingMerger:
    """Folds SQS, SNS, EventBridge, Kinesis, Pub/Sub and Service Bus into RabbitMQ."""

    @property
    def stack_type(self) -> StackType:
        return StackType.MESSAGING

    def can_merge(self, results: Sequence[MappingResult]) -> bool:
        return any(messaging_kind(r.source_resource_type) is not None for r in results)

    def merge(self, results: Sequence[MappingResult], options: MergeOptions) -> Stack:
        if not results:
            raise MergeError("no results to merge")

        stack = new_stack(
            StackType.MESSAGING,
            options,
            "Message queues, pub/sub, and event streaming (RabbitMQ)",
        )
        broker = options.stack_name("rabbitmq")
        stack.add_service(_rabbitmq_service(broker))
        stack.add_volume(Volume(name="rabbitmq_data", labels={"stackfold.stack": "messaging"}))

        definitions = build_definitions(results)
        stack.add_config("rabbitmq/definitions.json", to_json(definitions.to_dict()))
        stack.add_config("rabbitmq/rabbitmq.conf", _RABBITMQ_CONF)
        stack.add_config("rabbitmq/enabled_plugins", "[rabbitmq_management,rabbitmq_stream].\n")
        stack.add_script("MIGRATION.md", _migration_doc(results, broker))

        attach_sources(stack, results)
        counts = {kind: 0 for kind in MessagingKind}
        for result in results:
            counts[messaging_kind(result.source_resource_type) or MessagingKind.QUEUE] += 1
        stack.metadata["source_queues"] = str(counts[MessagingKind.QUEUE])
        stack.metadata["source_topics"] = str(counts[MessagingKind.TOPIC])
        stack.metadata["source_event_buses"] = str(counts[MessagingKind.EVENT_BUS])
        stack.metadata["source_streams"] = str(counts[MessagingKind.STREAM])

        source_steps = sorted(
            {_SOURCE_STEPS[r.source_resource_type] for r in results if r.source_resource_type in _SOURCE_STEPS}
        )
        record_warnings(stack, extract_warnings(results))
        record_manual_steps(stack, [*MANUAL_STEPS, *source_steps, *extract_manual_steps(results)])
        carry_source_files(stack, results)
        return stack


def _rabbitmq_service(name: str) -> Service:
    return Service(
        name=name,
        image="rabbitmq:3-management",
        environment={
            "RABBITMQ_DEFAULT_USER": "${RABBITMQ_USER:-admin}",
            "RABBITMQ_DEFAULT_PASS": "${RABBITMQ_PASS:-changeme}",
        },
        ports=["5672:5672", "15672:15672"],
        volumes=[
            "rabbitmq_data:/var/lib/rabbitmq",
            "./config/rabbitmq/definitions.json:/etc/rabbitmq/definitions.json:ro",
            "./config/rabbitmq/rabbitmq.conf:/etc/rabbitmq/rabbitmq.conf:ro",
            "./config/rabbitmq/enabled_plugins:/etc/rabbitmq/enabled_plugins:ro",
        ],
        labels={"stackfold.stack": "messaging", "stackfold.role": "primary"},
        health_check=HealthCheck(
            test=["CMD", "rabbitmq-diagnostics", "-q", "ping"],
            interval="30s",
            timeout="10s",
            retries=3,
            start_period="30s",
        ),
    )


_RABBITMQ_CONF = """\
# RabbitMQ Configuration
# Generated by stackfold

management.load_definitions = /etc/rabbitmq/definitions.json

listeners.tcp.default = 5672
management.tcp.port = 15672

vm_memory_high_watermark.relative = 0.7
vm_memory_high_watermark_paging_ratio = 0.5
disk_free_limit.absolute = 2GB

log.console = true
log.console.level = info
log.file = false

stream.initial_credits = 50000
stream.credits_required_for_unblock = 25000
"""


def _migration_doc(results: Sequence[MappingResult], service: str) -> str:
    targets = {
        MessagingKind.QUEUE: "durable queue",
        MessagingKind.TOPIC: "topic exchange + default queue",
        MessagingKind.EVENT_BUS: "headers exchange",
        MessagingKind.STREAM: "stream queue",
    }
    rows = [
        [
            r.source_resource_name,
            r.source_resource_type,
            targets[messaging_kind(r.source_resource_type) or MessagingKind.QUEUE],
        ]
        for r in results
    ]
    return (
        "# Messaging Migration Guide\n\n"
        "## Source Resources\n\n"
        + markdown_table(["Source Resource", "Type", "RabbitMQ Target"], rows)
        + "\n## Steps\n\n"
        f"1. Start the broker: `docker compose up -d {service}`\n"
        "2. Open the management UI at http://localhost:15672 and verify the imported topology.\n"
        "3. Switch producers first, then consumers, one resource at a time.\n"
        "4. Watch the `dead-letters` queue for rejected or expired messages.\n"
    )
