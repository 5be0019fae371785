"""Relay module: durable command queue between the gateway and the terminal.

This module provides:
- QueuedCommand / CommandEvent / RelayEvent: Relay data models
- RelayQueue: Persistent FIFO with single-flight periodic draining and retries
- ExecutorAdapter / TmuxExecutor: Delivery of commands to the live session
- RelayService: Wires store, channel, queue and maintenance jobs together
"""

from cmdrelay.core.relay.executor import ExecutorAdapter, TmuxExecutor
from cmdrelay.core.relay.models import (
    CommandEvent,
    InteractionEvent,
    QueuedCommand,
    RelayEvent,
    generate_command_id,
)
from cmdrelay.core.relay.queue import RelayQueue
from cmdrelay.core.relay.service import (
    RelayService,
    get_relay_service,
    reset_relay_service,
)

__all__ = [
    "CommandEvent",
    "ExecutorAdapter",
    "InteractionEvent",
    "QueuedCommand",
    "RelayEvent",
    "RelayQueue",
    "RelayService",
    "TmuxExecutor",
    "generate_command_id",
    "get_relay_service",
    "reset_relay_service",
]
