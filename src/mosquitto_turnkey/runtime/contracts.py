from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal

OutputStream = Literal["stdout", "stderr"]

OUTPUT_STREAMS: tuple[OutputStream, ...] = ("stdout", "stderr")


class BrokerState(str, Enum):
    """Lifecycle states of one controller instance."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class BrokerEvent(str, Enum):
    """Events that drive controller state transitions."""

    START = "start"
    READY = "ready"
    START_FAILED = "start_failed"
    STOP = "stop"
    STOPPED = "stopped"


@dataclass(frozen=True)
class OutputChunkEvent:
    """One chunk of broker output, delivered to stream subscribers."""

    stream: OutputStream
    data: str


def transition_broker_state(current: BrokerState, event: BrokerEvent) -> BrokerState:
    """Compute the next controller state for a given event.

    Invalid transitions raise ValueError.
    """

    if current == BrokerState.STOPPED:
        if event == BrokerEvent.START:
            return BrokerState.STARTING
        raise ValueError(f"Invalid broker transition: {current} -> {event}")

    if current == BrokerState.STARTING:
        if event == BrokerEvent.READY:
            return BrokerState.RUNNING
        if event == BrokerEvent.START_FAILED:
            return BrokerState.STOPPED
        raise ValueError(f"Invalid broker transition: {current} -> {event}")

    if current == BrokerState.RUNNING:
        if event == BrokerEvent.STOP:
            return BrokerState.STOPPING
        raise ValueError(f"Invalid broker transition: {current} -> {event}")

    if current == BrokerState.STOPPING:
        if event == BrokerEvent.STOPPED:
            return BrokerState.STOPPED
        raise ValueError(f"Invalid broker transition: {current} -> {event}")

    raise ValueError(f"Unknown broker state: {current}")
