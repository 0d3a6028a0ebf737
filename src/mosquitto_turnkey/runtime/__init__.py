"""Broker lifecycle: working directory, subprocess, readiness and teardown."""

from mosquitto_turnkey.runtime.contracts import (
	BrokerEvent,
	BrokerState,
	OutputChunkEvent,
	transition_broker_state,
)
from mosquitto_turnkey.runtime.controller import Mosquitto
from mosquitto_turnkey.runtime.process import BrokerProcess, build_broker_command, build_container_cleanup_command
from mosquitto_turnkey.runtime.readiness import BANNER_PATTERN, banner_seen, wait_for_banner
from mosquitto_turnkey.runtime.workdir import WorkingDirectory

__all__ = [
	"BANNER_PATTERN",
	"BrokerEvent",
	"BrokerProcess",
	"BrokerState",
	"Mosquitto",
	"OutputChunkEvent",
	"WorkingDirectory",
	"banner_seen",
	"build_broker_command",
	"build_container_cleanup_command",
	"transition_broker_state",
	"wait_for_banner",
]
