from __future__ import annotations

from mosquitto_turnkey.core.models import (
	ListenEntry,
	MosquittoConfig,
	PasswdEntry,
	TurnkeySettings,
	default_config,
	resolve_config,
)
from mosquitto_turnkey.runtime import BrokerState, Mosquitto, OutputChunkEvent
from mosquitto_turnkey.utils.diagnostics import (
	MosquittoConfigError,
	MosquittoEnvironmentError,
	MosquittoError,
	MosquittoProvisioningError,
	MosquittoTeardownError,
	MosquittoTimeoutError,
	MosquittoUsageError,
)

__all__ = [
	"BrokerState",
	"ListenEntry",
	"Mosquitto",
	"MosquittoConfig",
	"MosquittoConfigError",
	"MosquittoEnvironmentError",
	"MosquittoError",
	"MosquittoProvisioningError",
	"MosquittoTeardownError",
	"MosquittoTimeoutError",
	"MosquittoUsageError",
	"OutputChunkEvent",
	"PasswdEntry",
	"TurnkeySettings",
	"default_config",
	"resolve_config",
]
