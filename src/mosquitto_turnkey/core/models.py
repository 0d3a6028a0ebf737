from typing import Any, List, Literal, Mapping, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict
from mosquitto_turnkey.utils.diagnostics import MosquittoConfigError


DEFAULT_CONTAINER = "ghcr.io/rse/mosquitto:2.0.22-20260117"
DEFAULT_AUTH_PLUGIN = "/app/libexec/mosquitto-go-auth.so"

SECURE_PROTOCOLS = frozenset({"mqtts", "wss"})


class PasswdEntry(BaseModel):
    """
    One account provisioned into the broker credential file.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    username: str = Field(min_length=1)
    password: str


class ListenEntry(BaseModel):
    """
    One network listener exposed by the broker.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    protocol: Literal["mqtt", "mqtts", "ws", "wss"]
    name: Optional[str] = None
    address: str
    port: int = Field(ge=1, le=65535)

    @property
    def secure(self) -> bool:
        return self.protocol in SECURE_PROTOCOLS

    @property
    def websockets(self) -> bool:
        return self.protocol in {"ws", "wss"}


class MosquittoConfig(BaseModel):
    """
    Fully resolved broker configuration. Immutable once built.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    native: bool
    container: str
    auth: Literal["builtin", "plugin"]
    persistence: bool
    acl: str
    passwd: List[PasswdEntry]
    listen: List[ListenEntry]
    custom: str


class TurnkeySettings(BaseSettings):
    """
    Runtime knobs for the controller (timeouts, program names).
    Read from MOSQUITTO_TURNKEY_* environment variables.
    """
    model_config = SettingsConfigDict(env_prefix='MOSQUITTO_TURNKEY_', extra='ignore')

    readiness_timeout: float = Field(default=10.0, gt=0)
    readiness_interval: float = Field(default=0.05, gt=0)
    stop_grace: float = Field(default=5.0, ge=0)
    mosquitto_program: str = "mosquitto"
    passwd_program: str = "mosquitto_passwd"
    container_program: str = "docker"
    auth_plugin_path: str = DEFAULT_AUTH_PLUGIN
    log_level: str = "INFO"


def default_config() -> MosquittoConfig:
    """Return a fresh, fully populated default configuration."""
    return MosquittoConfig(
        native=False,
        container=DEFAULT_CONTAINER,
        auth="builtin",
        persistence=False,
        acl="",
        passwd=[PasswdEntry(username="example", password="example")],
        listen=[ListenEntry(protocol="mqtt", address="127.0.0.1", port=1883)],
        custom="",
    )


ConfigOverrides = Union[MosquittoConfig, Mapping[str, Any], None]


def resolve_config(overrides: ConfigOverrides = None, base: Optional[MosquittoConfig] = None) -> MosquittoConfig:
    """
    Fill every field missing from ``overrides`` from ``base`` (the defaults when omitted).

    List fields are replaced as a whole. Type errors raise MosquittoConfigError;
    cross-field consistency is not checked here.
    """
    if isinstance(overrides, MosquittoConfig):
        return overrides

    base_config = base if base is not None else default_config()
    if not overrides:
        return base_config

    if not isinstance(overrides, Mapping):
        raise MosquittoConfigError(f"configuration overrides must be a mapping, got {type(overrides).__name__}")

    payload = base_config.model_dump()
    payload.update(dict(overrides))
    try:
        return MosquittoConfig.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or None
        raise MosquittoConfigError(f"invalid configuration: {first['msg']}", field=field) from exc
