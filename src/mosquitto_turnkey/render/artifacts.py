from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from jinja2 import BaseLoader, Environment

from mosquitto_turnkey.core.models import MosquittoConfig, TurnkeySettings
from mosquitto_turnkey.render.templates import ACL_TEMPLATE, CONFIG_TEMPLATE
from mosquitto_turnkey.utils.diagnostics import MosquittoConfigError

LOGGER = logging.getLogger(__name__)

CONFIG_FILE = "mosquitto.conf"
ACL_FILE = "mosquitto-acl.txt"
PASSWD_FILE = "mosquitto-pwd.txt"
CERT_FILE = "mosquitto-crt.pem"
KEY_FILE = "mosquitto-key.pem"

ARTIFACT_MODE = 0o600
CONTAINER_BIND_ADDRESS = "0.0.0.0"
CONTAINER_PERSISTENCE_LOCATION = "/app/var/mosquitto.d/"

# Rendered text is handed to the broker as-is, so no autoescaping.
_environment = Environment(
    loader=BaseLoader(),
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)


@dataclass(frozen=True)
class ArtifactSet:
    """Paths of the files rendered into one working directory."""

    config_file: Path
    acl_file: Path
    passwd_file: Optional[Path] = None
    cert_file: Optional[Path] = None
    key_file: Optional[Path] = None

    @property
    def tls(self) -> bool:
        return self.cert_file is not None


def requires_tls(config: MosquittoConfig) -> bool:
    """Return True when at least one listener speaks mqtts or wss."""
    return any(entry.secure for entry in config.listen)


def certificate_names(config: MosquittoConfig) -> List[str]:
    """Return the distinct listener names, in listener order."""
    names: List[str] = []
    for entry in config.listen:
        if entry.name is not None and entry.name not in names:
            names.append(entry.name)
    return names


def render_config(
    config: MosquittoConfig,
    settings: Optional[TurnkeySettings] = None,
    persistence_location: Optional[str] = None,
) -> str:
    """
    Render the main broker configuration file.

    Stanzas are emitted in a fixed order: logging, authentication,
    persistence, custom text, then one stanza per listener. A containerized
    broker binds every listener to the wildcard address because its network
    namespace is not the host's.
    """
    settings = settings or TurnkeySettings()

    if config.auth not in {"builtin", "plugin"}:
        raise MosquittoConfigError(f"invalid auth type '{config.auth}'", field="auth")

    if persistence_location is None:
        persistence_location = "./" if config.native else CONTAINER_PERSISTENCE_LOCATION

    listeners = [
        {
            "protocol": entry.protocol,
            "port": entry.port,
            "bind": entry.address if config.native else CONTAINER_BIND_ADDRESS,
            "websockets": entry.websockets,
            "secure": entry.secure,
        }
        for entry in config.listen
    ]

    template = _environment.from_string(CONFIG_TEMPLATE)
    return template.render(
        auth=config.auth,
        plugin_path=settings.auth_plugin_path,
        persistence=config.persistence,
        persistence_location=persistence_location,
        custom=config.custom,
        listeners=listeners,
        acl_file=ACL_FILE,
        passwd_file=PASSWD_FILE,
        cert_file=CERT_FILE,
        key_file=KEY_FILE,
    )


def render_acl(config: MosquittoConfig) -> str:
    """Return the caller's raw ACL, or the default per-account rules when it is empty."""
    if config.acl != "":
        return config.acl

    template = _environment.from_string(ACL_TEMPLATE)
    return template.render(passwd=config.passwd)


def write_artifact(path: Path, content: str | bytes) -> Path:
    """Write one artifact readable and writable by the owner only."""
    flags = os.O_WRONLY | os.O_CREAT | os.O_TRUNC
    fd = os.open(path, flags, ARTIFACT_MODE)
    with os.fdopen(fd, "wb") as handle:
        handle.write(content.encode("utf-8") if isinstance(content, str) else content)
    # os.open only applies the mode on creation
    os.chmod(path, ARTIFACT_MODE)
    LOGGER.debug("wrote %s", path)
    return path


async def write_artifacts(
    config: MosquittoConfig,
    workdir: Path,
    settings: Optional[TurnkeySettings] = None,
    provision: bool = True,
) -> ArtifactSet:
    """
    Render every broker artifact into ``workdir``.

    The credential file is produced through the password utility (see
    ``provision_passwords``) unless ``provision`` is False, in which case
    no credential file is written at all. All files are complete when this
    coroutine returns.
    """
    from mosquitto_turnkey.render.passwd import provision_passwords
    from mosquitto_turnkey.render.tls import generate_self_signed

    settings = settings or TurnkeySettings()

    config_file = write_artifact(workdir / CONFIG_FILE, render_config(config, settings))
    acl_file = write_artifact(workdir / ACL_FILE, render_acl(config))

    passwd_file: Optional[Path] = None
    if provision:
        passwd_file = await provision_passwords(config, workdir, settings)

    cert_file: Optional[Path] = None
    key_file: Optional[Path] = None
    if requires_tls(config):
        # RSA key generation is CPU bound; keep it off the event loop
        pair = await asyncio.to_thread(generate_self_signed, certificate_names(config))
        cert_file = write_artifact(workdir / CERT_FILE, pair.cert_pem)
        key_file = write_artifact(workdir / KEY_FILE, pair.key_pem)

    return ArtifactSet(
        config_file=config_file,
        acl_file=acl_file,
        passwd_file=passwd_file,
        cert_file=cert_file,
        key_file=key_file,
    )
