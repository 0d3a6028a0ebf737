from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import List, Optional, Sequence

from mosquitto_turnkey.core.models import MosquittoConfig, PasswdEntry, TurnkeySettings
from mosquitto_turnkey.core.naming import CONTAINER_MOUNT, container_environment, container_name
from mosquitto_turnkey.render.artifacts import PASSWD_FILE, write_artifact
from mosquitto_turnkey.utils.diagnostics import MosquittoProvisioningError

LOGGER = logging.getLogger(__name__)

HASH_ALGORITHM = "sha512-pbkdf2"


def build_passwd_command(
    config: MosquittoConfig,
    workdir: Path,
    entry: PasswdEntry,
    create: bool,
    settings: Optional[TurnkeySettings] = None,
    uid: Optional[int] = None,
    gid: Optional[int] = None,
) -> List[str]:
    """
    Build one password utility invocation.

    ``create`` adds ``-c`` so the first account truncates the file and the
    following ones append. Containerized runs use a throwaway container with
    the same uid/gid as the broker so file ownership stays consistent.
    """
    settings = settings or TurnkeySettings()
    flags = ["-H", HASH_ALGORITHM, "-b"] + (["-c"] if create else [])

    if config.native:
        return [
            settings.passwd_program,
            *flags,
            str(workdir / PASSWD_FILE),
            entry.username,
            entry.password,
        ]

    uid = os.getuid() if uid is None else uid
    gid = os.getgid() if gid is None else gid
    return [
        settings.container_program,
        "run",
        "--rm",
        "--name", container_name("mosquitto-passwd", workdir),
        "-v", f"{workdir}:{CONTAINER_MOUNT}",
        *container_environment(uid, gid),
        config.container,
        "mosquitto_passwd",
        *flags,
        f"{CONTAINER_MOUNT}/{PASSWD_FILE}",
        entry.username,
        entry.password,
    ]


def mask_command(command: Sequence[str], entry: PasswdEntry) -> str:
    """Render a command line for logging with the password replaced."""
    return " ".join("********" if part == entry.password and part else part for part in command)


async def _run_passwd_command(command: List[str], entry: PasswdEntry, cwd: Path) -> None:
    LOGGER.debug("running %s", mask_command(command, entry))
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            cwd=str(cwd),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise MosquittoProvisioningError(
            f"cannot run password utility for account '{entry.username}': {exc}",
            program=command[0],
        ) from exc

    try:
        _, stderr = await process.communicate()
    except asyncio.CancelledError:
        if process.returncode is None:
            process.kill()
            await process.wait()
        raise

    if process.returncode != 0:
        detail = stderr.decode("utf-8", errors="replace").strip()
        raise MosquittoProvisioningError(
            f"password utility failed for account '{entry.username}' "
            f"(exit code {process.returncode}){': ' + detail if detail else ''}",
            program=command[0],
        )


async def provision_passwords(
    config: MosquittoConfig,
    workdir: Path,
    settings: Optional[TurnkeySettings] = None,
) -> Path:
    """
    Produce the credential file, one utility run per account in list order.

    Runs are strictly sequential: the first one creates the file and the
    rest append to it.
    """
    settings = settings or TurnkeySettings()
    passwd_file = write_artifact(workdir / PASSWD_FILE, "")

    for index, entry in enumerate(config.passwd):
        command = build_passwd_command(config, workdir, entry, create=index == 0, settings=settings)
        await _run_passwd_command(command, entry, workdir)

    LOGGER.debug("provisioned %d account(s) into %s", len(config.passwd), passwd_file)
    return passwd_file
