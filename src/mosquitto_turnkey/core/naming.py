from pathlib import Path

WORKDIR_PREFIX = "mosquitto-"
CONTAINER_MOUNT = "/mosquitto"


def container_name(role: str, workdir: Path) -> str:
    """Return a per-run container name derived from the working directory, e.g. ``mosquitto-passwd-k3j9x0``."""
    suffix = workdir.name.removeprefix(WORKDIR_PREFIX)
    return f"{role}-{suffix}"


def container_environment(uid: int, gid: int) -> list[str]:
    """Return the ``-e`` options the image's run-command script expects."""
    return [
        "-e", f"MOSQUITTO_ETCDIR={CONTAINER_MOUNT}",
        "-e", f"MOSQUITTO_VARDIR={CONTAINER_MOUNT}",
        "-e", f"MOSQUITTO_UID={uid}",
        "-e", f"MOSQUITTO_GID={gid}",
    ]
