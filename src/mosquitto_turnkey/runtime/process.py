from __future__ import annotations

import asyncio
import codecs
import ipaddress
import logging
import os
from pathlib import Path
from typing import Callable, Dict, List, Optional

from mosquitto_turnkey.core.models import MosquittoConfig, TurnkeySettings
from mosquitto_turnkey.core.naming import CONTAINER_MOUNT, container_environment, container_name
from mosquitto_turnkey.render.artifacts import CONFIG_FILE
from mosquitto_turnkey.runtime.contracts import OUTPUT_STREAMS, OutputStream
from mosquitto_turnkey.utils.diagnostics import MosquittoError

LOGGER = logging.getLogger(__name__)

CHUNK_SIZE = 4096

OutputHandler = Callable[[OutputStream, str], None]


def _publish_address(address: str) -> str:
    # docker expects IPv6 host addresses in brackets
    try:
        if ipaddress.ip_address(address).version == 6:
            return f"[{address}]"
    except ValueError:
        pass
    return address


def build_container_cleanup_command(
    config: MosquittoConfig,
    workdir: Path,
    settings: Optional[TurnkeySettings] = None,
) -> Optional[List[str]]:
    """Return the command force-removing this run's broker container, or None for native runs."""
    if config.native:
        return None
    settings = settings or TurnkeySettings()
    return [settings.container_program, "rm", "-f", container_name("mosquitto", workdir)]


def build_broker_command(
    config: MosquittoConfig,
    workdir: Path,
    settings: Optional[TurnkeySettings] = None,
    uid: Optional[int] = None,
    gid: Optional[int] = None,
) -> List[str]:
    """
    Build the broker launch command.

    Native runs execute the broker on the rendered config file. Containerized
    runs mount the working directory at the image's config path and forward
    every listener port from its host address.
    """
    settings = settings or TurnkeySettings()

    if config.native:
        return [settings.mosquitto_program, "-c", str(workdir / CONFIG_FILE)]

    uid = os.getuid() if uid is None else uid
    gid = os.getgid() if gid is None else gid

    port_options: List[str] = []
    for entry in config.listen:
        port_options += ["-p", f"{_publish_address(entry.address)}:{entry.port}:{entry.port}"]

    return [
        settings.container_program,
        "run",
        "--rm",
        "--name", container_name("mosquitto", workdir),
        "-v", f"{workdir}:{CONTAINER_MOUNT}",
        *container_environment(uid, gid),
        *port_options,
        config.container,
    ]


class BrokerProcess:
    """
    The broker subprocess together with the tasks pumping its output.

    ``launch`` acquires, ``release`` gives everything back; ``release`` is
    idempotent so it can sit on every exit path. When the launched program
    is only a container client, ``cleanup_argv`` removes the container
    itself, which a signal to the client cannot reach after a SIGKILL.
    """

    def __init__(
        self,
        argv: List[str],
        cwd: Path,
        on_output: OutputHandler,
        cleanup_argv: Optional[List[str]] = None,
    ) -> None:
        self.argv = argv
        self.cwd = cwd
        self.on_output = on_output
        self.cleanup_argv = cleanup_argv
        self._process: Optional[asyncio.subprocess.Process] = None
        self._pumps: Dict[OutputStream, asyncio.Task] = {}
        self._released = False

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode if self._process is not None else None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def launch(self) -> None:
        """Spawn the subprocess and start one pump task per output stream."""
        if self._process is not None:
            raise RuntimeError("BrokerProcess already launched.")

        LOGGER.debug("launching %s", " ".join(self.argv))
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.argv,
                cwd=str(self.cwd),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise MosquittoError(f"cannot launch {self.argv[0]}: {exc}", program=self.argv[0]) from exc

        streams = {"stdout": self._process.stdout, "stderr": self._process.stderr}
        for name in OUTPUT_STREAMS:
            reader = streams[name]
            if reader is not None:
                self._pumps[name] = asyncio.ensure_future(self._pump(name, reader))
        LOGGER.info("broker process started (pid %s)", self._process.pid)

    async def _pump(self, stream: OutputStream, reader: asyncio.StreamReader) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await reader.read(CHUNK_SIZE)
            if not data:
                break
            text = decoder.decode(data)
            if text:
                self.on_output(stream, text)

        tail = decoder.decode(b"", final=True)
        if tail:
            self.on_output(stream, tail)

    def _signal(self, kill: bool) -> None:
        if self._process is None or self._process.returncode is not None:
            return
        try:
            if kill:
                LOGGER.warning("killing broker process %s", self._process.pid)
                self._process.kill()
            else:
                self._process.terminate()
        except ProcessLookupError:
            pass

    async def terminate(self, grace: float) -> Optional[int]:
        """
        Send SIGTERM, escalate to SIGKILL after ``grace`` seconds, and wait for exit.

        Never raises because of how the process ended.
        """
        if self._process is None:
            return None

        self._signal(kill=False)
        loop = asyncio.get_running_loop()
        escalation = loop.call_later(grace, self._signal, True)
        try:
            returncode = await self._process.wait()
        finally:
            escalation.cancel()

        LOGGER.info("broker process %s exited with code %s", self._process.pid, returncode)
        return returncode

    async def release(self, grace: float = 0.0) -> None:
        """
        Stop the process if still alive, reap it, remove its container and
        stop the output pumps.

        With a positive ``grace`` a live process gets SIGTERM first (which a
        container client forwards) and SIGKILL only after ``grace`` seconds.
        """
        if self._released:
            return
        self._released = True

        if self._process is not None:
            if self._process.returncode is None:
                if grace > 0:
                    await self.terminate(grace)
                else:
                    self._signal(kill=True)
            await self._process.wait()

            if self.cleanup_argv:
                await self._remove_container()

        # pumps end on EOF; cancel the ones still blocked on an inherited pipe
        pumps = list(self._pumps.values())
        if pumps:
            _, pending = await asyncio.wait(pumps, timeout=0.5)
            for task in pending:
                task.cancel()
            results = await asyncio.gather(*pumps, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    LOGGER.warning("output pump failed: %s", result)
        self._pumps.clear()

    async def _remove_container(self) -> None:
        LOGGER.debug("running %s", " ".join(self.cleanup_argv))
        try:
            process = await asyncio.create_subprocess_exec(
                *self.cleanup_argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            returncode = await process.wait()
        except OSError as exc:
            LOGGER.warning("cannot remove broker container: %s", exc)
            return

        # a container started with --rm is usually gone already
        if returncode != 0:
            LOGGER.debug("%s exited with code %s", self.cleanup_argv[0], returncode)
