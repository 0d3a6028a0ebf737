from __future__ import annotations

import logging
import shutil
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Callable, Dict, List, Optional

from mosquitto_turnkey.core.models import (
    ConfigOverrides,
    MosquittoConfig,
    TurnkeySettings,
    resolve_config,
)
from mosquitto_turnkey.render.artifacts import ArtifactSet, write_artifacts
from mosquitto_turnkey.runtime.contracts import (
    OUTPUT_STREAMS,
    BrokerEvent,
    BrokerState,
    OutputChunkEvent,
    OutputStream,
    transition_broker_state,
)
from mosquitto_turnkey.runtime.process import (
    BrokerProcess,
    build_broker_command,
    build_container_cleanup_command,
)
from mosquitto_turnkey.runtime.readiness import wait_for_banner
from mosquitto_turnkey.runtime.workdir import WorkingDirectory
from mosquitto_turnkey.utils.diagnostics import (
    MosquittoEnvironmentError,
    MosquittoTeardownError,
    MosquittoUsageError,
)

LOGGER = logging.getLogger(__name__)

OutputCallback = Callable[[OutputChunkEvent], None]


class Mosquitto:
    """
    Lifecycle controller for exactly one external Mosquitto broker.

    The configuration is resolved once at construction. ``start`` renders
    the artifacts into a fresh working directory, launches the broker and
    waits for its startup banner; ``stop`` terminates it and removes the
    directory. Output of both streams is accumulated for ``logs`` and
    pushed to subscribers chunk by chunk.
    """

    def __init__(
        self,
        config: ConfigOverrides = None,
        *,
        settings: Optional[TurnkeySettings] = None,
        on_stdout: Optional[OutputCallback] = None,
        on_stderr: Optional[OutputCallback] = None,
        base_dir: Optional[Path] = None,
    ) -> None:
        self.config: MosquittoConfig = resolve_config(config)
        self.settings = settings or TurnkeySettings()
        self.base_dir = base_dir

        self.state: BrokerState = BrokerState.STOPPED
        self.active_config: Optional[MosquittoConfig] = None
        self.artifacts: Optional[ArtifactSet] = None

        self._workdir: Optional[WorkingDirectory] = None
        self._process: Optional[BrokerProcess] = None
        self._resources: Optional[AsyncExitStack] = None
        self._output: List[str] = []
        self._subscribers: Dict[OutputStream, List[OutputCallback]] = {name: [] for name in OUTPUT_STREAMS}

        if on_stdout is not None:
            self.subscribe("stdout", on_stdout)
        if on_stderr is not None:
            self.subscribe("stderr", on_stderr)

    # ---------- state ----------
    @property
    def started(self) -> bool:
        return self.state == BrokerState.RUNNING

    @property
    def workdir(self) -> Optional[Path]:
        if self._workdir is None or not self._workdir.exists:
            return None
        return self._workdir.path

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode if self._process is not None else None

    @property
    def exited(self) -> bool:
        """True when a launched broker process has terminated on its own or been stopped."""
        return self._process is not None and self._process.returncode is not None

    def _transition(self, event: BrokerEvent) -> None:
        self.state = transition_broker_state(self.state, event)

    # ---------- output ----------
    def subscribe(self, stream: OutputStream, callback: OutputCallback) -> Callable[[], None]:
        """Register a per-chunk callback for one stream; returns an unsubscribe function."""
        if stream not in self._subscribers:
            raise MosquittoUsageError(f"unknown output stream '{stream}'")
        self._subscribers[stream].append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers[stream]:
                self._subscribers[stream].remove(callback)

        return unsubscribe

    def _handle_output(self, stream: OutputStream, data: str) -> None:
        self._output.append(data)
        event = OutputChunkEvent(stream=stream, data=data)
        for callback in list(self._subscribers[stream]):
            try:
                callback(event)
            except Exception:
                LOGGER.exception("%s subscriber failed", stream)

    def logs(self) -> str:
        """Return everything the broker has written to stdout and stderr so far."""
        return "".join(self._output)

    # ---------- lifecycle ----------
    def _ensure_programs(self, config: MosquittoConfig) -> None:
        if config.native:
            programs = [self.settings.mosquitto_program, self.settings.passwd_program]
        else:
            programs = [self.settings.container_program]

        for program in programs:
            if shutil.which(program) is None:
                raise MosquittoEnvironmentError(program)

    async def start(self, overrides: ConfigOverrides = None) -> None:
        """
        Render the artifacts, launch the broker and wait until it is ready.

        ``overrides`` adjust the construction-time configuration for this run
        only. On any failure every resource acquired so far is released and
        the controller is back in the stopped state.
        """
        if self.state != BrokerState.STOPPED:
            raise MosquittoUsageError("already started")

        config = resolve_config(overrides, base=self.config) if overrides else self.config
        self._ensure_programs(config)

        self._transition(BrokerEvent.START)
        self.active_config = config
        self._output = []
        self._process = None
        LOGGER.info("starting Mosquitto (%s)", "native" if config.native else config.container)

        try:
            async with AsyncExitStack() as stack:
                workdir = WorkingDirectory(base_dir=self.base_dir)
                path = workdir.create()
                stack.callback(workdir.cleanup)
                self._workdir = workdir

                self.artifacts = await write_artifacts(config, path, self.settings)

                process = BrokerProcess(
                    build_broker_command(config, path, self.settings),
                    cwd=path,
                    on_output=self._handle_output,
                    cleanup_argv=build_container_cleanup_command(config, path, self.settings),
                )
                stack.push_async_callback(process.release, self.settings.stop_grace)
                self._process = process
                await process.launch()

                await wait_for_banner(
                    self.logs,
                    timeout=self.settings.readiness_timeout,
                    interval=self.settings.readiness_interval,
                )

                self._resources = stack.pop_all()
        except BaseException:
            self._transition(BrokerEvent.START_FAILED)
            self.artifacts = None
            raise

        self._transition(BrokerEvent.READY)
        LOGGER.info("Mosquitto is running (pid %s)", self.pid)

    async def stop(self) -> None:
        """
        Terminate the broker (SIGTERM, then SIGKILL after the grace period)
        and remove the working directory.

        The controller always ends up stopped; only a failure to release a
        resource is reported, after the state has been reset.
        """
        if self.state != BrokerState.RUNNING:
            raise MosquittoUsageError("still not started")

        self._transition(BrokerEvent.STOP)
        LOGGER.info("stopping Mosquitto (pid %s)", self.pid)

        resources, self._resources = self._resources, None
        try:
            if self._process is not None:
                try:
                    await self._process.terminate(self.settings.stop_grace)
                except OSError as exc:
                    LOGGER.warning("ignoring error while terminating broker: %s", exc)
            if resources is not None:
                await resources.aclose()
        except OSError as exc:
            raise MosquittoTeardownError(f"cannot release broker resources: {exc}") from exc
        finally:
            self.artifacts = None
            self._transition(BrokerEvent.STOPPED)
            LOGGER.info("Mosquitto stopped")

    async def __aenter__(self) -> "Mosquitto":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self.started:
            await self.stop()
