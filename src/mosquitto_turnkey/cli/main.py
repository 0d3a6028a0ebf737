import asyncio
import logging
import re
import typer
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from rich.logging import RichHandler

from mosquitto_turnkey.cli.formatter import OutputFormatter, error_console
from mosquitto_turnkey.config.loader import load_broker_config
from mosquitto_turnkey.core.models import MosquittoConfig, TurnkeySettings, default_config, resolve_config
from mosquitto_turnkey.render.artifacts import write_artifacts
from mosquitto_turnkey.runtime import Mosquitto, OutputChunkEvent
from mosquitto_turnkey.utils.diagnostics import MosquittoError

app = typer.Typer(name="mosquitto-turnkey", help="Disposable Mosquitto MQTT broker instances", rich_markup_mode=None)

LISTEN_URL_PATTERN = re.compile(
    r"^(?P<protocol>mqtts?|wss?)://(?:(?P<name>[^@/]+)@)?(?P<address>\[[^\]]+\]|[^:/\[\]]+):(?P<port>\d+)/?$"
)

EXIT_POLL_SECONDS = 0.2

ConfigOption = typer.Option(None, "--config", "-c", help="YAML file with 'broker' and 'settings' sections.")
NativeOption = typer.Option(None, "--native/--container", help="Run the local binary or the container image.")
ImageOption = typer.Option(None, "--image", help="Container image reference.")
AuthOption = typer.Option(None, "--auth", help="Authentication backend: builtin or plugin.")
PersistenceOption = typer.Option(None, "--persistence/--no-persistence", help="Persist the message store.")
ListenOption = typer.Option(None, "--listen", "-l", help="Listener URL proto://[name@]address:port (repeatable).")
UserOption = typer.Option(None, "--user", "-u", help="Account NAME:PASSWORD (repeatable).")


def parse_listen_url(value: str) -> Dict[str, Any]:
    """Parse ``proto://[name@]address:port`` into a listener mapping."""
    match = LISTEN_URL_PATTERN.match(value.strip())
    if match is None:
        raise typer.BadParameter(f"Invalid listener URL '{value}'. Expected proto://[name@]address:port")

    entry: Dict[str, Any] = {
        "protocol": match.group("protocol"),
        "address": match.group("address").strip("[]"),
        "port": int(match.group("port")),
    }
    if match.group("name"):
        entry["name"] = match.group("name")
    return entry


def parse_user(value: str) -> Dict[str, str]:
    """Parse ``NAME:PASSWORD`` into an account mapping."""
    username, separator, password = value.partition(":")
    if not separator or not username:
        raise typer.BadParameter(f"Invalid account '{value}'. Expected NAME:PASSWORD")
    return {"username": username, "password": password}


def _collect_overrides(
    native: Optional[bool],
    image: Optional[str],
    auth: Optional[str],
    persistence: Optional[bool],
    listen: Optional[List[str]],
    user: Optional[List[str]],
) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if native is not None:
        overrides["native"] = native
    if image is not None:
        overrides["container"] = image
    if auth is not None:
        overrides["auth"] = auth
    if persistence is not None:
        overrides["persistence"] = persistence
    if listen:
        overrides["listen"] = [parse_listen_url(value) for value in listen]
    if user:
        overrides["passwd"] = [parse_user(value) for value in user]
    return overrides


def _resolve(config_file: Optional[Path], overrides: Dict[str, Any]) -> Tuple[MosquittoConfig, TurnkeySettings]:
    if config_file is not None:
        if not config_file.exists():
            raise typer.BadParameter(f"Configuration file '{config_file}' does not exist.")
        base, settings = load_broker_config(config_file)
    else:
        base, settings = default_config(), TurnkeySettings()
    return resolve_config(overrides, base=base), settings


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=error_console, show_path=False)],
        force=True,
    )


def _relay(event: OutputChunkEvent) -> None:
    OutputFormatter.broker_output(event.stream, event.data)


async def _run_broker(config: MosquittoConfig, settings: TurnkeySettings) -> Optional[int]:
    broker = Mosquitto(config, settings=settings, on_stdout=_relay, on_stderr=_relay)
    await broker.start()
    OutputFormatter.log(f"Mosquitto is running (pid {broker.pid}). Press Ctrl-C to stop.", severity="success")
    OutputFormatter.print_summary(config, broker.artifacts)

    try:
        while not broker.exited:
            await asyncio.sleep(EXIT_POLL_SECONDS)
        OutputFormatter.log(f"Mosquitto exited on its own (exit code {broker.returncode}).", severity="warning")
        return broker.returncode
    finally:
        await broker.stop()


@app.command()
def run(
    config_file: Optional[Path] = ConfigOption,
    native: Optional[bool] = NativeOption,
    image: Optional[str] = ImageOption,
    auth: Optional[str] = AuthOption,
    persistence: Optional[bool] = PersistenceOption,
    listen: Optional[List[str]] = ListenOption,
    user: Optional[List[str]] = UserOption,
):
    """Start a broker, relay its output, and stop it on Ctrl-C."""
    try:
        broker_config, settings = _resolve(
            config_file, _collect_overrides(native, image, auth, persistence, listen, user)
        )
    except MosquittoError as exc:
        OutputFormatter.log(f"Configuration error: {exc}", severity="error")
        raise typer.Exit(code=1)

    _configure_logging(settings.log_level)

    try:
        returncode = asyncio.run(_run_broker(broker_config, settings))
    except KeyboardInterrupt:
        OutputFormatter.log("Mosquitto stopped.", severity="info")
        return
    except MosquittoError as exc:
        OutputFormatter.log(f"Mosquitto failed: {exc}", severity="error")
        raise typer.Exit(code=1)

    if returncode:
        raise typer.Exit(code=1)


@app.command()
def render(
    out: Path = typer.Option(..., "--out", "-o", help="Directory receiving the rendered files."),
    config_file: Optional[Path] = ConfigOption,
    native: Optional[bool] = NativeOption,
    image: Optional[str] = ImageOption,
    auth: Optional[str] = AuthOption,
    persistence: Optional[bool] = PersistenceOption,
    listen: Optional[List[str]] = ListenOption,
    user: Optional[List[str]] = UserOption,
):
    """Render the broker configuration, ACL and TLS files without launching anything."""
    try:
        broker_config, settings = _resolve(
            config_file, _collect_overrides(native, image, auth, persistence, listen, user)
        )
        out.mkdir(parents=True, exist_ok=True)
        artifacts = asyncio.run(write_artifacts(broker_config, out, settings, provision=False))
    except (MosquittoError, OSError) as exc:
        OutputFormatter.log(f"Render failed: {exc}", severity="error")
        raise typer.Exit(code=1)

    OutputFormatter.log(f"Rendered artifacts into {out}", severity="success")
    OutputFormatter.print_summary(broker_config, artifacts)


@app.command()
def defaults():
    """Print the default broker configuration as JSON."""
    OutputFormatter.print_data(default_config())


if __name__ == "__main__":
    app()
