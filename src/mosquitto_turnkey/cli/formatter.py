import json
import typer
from typing import Any, Optional
from pydantic import BaseModel
from rich.console import Console
from rich.table import Table
from mosquitto_turnkey.core.models import MosquittoConfig
from mosquitto_turnkey.render.artifacts import ArtifactSet

# stderr console for turnkey messages, summaries and log records
error_console = Console(stderr=True)

# stdout console for relayed broker output
output_console = Console(highlight=False)

SEVERITY_STYLES = {
    "info": "white",
    "success": "green",
    "warning": "yellow",
    "error": "red",
    "critical": "bold red",
}

class OutputFormatter:
    """
    Terminal output for the CLI.
    Turnkey messages go to stderr; broker output and data go to stdout.
    """

    @staticmethod
    def log(message: str, severity: str = "info") -> None:
        """Print one turnkey message to stderr, colored by severity."""
        style = SEVERITY_STYLES.get(severity, "white")
        error_console.print(f"[{style}][TURNKEY] {message}[/{style}]")

    @staticmethod
    def broker_output(stream: str, data: str) -> None:
        """Relay one chunk of broker output without markup interpretation."""
        style = "dim" if stream == "stdout" else None
        output_console.print(data, end="", style=style, markup=False)

    @staticmethod
    def print_summary(config: MosquittoConfig, artifacts: Optional[ArtifactSet] = None) -> None:
        """
        Print the listeners of a configuration, and where its artifacts live.
        """
        table = Table(title="Mosquitto Listeners", header_style="bold")
        table.add_column("Protocol", style="bold")
        table.add_column("Address")
        table.add_column("Port")
        table.add_column("Name")

        for entry in config.listen:
            table.add_row(entry.protocol, entry.address, str(entry.port), entry.name or "")

        error_console.print(table)
        if artifacts is not None:
            error_console.print(f"Configuration: {artifacts.config_file}")
            if artifacts.tls:
                error_console.print(f"Certificate:   {artifacts.cert_file}")
        error_console.print()

    @staticmethod
    def print_data(data: Any) -> None:
        """Print a model (or any JSON-compatible value) to stdout as indented JSON."""
        if isinstance(data, BaseModel):
            data = data.model_dump(mode="json")
        typer.echo(json.dumps(data, indent=2))
