import os
import re
import yaml
from pathlib import Path
from typing import Any, Dict, Tuple

from mosquitto_turnkey.core.models import MosquittoConfig, TurnkeySettings, resolve_config
from mosquitto_turnkey.utils.diagnostics import MosquittoConfigError

ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::([^}]+))?\}")

ALLOWED_SECTIONS = {"broker", "settings"}

def interpolate_env_vars(content: str) -> str:
    """Replace ${VAR} or ${VAR:default} with environment variables."""
    def replace_match(match: re.Match) -> str:
        var_name = match.group(1)
        default_value = match.group(2) if match.group(2) is not None else ""
        return os.environ.get(var_name, default_value)

    return ENV_VAR_PATTERN.sub(replace_match, content)

def load_config(path: Path) -> Dict[str, Any]:
    """
    Load a turnkey YAML file with environment variable interpolation.

    Only the 'broker' and 'settings' sections are kept. A missing file
    yields an empty dict; a malformed one is an error.
    """
    if not path.exists():
        return {}

    try:
        content = path.read_text(encoding="utf-8")
        full_config = yaml.safe_load(interpolate_env_vars(content)) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise MosquittoConfigError(f"cannot load configuration file {path}: {exc}") from exc

    if not isinstance(full_config, dict):
        raise MosquittoConfigError(f"configuration file {path} must contain a mapping at top level")

    return {k: v for k, v in full_config.items() if k in ALLOWED_SECTIONS}

def load_broker_config(path: Path) -> Tuple[MosquittoConfig, TurnkeySettings]:
    """Resolve the broker configuration and runtime settings stored in ``path``."""
    data = load_config(path)

    broker_section = data.get("broker") or {}
    settings_section = data.get("settings") or {}
    if not isinstance(broker_section, dict):
        raise MosquittoConfigError("section must be a mapping", field="broker")
    if not isinstance(settings_section, dict):
        raise MosquittoConfigError("section must be a mapping", field="settings")

    return resolve_config(broker_section), TurnkeySettings(**settings_section)
