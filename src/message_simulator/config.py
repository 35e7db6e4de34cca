"""Config I/O for simulator.yaml."""

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from .conventions import CONFIG_FILENAME, HOME_ENV_VAR, SIMULATOR_HOME, STORAGE_DIR
from .schema import SimulatorConfig

logger = logging.getLogger(__name__)


def simulator_home() -> Path:
    """Return the simulator home directory ($MSGSIM_HOME or ~/.message-simulator)."""
    override = os.environ.get(HOME_ENV_VAR, "")
    return Path(override or SIMULATOR_HOME).expanduser()


def config_path() -> Path:
    return simulator_home() / CONFIG_FILENAME


def storage_directory(config: SimulatorConfig) -> Path:
    """Directory for file-backed storage, resolved against the home dir."""
    if config.storage.directory:
        return Path(config.storage.directory).expanduser()
    return simulator_home() / STORAGE_DIR


def load_config(path: Path | None = None) -> SimulatorConfig:
    """Load and parse simulator.yaml, returning defaults if missing or invalid.

    Unparsable YAML or invalid values log a warning and yield defaults so
    the simulator can always start.
    """
    path = path or config_path()
    if not path.exists():
        return SimulatorConfig()

    try:
        data = yaml.safe_load(path.read_text())
    except (OSError, yaml.YAMLError):
        logger.warning("Could not read %s. Using defaults.", path, exc_info=True)
        return SimulatorConfig()
    if not data:
        return SimulatorConfig()
    if not isinstance(data, dict):
        logger.warning("Ignoring %s: top level is not a mapping", path)
        return SimulatorConfig()

    try:
        return SimulatorConfig(**data)
    except ValidationError as exc:
        logger.warning("Invalid simulator.yaml at %s: %s. Using defaults.", path, exc)
        return SimulatorConfig()


def save_config(config: SimulatorConfig, path: Path | None = None) -> Path:
    """Write config as YAML; returns the path written."""
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump()
    path.write_text(yaml.dump(data, default_flow_style=False, sort_keys=False))
    return path
