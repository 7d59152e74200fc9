import yaml
import logging
from pathlib import Path

from core.errors import SettingsUnavailable


def load_config(config_path: str = "config.yml") -> dict:
    """Load YAML configuration file."""
    config_file = Path(config_path)
    if not config_file.exists():
        raise SettingsUnavailable(f"Config file not found at {config_file.resolve()}")

    try:
        with open(config_file, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise SettingsUnavailable(f"Unable to read {config_file}: {e}") from e

    if data is None:
        logging.debug(f"[SETTINGS] {config_file} is empty; using defaults")
        return {}
    if not isinstance(data, dict):
        raise SettingsUnavailable(f"{config_file} must contain a mapping at the top level")
    return data
