"""
Configuration Loader - Bridge Between JSON Config and AppSettings
================================================================
Loads an optional JSON configuration file and maps it over the
environment-derived AppSettings.
"""

import json
import re
import os
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv

from .settings import AppSettings, LogLevel

load_dotenv()

# ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)(?::-([^}]*))?\}")

# Sections of config.json that map 1:1 onto AppSettings attributes
_SECTIONS = ("store", "client", "health", "api", "ticketing", "deployment", "logging")

# Secrets set through the environment always win over the JSON file
_ENV_PRIORITY_FIELDS = {
    "store": {"url"},
    "api": {"admin_api_key"},
    "ticketing": {"api_key"},
}


def _resolve_env_vars(data: Any) -> Any:
    """Recursively resolves ${VAR} / ${VAR:-default} placeholders, also inside longer strings."""
    if isinstance(data, dict):
        return {k: _resolve_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars(i) for i in data]
    elif isinstance(data, str):
        def replace_env_var(match):
            return os.getenv(match.group(1), match.group(2) or "")

        return ENV_VAR_PATTERN.sub(replace_env_var, data)
    return data


def apply_config_data(settings: AppSettings, config_data: Dict[str, Any]) -> AppSettings:
    """Map a resolved config dict onto an AppSettings instance in place."""
    for section_name in _SECTIONS:
        section_config = config_data.get(section_name)
        if not isinstance(section_config, dict):
            continue

        section = getattr(settings, section_name)
        protected = _ENV_PRIORITY_FIELDS.get(section_name, set())

        for key, value in section_config.items():
            if not hasattr(section, key):
                continue
            if key in protected and getattr(section, key):
                continue
            if section_name == "logging" and key == "level":
                level_name = str(value).upper()
                if level_name in LogLevel.__members__:
                    section.level = LogLevel[level_name]
                continue
            setattr(section, key, value)

    return settings


def load_app_settings_from_json(config_path: str = "config/config.json") -> AppSettings:
    """
    Load AppSettings from JSON configuration file.

    Args:
        config_path: Path to config.json file

    Returns:
        Configured AppSettings instance (defaults if the file cannot be used)
    """
    try:
        with open(config_path, 'r') as f:
            config_data = json.load(f)

        return apply_config_data(AppSettings(), _resolve_env_vars(config_data))

    except Exception as e:
        print(f"[WARNING] Failed to load JSON config from {config_path}: {e}")
        print("[INFO] Using default AppSettings configuration")
        return AppSettings()


def get_settings_from_working_directory() -> AppSettings:
    """
    Load settings from config.json in the current working directory, falling
    back to environment-only settings when no file exists.

    Returns:
        Configured AppSettings instance
    """
    possible_paths = [
        "config/config.json",
        "../config/config.json",
    ]

    for config_path in possible_paths:
        if Path(config_path).exists():
            return load_app_settings_from_json(config_path)

    return AppSettings()
