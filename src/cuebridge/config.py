# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Configuration management for cuebridge.
Handles loading and saving settings from a YAML config file.
"""

import copy
import logging
from pathlib import Path
from typing import Any, TypedDict

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME: str = ".cuebridge.yaml"


class MatchingSettings(TypedDict):
    """Type definition for speech-to-script matching settings."""
    window_size: int
    match_threshold: float
    interim_throttle_ms: int
    recent_speech_chars: int


class TriggerSettings(TypedDict):
    """Type definition for reconstruction trigger settings."""
    debounce_ms: int
    min_skipped_chars: int
    min_skipped_sentences: int
    context_chars: int
    max_spans: int
    min_call_interval_ms: int
    request_timeout_s: float


class MergeSettings(TypedDict):
    """Type definition for suggestion merge settings."""
    staleness_limit_chars: int
    insert_search_limit: int


class GenerationSettings(TypedDict):
    """Type definition for the text-generation service."""
    provider: str  # "gemini" or "none"
    model: str
    api_key: str | None  # Falls back to GEMINI_API_KEY
    temperature: float
    max_output_tokens: int


class ServerSettings(TypedDict):
    """Type definition for the HTTP/WebSocket server."""
    host: str
    port: int


class Config(TypedDict):
    """Type definition for the complete configuration."""
    matching: MatchingSettings
    trigger: TriggerSettings
    merge: MergeSettings
    generation: GenerationSettings
    server: ServerSettings
    # Script loaded at startup (optional)
    script_path: str | None


# Default configuration values
DEFAULT_CONFIG: Config = {
    "matching": {
        "window_size": 20,
        "match_threshold": 0.8,
        # Interim results closer together than this are dropped
        "interim_throttle_ms": 50,
        "recent_speech_chars": 200,
    },

    "trigger": {
        "debounce_ms": 1200,
        "min_skipped_chars": 10,
        "min_skipped_sentences": 1,
        "context_chars": 300,
        "max_spans": 5,
        "min_call_interval_ms": 50,
        "request_timeout_s": 10.0,
    },

    "merge": {
        # Drop a suggestion once the speaker is this far past the gap
        "staleness_limit_chars": 500,
        # How far ahead of the cursor to look for a sentence end
        "insert_search_limit": 1000,
    },

    "generation": {
        "provider": "gemini",
        "model": "gemini-2.5-flash-lite",
        "api_key": None,
        "temperature": 0.4,
        "max_output_tokens": 100,
    },

    "server": {
        "host": "127.0.0.1",
        "port": 8000,
    },

    "script_path": None,
}


def get_config_path() -> Path:
    """Get the path to the config file in the current working directory."""
    return Path.cwd() / CONFIG_FILENAME


def _deep_merge(base, override):
    """
    Deep merge two dictionaries, with override taking precedence.
    Returns a new dictionary without modifying the originals.

    Args:
        base: Base dictionary to merge from.
        override: Dictionary with values that take precedence over base.

    Returns:
        New dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file, merged with defaults.

    Args:
        config_path: Optional path to config file. If None, uses default location.

    Returns:
        Configuration dictionary with all values (defaults + overrides from file).
    """
    if config_path is None:
        config_path = get_config_path()

    # Start with defaults
    config: dict[str, Any] = copy.deepcopy(dict(DEFAULT_CONFIG))

    # Load from file if it exists
    if config_path.exists():
        try:
            with open(config_path, encoding='utf-8') as f:
                file_config: Any = yaml.safe_load(f)
            if isinstance(file_config, dict):
                config = _deep_merge(config, file_config)
            elif file_config is not None:
                logger.warning("Ignoring config %s: expected a mapping", config_path)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Could not load config from %s: %s", config_path, e)

    return config  # type: ignore[return-value]


def save_config(config: Config, config_path: Path | None = None) -> bool:
    """
    Save configuration to file.

    Args:
        config: Configuration dictionary to save.
        config_path: Optional path to config file. If None, uses default location.

    Returns:
        True if save was successful, False otherwise.
    """
    if config_path is None:
        config_path = get_config_path()

    try:
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(dict(config), f, default_flow_style=False, sort_keys=False,
                      allow_unicode=True)
        return True
    except (OSError, yaml.YAMLError) as e:
        logger.error("Error saving config to %s: %s", config_path, e)
        return False


def get_matching_settings(config: Config) -> MatchingSettings:
    """Extract matching settings from config."""
    return config.get("matching", DEFAULT_CONFIG["matching"]).copy()  # type: ignore[return-value]


def get_trigger_settings(config: Config) -> TriggerSettings:
    """Extract reconstruction trigger settings from config."""
    return config.get("trigger", DEFAULT_CONFIG["trigger"]).copy()  # type: ignore[return-value]


def get_merge_settings(config: Config) -> MergeSettings:
    """Extract merge settings from config."""
    return config.get("merge", DEFAULT_CONFIG["merge"]).copy()  # type: ignore[return-value]


def get_generation_settings(config: Config) -> GenerationSettings:
    """Extract generation service settings from config."""
    return config.get("generation",
                      DEFAULT_CONFIG["generation"]
                      ).copy()  # type: ignore[return-value]


def get_server_settings(config: Config) -> ServerSettings:
    """Extract server settings from config."""
    return config.get("server", DEFAULT_CONFIG["server"]).copy()  # type: ignore[return-value]
