"""
Configuration management for the QR hunt server.
Supports both JSON file configuration and environment variable overrides.
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Dict, Any

logger = logging.getLogger(__name__)


class HuntConfig:
    """Configuration management for the QR hunt server."""

    DEFAULT_CONFIG = {
        "hunt_name": "QR Hunt",
        "server": {
            "host": "0.0.0.0",
            "port": 8081,
            "cors_enabled": True,
        },
        "database": {
            "path": "hunt.db",
            "busy_timeout": 5.0,  # seconds a writer waits for the lock
        },
        "game": {
            "default_points_per_node": 100,
            "leaderboard_limit": 10,
            "max_leaderboard_entries": 100,
            "max_answer_length": 2000,
            "team_code_length": 6,
        },
        "security": {
            "hash_iterations": 200000,
        },
        "cache": {
            "ttl": 5,
        },
        "logging": {
            "level": "INFO",
        },
    }

    def __init__(
        self,
        config_path: str = "hunt_config.json",
    ) -> None:
        """Initialize configuration from file, environment variables, or defaults."""
        self.config_path = Path(config_path)
        self.config = self._load_config()
        self._apply_env_overrides()
        self._validate_config()

    def _load_config(self) -> Dict[str, Any]:
        """
        Load configuration from JSON file or create default.

        @return: Dictionary containing the loaded configuration
        """
        if self.config_path.exists():
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    loaded_config = json.load(f)

                # Merge with defaults to ensure all keys exist
                config = copy.deepcopy(self.DEFAULT_CONFIG)
                self._deep_merge(config, loaded_config)
                return config

            except (json.JSONDecodeError, IOError) as e:
                logger.warning(
                    f"Error loading config from {self.config_path}: {e}; "
                    "using default configuration"
                )
                return copy.deepcopy(self.DEFAULT_CONFIG)
        else:
            self._create_default_config()
            return copy.deepcopy(self.DEFAULT_CONFIG)

    def _deep_merge(
        self,
        base_dict: Dict[str, Any],
        update_dict: Dict[str, Any],
    ) -> None:
        """
        Recursively merge dictionaries.

        @param base_dict: Base dictionary to merge into
        @param update_dict: Dictionary with updates to merge
        """
        for key, value in update_dict.items():
            if (
                key in base_dict
                and isinstance(base_dict[key], dict)
                and isinstance(value, dict)
            ):
                self._deep_merge(base_dict[key], value)
            else:
                base_dict[key] = value

    def _apply_env_overrides(self) -> None:
        """
        Apply environment variable overrides to configuration.

        Environment variables map onto nested keys (e.g. DB_PATH -> database.path).
        """
        env_mappings = {
            "HUNT_NAME": ("hunt_name",),

            # Server
            "HOST": ("server", "host"),
            "WEB_PORT": ("server", "port"),
            "CORS_ENABLED": ("server", "cors_enabled"),

            # Storage
            "DB_PATH": ("database", "path"),
            "DB_BUSY_TIMEOUT": ("database", "busy_timeout"),

            # Game rules
            "DEFAULT_POINTS_PER_NODE": ("game", "default_points_per_node"),
            "LEADERBOARD_LIMIT": ("game", "leaderboard_limit"),
            "MAX_LEADERBOARD_ENTRIES": ("game", "max_leaderboard_entries"),
            "MAX_ANSWER_LENGTH": ("game", "max_answer_length"),
            "TEAM_CODE_LENGTH": ("game", "team_code_length"),

            "HASH_ITERATIONS": ("security", "hash_iterations"),
            "CACHE_TTL": ("cache", "ttl"),
            "LOG_LEVEL": ("logging", "level"),
        }

        for env_var, config_path in env_mappings.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                converted_value = self._convert_env_value(env_value)
                self._set_nested_config(config_path, converted_value)

    def _convert_env_value(self, value: str) -> Any:
        """
        Convert environment variable string to appropriate type.

        @param value: String value from environment variable
        @return: Converted value (bool, int, float, or string)
        """
        if value.lower() in ("true", "yes", "on"):
            return True
        elif value.lower() in ("false", "no", "off"):
            return False

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        return value

    def _set_nested_config(self, path: tuple, value: Any) -> None:
        """
        Set a nested configuration value using a path tuple.

        @param path: Tuple representing the nested path (e.g., ("game", "leaderboard_limit"))
        @param value: Value to set
        """
        current = self.config
        for key in path[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]
        current[path[-1]] = value

    def _create_default_config(self) -> None:
        """
        Create a default configuration file.

        Writes the default configuration to the configured file path.
        """
        try:
            with open(self.config_path, "w", encoding="utf-8") as f:
                json.dump(self.DEFAULT_CONFIG, f, indent=2)
            logger.info(f"Created default configuration file: {self.config_path}")
        except IOError as e:
            logger.warning(f"Could not create config file {self.config_path}: {e}")

    def _reset(self, section: str, key: str, reason: str) -> None:
        default = self.DEFAULT_CONFIG[section][key]
        logger.warning(f"Invalid {section}.{key} ({reason}), using {default!r}")
        self.config[section][key] = default

    def _validate_config(self) -> None:
        """
        Validate configuration values.

        Checks configuration values for validity and restores defaults for invalid values.
        """
        positive_ints = [
            ("server", "port"),
            ("game", "leaderboard_limit"),
            ("game", "max_leaderboard_entries"),
            ("game", "max_answer_length"),
            ("game", "team_code_length"),
            ("security", "hash_iterations"),
        ]
        for section, key in positive_ints:
            value = self.config[section][key]
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                self._reset(section, key, "must be a positive integer")

        points = self.config["game"]["default_points_per_node"]
        if not isinstance(points, int) or isinstance(points, bool) or points < 0:
            self._reset("game", "default_points_per_node", "must be non-negative")

        for section, key in [("database", "busy_timeout"), ("cache", "ttl")]:
            value = self.config[section][key]
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value < 0:
                self._reset(section, key, "must be a non-negative number")

        level = str(self.config["logging"]["level"]).upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            self._reset("logging", "level", "unknown level")
        else:
            self.config["logging"]["level"] = level

    def get(
        self,
        *keys: str,
    ) -> Any:
        """
        Get nested configuration value.

        @param keys: Variable arguments representing nested keys to traverse
        @return: Configuration value at the specified path, None if not found
        """
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return None
        return value
