################################################################################
# VSNAP
#
# @file:        config.py
# @module:      vsnap.helpers.config
# @description: Configuration discovery, defaults, validation and persistence.
# @author:      Vladimir Fomin & Contributors
# @repository:  https://github.com/fominv/vsnap
# @version:     0.6.0
#
# ------------------------------------------------------------------------------
# Copyright (c) 2025 Vladimir Fomin
# MIT License: see LICENSE or https://opensource.org/licenses/MIT
# ==============================================================================
# Notes:
# - Searches DEFAULT_CONFIG_PATHS; a missing file means built-in defaults
# - Offers typed getters with environment overrides (VSNAP_<SECTION>_<OPTION>)
# - Writes are atomic (temp file + os.replace)
################################################################################

"""
Configuration management for vsnap.

Handles reading, writing, and validating the INI configuration file.
"""

import configparser
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..constants import DEFAULT_CONFIG_PATHS, DEFAULT_HELPER_IMAGE, DOCKER_API_TIMEOUT
from .logging import get_logger

logger = get_logger(__name__)

ENV_PREFIX = "VSNAP"


class Config:
    """
    Manages application configuration.

    Loads configuration from an INI file and falls back to built-in defaults
    for every option the file does not set.

    Attributes:
        config_file: Path of the configuration file (may not exist)
        _config: ConfigParser instance
        _defaults: Default configuration values
    """

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration.

        Args:
            config_path: Optional path to configuration file.
                         If not provided, searches standard locations.
        """
        self._defaults = get_defaults()
        self._config = configparser.ConfigParser(interpolation=None)
        self.config_file = self._find_config_file(config_path)

        if self.config_file.exists():
            self._load_config()
        else:
            logger.debug(f"No configuration file at {self.config_file}, using defaults")

    def _find_config_file(self, config_path: Optional[Path] = None) -> Path:
        """Find or determine configuration file path."""
        if config_path:
            return Path(config_path).expanduser()

        env_path = os.environ.get(f"{ENV_PREFIX}_CONFIG")
        if env_path:
            return Path(env_path).expanduser()

        for location in (DEFAULT_CONFIG_PATHS["user"], DEFAULT_CONFIG_PATHS["root"]):
            p = Path(location).expanduser()
            if p.exists():
                if os.access(p, os.R_OK):
                    logger.debug(f"Using config file: {p}")
                    return p
                logger.warning(f"Config file exists but not readable: {p}")

        return Path(DEFAULT_CONFIG_PATHS["user"]).expanduser()

    def _load_config(self):
        """Load configuration from file with UTF-8 encoding."""
        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                self._config.read_file(f)
            logger.debug(f"Configuration loaded from {self.config_file}")
        except (OSError, configparser.Error, UnicodeDecodeError) as e:
            logger.error(f"Failed to load configuration {self.config_file}: {e}")
            raise

    def get(self, section: str, option: str, fallback: Any = None) -> Any:
        """Get configuration value with environment override support."""
        env_var = f"{ENV_PREFIX}_{section.upper()}_{option.upper()}"
        env_value = os.environ.get(env_var)
        if env_value:
            logger.debug(f"Using environment override for {section}.{option}")
            return env_value

        try:
            return self._config.get(section, option)
        except (configparser.NoSectionError, configparser.NoOptionError):
            default_value = self._defaults.get(section, {}).get(option)
            if default_value is not None:
                return default_value
            return fallback

    def getint(self, section: str, option: str, fallback: int = 0) -> int:
        """Get integer configuration value ('auto' maps to -1)."""
        value = self.get(section, option, fallback)
        if isinstance(value, str):
            if value.strip().lower() == "auto":
                return -1
            try:
                return int(value)
            except ValueError:
                logger.warning(f"Invalid integer value for {section}.{option}: {value}")
                return fallback
        return int(value) if value is not None else fallback

    def getboolean(self, section: str, option: str, fallback: bool = False) -> bool:
        """Get boolean configuration value."""
        value = self.get(section, option, fallback)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in ("true", "yes", "1", "on")
        return fallback

    def set(self, section: str, option: str, value: Any):
        """Set configuration value."""
        if not self._config.has_section(section):
            self._config.add_section(section)
        self._config.set(section, option, str(value))

    def items(self) -> Dict[str, Dict[str, str]]:
        """Effective configuration: defaults overlaid with file values."""
        merged: Dict[str, Dict[str, str]] = {}
        for section, options in self._defaults.items():
            merged[section] = {
                option: str(self.get(section, option, "")) for option in options
            }
        for section in self._config.sections():
            merged.setdefault(section, {})
            for option in self._config.options(section):
                merged[section][option] = str(self.get(section, option, ""))
        return merged

    def validate(self) -> List[str]:
        """Validate configuration ranges."""
        errors = []

        timeout = self.getint("docker", "timeout", DOCKER_API_TIMEOUT)
        if not 0 < timeout <= 3600:
            errors.append(f"docker.timeout out of range (1-3600): {timeout}")

        if not str(self.get("docker", "helper_image", "")).strip():
            errors.append("docker.helper_image must not be empty")

        workers = self.getint("inventory", "parallel_workers", -1)
        if workers != -1 and not 1 <= workers <= 32:
            errors.append(
                f"inventory.parallel_workers out of range (1-32 or 'auto'): {workers}"
            )

        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        log_level = str(self.get("logging", "level", "WARNING")).upper()
        if log_level not in valid_levels:
            errors.append(
                f"Invalid log level: {log_level}. Valid: {', '.join(valid_levels)}"
            )

        return errors

    @property
    def docker_base_url(self) -> Optional[str]:
        value = self.get("docker", "base_url")
        return value or None

    @property
    def docker_timeout(self) -> int:
        return self.getint("docker", "timeout", DOCKER_API_TIMEOUT)

    @property
    def helper_image(self) -> str:
        return self.get("docker", "helper_image", DEFAULT_HELPER_IMAGE)

    @property
    def pull_missing_image(self) -> bool:
        return self.getboolean("docker", "pull_missing_image", True)

    @property
    def default_compression(self) -> bool:
        return self.getboolean("snapshot", "compression", False)

    @property
    def allow_in_use(self) -> bool:
        return self.getboolean("snapshot", "allow_in_use", False)

    @property
    def parallel_workers(self) -> int:
        workers = self.getint("inventory", "parallel_workers", -1)
        if workers == -1:
            from .system_utils import SystemUtils

            workers = SystemUtils.get_optimal_workers()
            logger.debug(f"Auto-detected {workers} parallel workers")
        return max(1, min(32, workers))


def get_defaults() -> Dict[str, Dict[str, Any]]:
    """Default configuration values."""
    return {
        "docker": {
            "base_url": "",
            "timeout": DOCKER_API_TIMEOUT,
            "helper_image": DEFAULT_HELPER_IMAGE,
            "pull_missing_image": "true",
        },
        "snapshot": {
            "compression": "false",
            "allow_in_use": "false",
        },
        "inventory": {
            "parallel_workers": "auto",
        },
        "logging": {
            "level": "WARNING",
            "file": "",
            "max_size_mb": 10,
            "backup_count": 3,
        },
    }


def create_default_config(path: Optional[Path] = None, force: bool = False) -> Path:
    """
    Create default configuration file.

    Args:
        path: Path where to create config file
        force: Overwrite existing file if True

    Returns:
        Path of the configuration file

    Raises:
        FileExistsError: If the file exists and force is False
    """
    if path is None:
        path = DEFAULT_CONFIG_PATHS["root"] if os.geteuid() == 0 else DEFAULT_CONFIG_PATHS["user"]
    path = Path(path).expanduser()

    if path.exists() and not force:
        raise FileExistsError(f"Configuration file already exists at {path}")

    config = configparser.ConfigParser(interpolation=None)
    for section, options in get_defaults().items():
        config.add_section(section)
        for option, value in options.items():
            config.set(section, option, str(value))

    header = (
        "# vsnap configuration file\n"
        "#\n"
        "# Environment variable overrides:\n"
        "#   VSNAP_CONFIG - path of this file\n"
        "#   VSNAP_<SECTION>_<OPTION> - override any option\n\n"
    )
    _write_atomically(path, config, header)
    logger.info(f"Default configuration created at {path}")
    return path


def _write_atomically(path: Path, config: configparser.ConfigParser, header: str = ""):
    path.parent.mkdir(parents=True, exist_ok=True, mode=0o755)
    temp_fd, temp_path = tempfile.mkstemp(
        dir=path.parent, prefix=".vsnap-config-", suffix=".tmp"
    )
    try:
        with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
            f.write(header)
            config.write(f)
        os.replace(temp_path, path)
        os.chmod(path, 0o644)
    except OSError as e:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        logger.error(f"Failed to write configuration {path}: {e}")
        raise
