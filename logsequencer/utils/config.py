"""
Configuration management for logsequencer.

Handles loading and merging configuration from:
- Built-in defaults
- A YAML configuration file
- Environment variables
"""

import copy
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import yaml

from logsequencer.errors import ConfigError
from logsequencer.severity import Severity

DEFAULTS: Dict[str, Any] = {
    "logger": {
        "level": "ERROR",
        "echo": False,
        "file": None,
        "retry_delay_ms": 2000,
        "forward_arg_limit": 1,
    },
    "diagnostics": {
        "level": "WARNING",
        "format": "console",
        "output": "stderr",
    },
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass
class LoggerConfig:
    """
    Resolved logger options.
    
    Attributes:
        min_severity: Calls below this severity are dropped
        echo_to_console: Echo every written line to stdout/stderr
        file_path: File to append to (None disables file output)
        retry_delay_ms: Fixed delay before retrying a failed write
        forward_arg_limit: Arguments kept when a worker forwards a call
    """
    min_severity: Severity = Severity.ERROR
    echo_to_console: bool = False
    file_path: Optional[str] = None
    retry_delay_ms: int = 2000
    forward_arg_limit: int = 1
    
    def __post_init__(self):
        self.min_severity = Severity.parse(self.min_severity)
        
        if self.file_path is not None:
            self.file_path = os.fspath(self.file_path)
        
        if self.retry_delay_ms < 0:
            raise ConfigError(f"retry_delay_ms must be >= 0, got {self.retry_delay_ms}")
        
        if self.forward_arg_limit < 0:
            raise ConfigError(
                f"forward_arg_limit must be >= 0, got {self.forward_arg_limit}"
            )


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigError(f"Not a boolean: {value!r}")


def _parse_int(key: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be an integer, got {value!r}") from None


class Config:
    """Configuration manager for logsequencer."""
    
    def __init__(self, config_file: Optional[str] = None):
        """
        Initialize configuration.
        
        Args:
            config_file: Path to YAML configuration file. If None, only
                defaults and environment overrides apply.
        """
        self._config: Dict[str, Any] = copy.deepcopy(DEFAULTS)
        
        if config_file:
            self._load_config_file(config_file)
        
        self._apply_env_overrides()
    
    def _load_config_file(self, config_file: str) -> None:
        """
        Load configuration from YAML file.
        
        Args:
            config_file: Path to YAML configuration file
        """
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                file_config = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(f"Cannot read config file {config_file}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_file}: {e}") from e
        
        if file_config is None:
            return
        
        if not isinstance(file_config, dict):
            raise ConfigError(f"Config file {config_file} must contain a mapping")
        
        self._merge_config(file_config)
    
    def _merge_config(self, new_config: Dict[str, Any]) -> None:
        self._config = self._deep_merge(self._config, new_config)
    
    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """
        Deep merge two dictionaries.
        
        Args:
            base: Base dictionary
            override: Override dictionary
        
        Returns:
            Merged dictionary
        """
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result
    
    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides."""
        if level := os.getenv("LOGSEQ_LEVEL"):
            self.set("logger.level", level)
        
        if file_path := os.getenv("LOGSEQ_FILE"):
            self.set("logger.file", file_path)
        
        if (echo := os.getenv("LOGSEQ_ECHO")) is not None:
            self.set("logger.echo", _parse_bool(echo))
        
        if retry_delay := os.getenv("LOGSEQ_RETRY_DELAY_MS"):
            self.set("logger.retry_delay_ms", _parse_int("LOGSEQ_RETRY_DELAY_MS", retry_delay))
    
    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.
        
        Args:
            key: Configuration key in dot notation (e.g., "logger.level")
            default: Default value if key not found
        
        Returns:
            Configuration value
        """
        keys = key.split(".")
        value = self._config
        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value
    
    def set(self, key: str, value: Any) -> None:
        """
        Set configuration value using dot notation.
        
        Args:
            key: Configuration key in dot notation
            value: Value to set
        """
        keys = key.split(".")
        config = self._config
        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value
    
    def to_dict(self) -> Dict[str, Any]:
        """Get entire configuration as dictionary."""
        return copy.deepcopy(self._config)
    
    def to_logger_config(self) -> LoggerConfig:
        """
        Resolve the logger section.
        
        Returns:
            Validated logger configuration
        
        Raises:
            ConfigError: If a value is invalid
        """
        return LoggerConfig(
            min_severity=Severity.parse(self.get("logger.level")),
            echo_to_console=_parse_bool(self.get("logger.echo")),
            file_path=self.get("logger.file"),
            retry_delay_ms=_parse_int("logger.retry_delay_ms", self.get("logger.retry_delay_ms")),
            forward_arg_limit=_parse_int(
                "logger.forward_arg_limit", self.get("logger.forward_arg_limit")
            ),
        )


# Global configuration instance
_config: Optional[Config] = None


def get_config(config_file: Optional[str] = None) -> Config:
    """
    Get global configuration instance.
    
    Args:
        config_file: Optional configuration file path
    
    Returns:
        Configuration instance
    """
    global _config
    if _config is None:
        _config = Config(config_file)
    return _config


def reset_config() -> None:
    """Reset global configuration (mainly for testing)."""
    global _config
    _config = None
