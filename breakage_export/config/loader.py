"""
Configuration management and loading.

Handles the database location, export roots and log level.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from breakage_export.storage.db import DEFAULT_DB_PATH

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class DatabaseConfig:
    """Where the entry store lives."""
    path: str = DEFAULT_DB_PATH


@dataclass(frozen=True)
class ExportConfig:
    """Export roots.
    
    ``private_root`` holds the internal ``motivos/`` tree. ``public_root``
    is an optional default for the public export directory prompt.
    """
    private_root: str = "."
    public_root: Optional[str] = None

    def __post_init__(self):
        """Validate the private root is set."""
        if not self.private_root:
            raise ValueError("private_root must not be empty")


@dataclass(frozen=True)
class LoggingConfig:
    """Root log level."""
    level: str = "INFO"

    def __post_init__(self):
        """Validate the level is a known logging level."""
        if self.level not in _LOG_LEVELS:
            raise ValueError(f"level must be one of: {sorted(_LOG_LEVELS)}")

    @property
    def level_number(self) -> int:
        return logging.getLevelName(self.level)


@dataclass(frozen=True)
class AppConfig:
    """Complete application configuration."""
    database: DatabaseConfig
    export: ExportConfig
    logging: LoggingConfig


def default_config() -> AppConfig:
    """Configuration used when no file is given."""
    return AppConfig(
        database=DatabaseConfig(),
        export=ExportConfig(),
        logging=LoggingConfig()
    )


def load_app_config(path: str) -> AppConfig:
    """Load and validate application configuration from a YAML file.
    
    Unknown keys are rejected so a misspelled option never silently
    falls back to a default.
    
    Args:
        path: Path to YAML configuration file
        
    Returns:
        Validated AppConfig object
        
    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    
    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")
    
    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")
    
    allowed_top_keys = {'database', 'export', 'logging'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")
    
    database_data = _section(raw_config, 'database', {'path'})
    export_data = _section(raw_config, 'export', {'private_root', 'public_root'})
    logging_data = _section(raw_config, 'logging', {'level'})
    
    database = DatabaseConfig(path=str(database_data.get('path') or DEFAULT_DB_PATH))
    
    public_root = export_data.get('public_root')
    export = ExportConfig(
        private_root=str(export_data.get('private_root', ".")),
        public_root=None if public_root is None else str(public_root)
    )
    
    level = logging_data.get('level', "INFO")
    if not isinstance(level, str):
        raise ValueError("'logging.level' must be a string")
    
    return AppConfig(
        database=database,
        export=export,
        logging=LoggingConfig(level=level.upper())
    )


def _section(raw_config: Dict[str, Any], name: str, allowed_keys: set) -> Dict[str, Any]:
    """Get an optional section and validate its keys.
    
    Raises:
        ValueError: If the section is not a dictionary or has unknown keys
    """
    data = raw_config.get(name)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown {name} keys: {unknown_keys}")
    return data
