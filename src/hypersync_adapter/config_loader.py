"""
ConfigLoader module for loading connector settings and data source declarations
"""

import json
import logging
import os
import tomllib
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, Any, Optional

from .exceptions import ConfigurationError
from .models import DataSet, DataSourceConfig


class EnvironmentError(Exception):
    """Raised when required environment variables are missing"""
    pass


@dataclass
class ConnectorSettings:
    """Runtime settings for a connector loaded from a TOML file"""
    name: str
    data_source: Path
    base_url: Optional[str] = None
    authentication: Dict[str, Any] = field(default_factory=dict)
    retries: Dict[str, Any] = field(default_factory=dict)
    rate_limits: Dict[str, Any] = field(default_factory=dict)
    logging: Dict[str, Any] = field(default_factory=dict)
    messages: Dict[str, str] = field(default_factory=dict)


class ConfigLoader:
    """Loads and validates connector settings and data source declarations"""

    # Required configuration sections and their mandatory keys
    REQUIRED_SECTIONS = {
        'connector': ['name', 'data_source']
    }

    # Optional sections that can have default empty values
    OPTIONAL_SECTIONS = [
        'api',
        'authentication',
        'retries',
        'rate_limits',
        'logging',
        'messages'
    ]

    @staticmethod
    def load_toml_config(config_path: Path) -> ConnectorSettings:
        """
        Load connector settings from TOML file

        Args:
            config_path: Path to the TOML configuration file

        Returns:
            ConnectorSettings with the data source path resolved relative
            to the settings file

        Raises:
            FileNotFoundError: If config file doesn't exist
            ConfigurationError: If required configuration is missing or the
                TOML syntax is invalid
        """
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path, 'rb') as f:
                config_data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML syntax in {config_path}: {e}")

        ConfigLoader._validate_required_sections(config_data)

        connector = config_data['connector']
        authentication = config_data.get('authentication', {})
        if authentication and 'type' not in authentication:
            raise ConfigurationError(
                "Missing required configuration items: Key 'type' in section [authentication]"
            )

        data_source = Path(connector['data_source'])
        if not data_source.is_absolute():
            data_source = config_path.parent / data_source

        return ConnectorSettings(
            name=connector['name'],
            data_source=data_source,
            base_url=config_data.get('api', {}).get('base_url'),
            authentication=authentication,
            retries=config_data.get('retries', {}),
            rate_limits=config_data.get('rate_limits', {}),
            logging=config_data.get('logging', {}),
            messages=config_data.get('messages', {})
        )

    @staticmethod
    def _validate_required_sections(config_data: Dict[str, Any]) -> None:
        """
        Validate that all required configuration sections and keys are present

        Args:
            config_data: Parsed TOML configuration data

        Raises:
            ConfigurationError: If any required section or key is missing
        """
        missing_items = []

        for section_name, required_keys in ConfigLoader.REQUIRED_SECTIONS.items():
            if section_name not in config_data:
                missing_items.append(f"Section [{section_name}]")
            else:
                section_data = config_data[section_name]
                for key in required_keys:
                    if key not in section_data:
                        missing_items.append(f"Key '{key}' in section [{section_name}]")

        if missing_items:
            raise ConfigurationError(
                f"Missing required configuration items: {', '.join(missing_items)}"
            )

    @staticmethod
    def load_data_source_config(config_path: Path,
                                base_url: Optional[str] = None) -> DataSourceConfig:
        """
        Load the JSON declaration of a REST data source

        Args:
            config_path: Path to the JSON data source file
            base_url: Overrides the declared `baseUrl` when given

        Returns:
            DataSourceConfig with every data set validated

        Raises:
            FileNotFoundError: If the file doesn't exist
            ConfigurationError: If the JSON is invalid or a data set
                declaration is invalid
        """
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Data source file not found: {config_path}")

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                config_data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON syntax in {config_path}: {e}")

        return ConfigLoader.parse_data_source_config(config_data, base_url)

    @staticmethod
    def parse_data_source_config(config_data: Dict[str, Any],
                                 base_url: Optional[str] = None) -> DataSourceConfig:
        if not isinstance(config_data, dict):
            raise ConfigurationError("Data source configuration must be a JSON object")

        data_sets = config_data.get('dataSets')
        if not isinstance(data_sets, dict):
            raise ConfigurationError("Data source configuration must declare dataSets")

        # `messages` is the legacy name for value lookups
        value_lookups = config_data.get('valueLookups', config_data.get('messages')) or {}

        return DataSourceConfig(
            base_url=base_url or config_data.get('baseUrl'),
            data_sets={name: DataSet.from_dict(name, definition)
                       for name, definition in data_sets.items()},
            value_lookups=dict(value_lookups)
        )

    @staticmethod
    def validate_environment_variables(settings: ConnectorSettings) -> bool:
        """
        Validate that all required environment variables are set

        Args:
            settings: ConnectorSettings to validate

        Returns:
            True if all environment variables are present

        Raises:
            EnvironmentError: If any required environment variables are missing
        """
        missing_vars = []

        for key, value in settings.authentication.items():
            if key.endswith('_env') and isinstance(value, str):
                if not os.getenv(value):
                    missing_vars.append(value)

        if missing_vars:
            raise EnvironmentError(
                f"Missing required environment variables: {', '.join(missing_vars)}"
            )

        return True

    @staticmethod
    def get_environment_value(env_var_name: str) -> str:
        """
        Get environment variable value with proper error handling

        Raises:
            EnvironmentError: If environment variable is not set
        """
        value = os.getenv(env_var_name)
        if value is None:
            raise EnvironmentError(f"Environment variable '{env_var_name}' is not set")
        return value


def configure_logging(logging_settings: Dict[str, Any]) -> None:
    """
    Configure the root logger from the [logging] settings section

    Recognised keys: level, format, log_file_name
    """
    level_name = str(logging_settings.get('level', 'INFO')).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        raise ConfigurationError(f"Invalid logging level: {level_name}")

    handlers = [logging.StreamHandler()]
    log_file_name = logging_settings.get('log_file_name')
    if log_file_name:
        handlers.append(logging.FileHandler(log_file_name, encoding='utf-8'))

    logging.basicConfig(
        level=level,
        format=logging_settings.get('format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s'),
        handlers=handlers,
        force=True
    )
