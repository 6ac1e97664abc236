"""
Test suite for ConfigLoader component
Following TDD approach with AAA pattern and descriptive naming
"""

import json
import logging
import pytest
import tempfile
from pathlib import Path
from unittest.mock import patch
from hypersync_adapter.config_loader import (
    ConfigLoader, ConnectorSettings, EnvironmentError, configure_logging
)
from hypersync_adapter.exceptions import ConfigurationError
from hypersync_adapter.models import DataSetMethod


class TestConfigLoader:
    """Test suite for ConfigLoader TOML and JSON configuration loading functionality"""

    def test_load_toml_config_with_valid_file_returns_connector_settings(self):
        """
        Test that loading a valid TOML file returns properly populated ConnectorSettings
        """
        # Arrange
        valid_toml_content = """
        [connector]
        name = "example"
        data_source = "dataSource.json"

        [api]
        base_url = "https://api.example.com/v1/"

        [authentication]
        type = "bearer_token"
        token_env = "EXAMPLE_TOKEN"

        [retries]
        max_attempts = 4
        backoff_factor = 1.5

        [rate_limits]
        requests_per_second = 5

        [logging]
        level = "DEBUG"

        [messages]
        unassigned = "Unassigned"
        """

        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / 'settings.toml'
            config_path.write_text(valid_toml_content)

            # Act
            settings = ConfigLoader.load_toml_config(config_path)

            # Assert
            assert isinstance(settings, ConnectorSettings)
            assert settings.name == 'example'
            assert settings.data_source == Path(temp_dir) / 'dataSource.json'
            assert settings.base_url == 'https://api.example.com/v1/'
            assert settings.authentication['token_env'] == 'EXAMPLE_TOKEN'
            assert settings.retries['max_attempts'] == 4
            assert settings.rate_limits['requests_per_second'] == 5
            assert settings.messages == {'unassigned': 'Unassigned'}

    def test_load_toml_config_with_missing_file_raises_file_not_found_error(self):
        # Act & Assert
        with pytest.raises(FileNotFoundError):
            ConfigLoader.load_toml_config(Path('/nonexistent/settings.toml'))

    def test_load_toml_config_with_missing_required_keys_reports_all_missing_items(self):
        """
        Test that every missing required item is listed in one error
        """
        # Arrange
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / 'settings.toml'
            config_path.write_text('[connector]\n')

            # Act & Assert
            with pytest.raises(ConfigurationError) as exc_info:
                ConfigLoader.load_toml_config(config_path)

        message = str(exc_info.value)
        assert "Key 'name' in section [connector]" in message
        assert "Key 'data_source' in section [connector]" in message

    def test_load_toml_config_with_invalid_syntax_raises_configuration_error(self):
        # Arrange
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / 'settings.toml'
            config_path.write_text('[connector\nname = ')

            # Act & Assert
            with pytest.raises(ConfigurationError) as exc_info:
                ConfigLoader.load_toml_config(config_path)

        assert "Invalid TOML syntax" in str(exc_info.value)

    def test_load_toml_config_with_authentication_missing_type_raises_configuration_error(self):
        # Arrange
        content = '[connector]\nname = "x"\ndata_source = "d.json"\n[authentication]\napi_key = "k"\n'
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / 'settings.toml'
            config_path.write_text(content)

            # Act & Assert
            with pytest.raises(ConfigurationError) as exc_info:
                ConfigLoader.load_toml_config(config_path)

        assert "Key 'type' in section [authentication]" in str(exc_info.value)

    def test_load_data_source_config_with_valid_json_builds_data_sets(self):
        """
        Test that the JSON declaration is parsed into DataSet instances
        """
        # Arrange
        declaration = {
            'baseUrl': 'https://api.example.com',
            'dataSets': {
                'users': {'url': 'users', 'result': 'array', 'property': 'value',
                          'pagingScheme': {'type': 'pageBased'}},
                'createUser': {'url': 'users', 'method': 'post', 'result': 'object',
                               'body': {'name': '{{name}}'}}
            },
            'valueLookups': {'status': {'A': 'Active', '__default__': 'Unknown'}}
        }
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / 'dataSource.json'
            config_path.write_text(json.dumps(declaration))

            # Act
            config = ConfigLoader.load_data_source_config(config_path)

        # Assert
        assert config.base_url == 'https://api.example.com'
        assert config.data_sets['users'].property_path == 'value'
        assert config.data_sets['users'].paging_scheme == {'type': 'pageBased'}
        assert config.data_sets['createUser'].method == DataSetMethod.POST
        assert config.value_lookups['status']['A'] == 'Active'

    def test_parse_data_source_config_with_legacy_messages_uses_them_as_value_lookups(self):
        # Act
        config = ConfigLoader.parse_data_source_config(
            {'dataSets': {}, 'messages': {'severity': {'1': 'Low'}}}, 'https://override.example.com'
        )

        # Assert
        assert config.value_lookups == {'severity': {'1': 'Low'}}
        assert config.base_url == 'https://override.example.com'

    def test_parse_data_source_config_with_invalid_result_raises_configuration_error(self):
        # Act & Assert
        with pytest.raises(ConfigurationError) as exc_info:
            ConfigLoader.parse_data_source_config(
                {'dataSets': {'users': {'url': 'users', 'result': 'table'}}}
            )

        assert "Data set 'users' has invalid result 'table'" in str(exc_info.value)

    def test_parse_data_source_config_with_unsupported_method_raises_configuration_error(self):
        # Act & Assert
        with pytest.raises(ConfigurationError):
            ConfigLoader.parse_data_source_config(
                {'dataSets': {'users': {'url': 'users', 'method': 'DELETE'}}}
            )

    def test_validate_environment_variables_with_missing_vars_raises_environment_error(self):
        # Arrange
        settings = ConnectorSettings(
            name='example', data_source=Path('d.json'),
            authentication={'type': 'bearer_token', 'token_env': 'MISSING_TOKEN'}
        )

        # Act & Assert
        with patch.dict('os.environ', {}, clear=True):
            with pytest.raises(EnvironmentError) as exc_info:
                ConfigLoader.validate_environment_variables(settings)

        assert "MISSING_TOKEN" in str(exc_info.value)

    def test_validate_environment_variables_with_all_vars_present_returns_true(self):
        # Arrange
        settings = ConnectorSettings(
            name='example', data_source=Path('d.json'),
            authentication={'type': 'api_key', 'api_key_env': 'EXAMPLE_KEY'}
        )

        # Act
        with patch.dict('os.environ', {'EXAMPLE_KEY': 'k'}):
            result = ConfigLoader.validate_environment_variables(settings)

        # Assert
        assert result is True


class TestConfigureLogging:
    """Test suite for logging configuration"""

    def test_configure_logging_with_level_sets_root_level(self):
        # Act
        configure_logging({'level': 'warning'})

        # Assert
        assert logging.getLogger().level == logging.WARNING

    def test_configure_logging_with_invalid_level_raises_configuration_error(self):
        # Act & Assert
        with pytest.raises(ConfigurationError):
            configure_logging({'level': 'LOUD'})
