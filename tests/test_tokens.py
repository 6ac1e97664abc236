"""
Test suite for token resolution
Following TDD approach with AAA pattern and descriptive naming
"""

import pytest
from datetime import date
from unittest.mock import patch
from hypersync_adapter.tokens import (
    TokenError, format_token_value, resolve_tokens, resolve_tokens_with_undefined_default
)


class TestResolveTokens:
    """Test suite for resolve_tokens"""

    def test_resolve_tokens_with_nested_path_replaces_token(self):
        """
        Test that dotted paths walk the context
        """
        # Arrange
        context = {'criteria': {'group': {'id': 42}}}

        # Act
        result = resolve_tokens('/groups/{{ criteria.group.id }}/members', context)

        # Assert
        assert result == '/groups/42/members'

    def test_resolve_tokens_with_token_producing_token_resolves_repeatedly(self):
        """
        Test that tokens introduced by a replacement are resolved too
        """
        # Arrange
        context = {'messages': {'label': 'Users in {{groupName}}'}, 'groupName': 'Admins'}

        # Act
        result = resolve_tokens('{{messages.label}}', context)

        # Assert
        assert result == 'Users in Admins'

    def test_resolve_tokens_with_unknown_token_raises_token_error(self):
        """
        Test that unresolvable tokens raise by default
        """
        # Act & Assert
        with pytest.raises(TokenError) as exc_info:
            resolve_tokens('{{missing.value}}', {'other': 1})

        assert "Invalid token: {{missing.value}}" in str(exc_info.value)

    def test_resolve_tokens_with_suppress_errors_leaves_unknown_token(self):
        """
        Test that suppressed errors keep the token text in place
        """
        # Act
        result = resolve_tokens('Hello {{name}} and {{missing.value}}', {'name': 'Ada'},
                                suppress_errors=True)

        # Assert
        assert result == 'Hello Ada and {{missing.value}}'

    def test_resolve_tokens_with_empty_token_raises_token_error(self):
        """
        Test that '{{}}' is never valid
        """
        # Act & Assert
        with pytest.raises(TokenError):
            resolve_tokens('/api/{{ }}', {}, suppress_errors=True)

    def test_resolve_tokens_with_none_value_returns_empty_string(self):
        """
        Test that a token resolving to nothing empties the whole string
        """
        # Act
        result = resolve_tokens('prefix-{{value}}', {'value': None})

        # Assert
        assert result == ''

    def test_resolve_tokens_with_undefined_default_returns_none_for_missing_value(self):
        """
        Test that the undefined-default variant returns None
        """
        # Act
        result = resolve_tokens_with_undefined_default('prefix-{{value}}', {'value': None})

        # Assert
        assert result is None

    def test_resolve_tokens_with_mapping_value_raises_token_error(self):
        """
        Test that objects cannot be inserted into strings
        """
        # Act & Assert
        with pytest.raises(TokenError):
            resolve_tokens('{{criteria}}', {'criteria': {'a': 1}})

    def test_resolve_tokens_with_json_body_resolves_every_level_without_mutating_input(self):
        """
        Test that dicts and lists are resolved as deep copies
        """
        # Arrange
        body = {'filter': {'owner': '{{userId}}', 'tags': ['{{tag}}', 'fixed']}, 'size': 10}
        context = {'userId': 'u-1', 'tag': 'prod'}

        # Act
        result = resolve_tokens(body, context)

        # Assert
        assert result == {'filter': {'owner': 'u-1', 'tags': ['prod', 'fixed']}, 'size': 10}
        assert body['filter']['owner'] == '{{userId}}'

    def test_resolve_tokens_with_env_token_reads_environment(self):
        """
        Test that env.NAME tokens read environment variables
        """
        # Act
        with patch.dict('os.environ', {'TENANT_ID': 'tenant-7'}):
            result = resolve_tokens('/tenants/{{env.TENANT_ID}}', {})

        # Assert
        assert result == '/tenants/tenant-7'

    def test_resolve_tokens_with_unset_env_token_raises_token_error(self):
        """
        Test that unset environment variables are invalid tokens
        """
        # Act & Assert
        with patch.dict('os.environ', {}, clear=True):
            with pytest.raises(TokenError):
                resolve_tokens('{{env.NOT_SET}}', {})


class TestFormatTokenValue:
    """Test suite for stringifying resolved values"""

    def test_format_token_value_with_booleans_returns_lowercase(self):
        # Act & Assert
        assert format_token_value(True) == 'true'
        assert format_token_value(False) == 'false'

    def test_format_token_value_with_integral_float_drops_decimal(self):
        # Act & Assert
        assert format_token_value(5.0) == '5'
        assert format_token_value(5.5) == '5.5'

    def test_format_token_value_with_date_returns_iso_format(self):
        # Act & Assert
        assert format_token_value(date(2024, 3, 1)) == '2024-03-01'
