"""
Test suite for the JSONata expression evaluator
Following TDD approach with AAA pattern and descriptive naming
"""

import pytest
from hypersync_adapter.expressions import ExpressionError, JsonataEvaluator


class TestJsonataEvaluator:
    """Test suite for JsonataEvaluator"""

    def test_evaluate_with_dotted_path_returns_nested_value(self):
        # Arrange
        evaluator = JsonataEvaluator()

        # Act
        result = evaluator.evaluate('owner.name', {'owner': {'name': 'Ada'}})

        # Assert
        assert result == 'Ada'

    def test_evaluate_with_missing_path_returns_none(self):
        # Arrange
        evaluator = JsonataEvaluator()

        # Act
        result = evaluator.evaluate('owner.email', {'owner': {'name': 'Ada'}})

        # Assert
        assert result is None

    def test_compile_with_same_expression_returns_cached_instance(self):
        # Arrange
        evaluator = JsonataEvaluator()

        # Act
        first = evaluator.compile('a.b')
        second = evaluator.compile('a.b')

        # Assert
        assert first is second

    def test_compile_with_malformed_expression_raises_expression_error(self):
        """
        Test that syntax errors become configuration errors
        """
        # Arrange
        evaluator = JsonataEvaluator()

        # Act & Assert
        with pytest.raises(ExpressionError) as exc_info:
            evaluator.compile('a.(b')

        assert "Invalid expression 'a.(b'" in str(exc_info.value)

    def test_register_function_with_callable_is_available_in_expression(self):
        """
        Test that registered functions are reachable as $name(...)
        """
        # Arrange
        expression = JsonataEvaluator().compile('$shout(name)')
        expression.register_function('shout', lambda value: value.upper())

        # Act
        result = expression.evaluate({'name': 'ada'})

        # Assert
        assert result == 'ADA'
