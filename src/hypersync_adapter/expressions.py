"""
Expressions module wrapping the path/expression language used by declarations

Data set declarations use JSONata for `property` extraction, filter and join
predicates, transforms and paging response paths. The evaluator is injected
into the pipeline so another expression engine can be swapped in.
"""

from typing import Any, Callable, Dict, Protocol

import jsonata

from .exceptions import ConfigurationError


class ExpressionError(ConfigurationError):
    """Raised when an expression cannot be compiled or evaluated"""
    pass


class CompiledExpression(Protocol):
    """Protocol for a compiled expression"""

    def evaluate(self, data: Any) -> Any:
        """Evaluate against `data`, returning None when nothing matches"""
        ...

    def register_function(self, name: str, function: Callable[..., Any]) -> None:
        """Bind a callable reachable as `$name(...)` inside the expression"""
        ...


class ExpressionEvaluator(Protocol):
    """Protocol for compiling expression strings"""

    def compile(self, expression: str) -> CompiledExpression:
        ...


class JsonataExpression:
    """Compiled JSONata expression"""

    def __init__(self, source: str):
        self.source = source
        try:
            self._expression = jsonata.Jsonata(source)
        except Exception as e:
            raise ExpressionError(f"Invalid expression '{source}': {e}") from e

    def evaluate(self, data: Any) -> Any:
        try:
            return self._expression.evaluate(data)
        except Exception as e:
            raise ExpressionError(
                f"Failed to evaluate expression '{self.source}': {e}"
            ) from e

    def register_function(self, name: str, function: Callable[..., Any]) -> None:
        self._expression.register_lambda(name, function)


class JsonataEvaluator:
    """ExpressionEvaluator backed by jsonata-python with a compile cache"""

    def __init__(self):
        self._cache: Dict[str, JsonataExpression] = {}

    def compile(self, expression: str) -> JsonataExpression:
        compiled = self._cache.get(expression)
        if compiled is None:
            compiled = JsonataExpression(expression)
            self._cache[expression] = compiled
        return compiled

    def evaluate(self, expression: str, data: Any) -> Any:
        return self.compile(expression).evaluate(data)
