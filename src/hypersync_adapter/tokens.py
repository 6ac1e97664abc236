"""
Token resolution for `{{path.to.value}}` placeholders in declarations
"""

import copy
import os
import re
from datetime import date, datetime
from typing import Any, Dict, Optional

from .exceptions import ConfigurationError

TokenContext = Dict[str, Any]

TOKEN_PATTERN = re.compile(r'\{\{.*?\}\}')

_MISSING = object()


class TokenError(ConfigurationError):
    """Raised when a placeholder token cannot be resolved"""
    pass


def format_token_value(value: Any) -> str:
    """Stringify a resolved value the way it should appear in a URL or body"""
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _lookup_token(variable: str, context: TokenContext) -> Any:
    """Walk the dotted variable path, returning _MISSING on failure"""
    parts = variable.split('.')

    if len(parts) == 2 and parts[0] == 'env':
        value = os.environ.get(parts[1])
        return value if value else _MISSING

    value: Any = context
    while parts:
        part = parts.pop(0)
        if not isinstance(value, dict):
            return _MISSING
        value = value.get(part)

    # Mappings and lists cannot be inserted into a string
    if isinstance(value, (dict, list)):
        return _MISSING
    return value


def _resolve_string(value: str, context: TokenContext, suppress_errors: bool,
                    missing_default: Optional[str]) -> Optional[str]:
    output: Optional[str] = value
    tokens = TOKEN_PATTERN.findall(output)
    unresolved = set()

    while tokens:
        for token in tokens:
            variable = token[2:-2].strip()
            if not variable:
                raise TokenError(f"Invalid token: {token}")

            resolved = _lookup_token(variable, context)
            if resolved is _MISSING:
                if suppress_errors:
                    unresolved.add(token)
                    continue
                raise TokenError(f"Invalid token: {token}")

            if resolved is None:
                return missing_default
            output = output.replace(token, format_token_value(resolved))

        # Resolving tokens may have introduced more tokens
        tokens = [t for t in TOKEN_PATTERN.findall(output) if t not in unresolved]

    return output


def _resolve_in_place(value: Any, context: TokenContext, suppress_errors: bool,
                      missing_default: Optional[str]) -> Any:
    if isinstance(value, str):
        return _resolve_string(value, context, suppress_errors, missing_default)
    if isinstance(value, dict):
        for key, item in value.items():
            value[key] = _resolve_in_place(item, context, suppress_errors, missing_default)
    elif isinstance(value, list):
        for index, item in enumerate(value):
            value[index] = _resolve_in_place(item, context, suppress_errors, missing_default)
    return value


def resolve_tokens(value: Any, context: TokenContext, suppress_errors: bool = False) -> Any:
    """
    Replace tokens in a string, or in strings at every depth of a JSON value

    Args:
        value: String or JSON-compatible value containing `{{...}}` tokens
        context: Layered values (params, messages, criteria, source row...)
        suppress_errors: Leave unresolvable tokens in place instead of raising

    Returns:
        Resolved string, or a resolved deep copy of the JSON value. A string
        whose token resolves to nothing becomes an empty string.

    Raises:
        TokenError: If a token is empty or cannot be resolved
    """
    if not isinstance(value, str):
        value = copy.deepcopy(value)
    return _resolve_in_place(value, context, suppress_errors, '')


def resolve_tokens_with_undefined_default(value: str, context: TokenContext,
                                          suppress_errors: bool = False) -> Optional[str]:
    """Same as `resolve_tokens` for strings, but returns None for missing values"""
    return _resolve_string(value, context, suppress_errors, None)
