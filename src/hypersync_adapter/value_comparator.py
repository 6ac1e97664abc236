"""
ValueComparator module providing the total order used to sort rows and options
"""

import functools
from datetime import date, datetime
from typing import Any, Callable


def _compare_blanks(a: Any, b: Any) -> int:
    # Defined values sort ahead of missing ones
    if a is None and b is None:
        return 0
    return -1 if b is None else 1


def _sign(a: Any, b: Any) -> int:
    return (a > b) - (a < b)


def compare_values(a: Any, b: Any) -> int:
    """
    Compare two row values

    Numbers compare numerically, booleans put True first, dates compare
    chronologically and strings compare case-insensitively. Mismatched types
    fall back to comparing their string forms.

    Returns:
        Negative if a sorts first, positive if b sorts first, 0 if equal
    """
    if a is None or b is None:
        return _compare_blanks(a, b)

    if isinstance(a, bool) and isinstance(b, bool):
        return 0 if a == b else (-1 if a else 1)

    if (isinstance(a, (int, float)) and isinstance(b, (int, float))
            and not isinstance(a, bool) and not isinstance(b, bool)):
        return _sign(a, b)

    if isinstance(a, datetime) and isinstance(b, datetime):
        return _sign(a, b)

    if (isinstance(a, date) and isinstance(b, date)
            and not isinstance(a, datetime) and not isinstance(b, datetime)):
        return _sign(a, b)

    a_text, b_text = str(a), str(b)
    return _sign(a_text.casefold(), b_text.casefold()) or _sign(a_text, b_text)


def sort_key(accessor: Callable[[Any], Any]) -> Callable[[Any], Any]:
    """Build a `sorted` key that orders items by `compare_values(accessor(item))`"""
    return functools.cmp_to_key(lambda x, y: compare_values(accessor(x), accessor(y)))
