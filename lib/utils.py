from typing import Any, Iterable


__all__ = ("MISSING", "dig", "first_of")


class _MissingSentinel:
    __slots__ = ()

    def __eq__(self, other):
        return False

    def __bool__(self):
        return False

    def __hash__(self):
        return 0

    def __repr__(self):
        return "MISSING"


MISSING: Any = _MissingSentinel()
"""
MISSING is a sentinel object used as a placeholder for missing values, e.g. a backend client we could not configure.
"""


# Walks a dotted path (e.g. `data.customer.email`) through nested dicts. Returns None on any miss or non-dict hop.
def dig(obj: Any, path: str) -> Any:
    for key in path.split("."):
        if not isinstance(obj, dict):
            return None
        obj = obj.get(key)
    return obj


# Returns the first non-empty value found at any of the given paths, or None.
def first_of(obj: Any, paths: Iterable[str]) -> Any:
    for path in paths:
        value = dig(obj, path)
        if value not in (None, ""):
            return value
    return None
