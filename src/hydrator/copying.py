"""Structural copies of nested template values.

Templates are owned by the loader and shared between the comparison, the
request body and the report. Anything that is about to be mutated (read-only
fields stripped, a marker appended, a safety state forced) is copied first
so the original template never changes underneath another reader.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID


class InvalidArgumentError(ValueError):
    """Raised when a mandatory argument carries no usable value."""

    pass


# Immutable leaf values, returned as-is
_SCALAR_TYPES: tuple[type, ...] = (
    str,
    bytes,
    int,
    float,
    bool,
    Decimal,
    datetime,
    date,
    time,
    timedelta,
    UUID,
)


def deep_copy(value: Any) -> Any:
    """Copy a nested configuration value.

    No mapping or sequence in the result is shared with the input, at any
    depth. Empty containers copy to empty containers of the same kind.

    Args:
        value: The value to copy. Must not be None.

    Returns:
        A structurally equal value with no shared mutable containers.

    Raises:
        InvalidArgumentError: If value is None.
        TypeError: If a leaf is of an unsupported mutable type.
    """
    if value is None:
        raise InvalidArgumentError("deep_copy requires a value, got None")
    return _copy(value)


def _copy(value: Any) -> Any:
    # Nested None is a JSON null, not a missing argument
    if value is None or isinstance(value, _SCALAR_TYPES):
        return value
    if isinstance(value, Mapping):
        return {key: _copy(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_copy(item) for item in value]
    if isinstance(value, tuple):
        return tuple(_copy(item) for item in value)
    if isinstance(value, set | frozenset):
        return type(value)(_copy(item) for item in value)
    raise TypeError(f"Cannot copy value of type {type(value).__name__}")
