"""Shared validators and small helpers used across cunpt."""

from typing import Union

import numpy as np
from attrs import fields


ALLOWED_PRECISIONS = {np.dtype(np.float32), np.dtype(np.float64)}

PrecisionDType = Union[type[np.float32], type[np.float64]]


def in_attr(name, attrs_class_instance):
    """Checks if a name is in the attributes of a class instance."""
    field_names = {field.name for field in
                   fields(attrs_class_instance.__class__)}
    return name in field_names or ("_" + name) in field_names


def precision_converter(value) -> PrecisionDType:
    """Return the numpy scalar type for ``value``.

    Accepts numpy scalar types, dtypes or dtype strings such as
    ``"float64"``.
    """
    return np.dtype(value).type


def precision_validator(instance, attribute, value):
    """Reject precisions other than ``float32`` and ``float64``."""
    if np.dtype(value) not in ALLOWED_PRECISIONS:
        raise ValueError(
            f"{attribute.name} must be float32 or float64, got {value!r}"
        )


def is_power_of_two(value: int) -> bool:
    """Return ``True`` for positive integral powers of two."""
    return value > 0 and (value & (value - 1)) == 0


def power_of_two_validator(instance, attribute, value):
    """attrs validator requiring a positive power-of-two integer."""
    if not isinstance(value, (int, np.integer)) or isinstance(value, bool):
        raise TypeError(
            f"{attribute.name} must be an integer, got {type(value)}"
        )
    if not is_power_of_two(int(value)):
        raise ValueError(
            f"{attribute.name} must be a power of two, got {value}"
        )


def gttype_validator(dtype, min_):
    """Return a validator checking type and a strict lower bound."""

    def validator(instance, attribute, value):
        if not isinstance(value, dtype):
            raise TypeError(
                f"{attribute.name} must be {dtype}, got {type(value)}"
            )
        if value <= min_:
            raise ValueError(f"{attribute.name} must be > {min_}")

    return validator


def ceil_div(count: int, block_size: int) -> int:
    """Number of blocks of ``block_size`` needed to cover ``count``."""
    return -(-count // block_size)
