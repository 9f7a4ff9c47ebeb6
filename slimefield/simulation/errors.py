"""Errors -- the exception hierarchy shared by every slimefield module.

Configuration problems are reported before a run starts and are never
silently clamped.  Runtime invariant violations indicate corrupted state
(e.g. an agent pointing at a species that does not exist) and abort the
tick in which they are detected.
"""

from __future__ import annotations

import numbers


class SimulationError(Exception):
    """Base class for all slimefield errors."""


class ConfigError(SimulationError, ValueError):
    """Raised when run configuration is invalid."""


class InvariantViolation(SimulationError, RuntimeError):
    """Raised when simulation state breaks a structural invariant."""


def check_rate(name: str, value: float) -> float:
    """Validate a per-second rate, which must lie in ``[0, 1)``.

    Args:
        name: Human-readable name used in the error message.
        value: The rate to check.

    Returns:
        The rate as a float.

    Raises:
        ConfigError: If the rate is outside ``[0, 1)`` or not a number.
    """
    try:
        rate = float(value)
    except (TypeError, ValueError) as exc:
        msg = f"{name} must be a number, got {value!r}"
        raise ConfigError(msg) from exc
    if not 0.0 <= rate < 1.0:
        msg = f"{name} must be in [0, 1) per second, got {rate}"
        raise ConfigError(msg)
    return rate


def check_index(name: str, value: object) -> int:
    """Validate an integer id such as a layer index or a band width.

    Integral floats (``2.0``) are accepted; fractional values, booleans
    and non-numbers are not.

    Args:
        name: Human-readable name used in the error message.
        value: The value to check.

    Returns:
        The value as an int.

    Raises:
        ConfigError: If the value is not an integer.
    """
    if not isinstance(value, bool):
        if isinstance(value, numbers.Integral):
            return int(value)
        if isinstance(value, numbers.Real) and float(value).is_integer():
            return int(value)
    msg = f"{name} must be an integer, got {value!r}"
    raise ConfigError(msg)
