"""
Preset value validators shared by the table mappers and the Excel parser.
"""

import re
from typing import Any, Optional, Sequence


# Preset regex patterns for common validations
PRESET_PATTERNS = {
    "email": r"^[^@\s]+@[^@\s]+\.[^@\s]+$",
    "uuid": r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$",
    "integer": r"^[+-]?\d+$",
    "number": r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$",
}

_COMPILED = {name: re.compile(pattern) for name, pattern in PRESET_PATTERNS.items()}

TRUE_LITERALS = frozenset({"true", "yes", "1", "y"})
FALSE_LITERALS = frozenset({"false", "no", "0", "n"})


def matches_preset(value: Any, preset_name: str) -> bool:
    """
    Check a value against a preset pattern.

    Args:
        value: Value to check; converted to stripped text.
        preset_name: Key of ``PRESET_PATTERNS``.

    Returns:
        True when the whole value matches.
    """
    pattern = _COMPILED.get(preset_name)
    if pattern is None:
        raise KeyError(f"Unknown preset validator: {preset_name}")
    if value is None:
        return False
    return bool(pattern.match(str(value).strip()))


def parse_boolean(value: Any) -> Optional[bool]:
    """Parse true/yes/1/y and false/no/0/n (any case); None for anything else."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if value is None:
        return None
    text = str(value).strip().lower()
    if text in TRUE_LITERALS:
        return True
    if text in FALSE_LITERALS:
        return False
    return None


def is_boolean_literal(value: Any) -> bool:
    if isinstance(value, bool):
        return True
    if not isinstance(value, str):
        return False
    return value.strip().lower() in ("true", "false")


def match_allowed_value(value: Any, allowed: Sequence[str]) -> Optional[str]:
    """Return the canonical spelling of ``value`` among ``allowed`` (case-insensitive)."""
    if value is None:
        return None
    text = str(value).strip().lower()
    for candidate in allowed:
        if candidate.lower() == text:
            return candidate
    return None


def join_choices(values: Sequence[str]) -> str:
    """Format choices as ``A, B, or C`` for error messages."""
    values = list(values)
    if not values:
        return ""
    if len(values) == 1:
        return values[0]
    if len(values) == 2:
        return f"{values[0]} or {values[1]}"
    return f"{', '.join(values[:-1])}, or {values[-1]}"
