"""Identifier and cohort-code normalization shared by the parser, roster and matcher."""

from __future__ import annotations

import re

_LEVEL_CODE_RE = re.compile(r"^([+-]?\d+)(?:\.0*)?(?:\s*l(?:evel)?)?$", re.IGNORECASE)


def canonicalize_identifier(value: object | None) -> str:
    """Trim and case-fold an external identifier for comparison."""

    if value is None:
        return ""
    return str(value).strip().casefold()


def coerce_cohort_code(value: object | None) -> int | str | None:
    """
    Coerce a cohort code to a comparable representation.

    Numeric codes become ``int`` so ``"100"``, ``100`` and ``"100.0"`` compare
    equal. A trailing level suffix is dropped, so ``"100L"`` and ``"100 Level"``
    are 100 as well. Anything else is kept as a trimmed string. Blank values
    map to ``None``.
    """

    if value is None:
        return None
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else str(value)
    text = str(value).strip()
    if not text:
        return None
    match = _LEVEL_CODE_RE.match(text)
    if match:
        return int(match.group(1))
    return text


def cohort_codes_match(declared: object | None, actual: object | None) -> bool:
    left = coerce_cohort_code(declared)
    right = coerce_cohort_code(actual)
    if left is None or right is None:
        return False
    if isinstance(left, int) != isinstance(right, int):
        return str(left) == str(right)
    return left == right
