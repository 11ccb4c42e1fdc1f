"""
Severity ordering for road defects.
Low < Medium < High; anything missing or unrecognised counts as Medium.
"""

from enum import Enum
from typing import Any, Dict


class Severity(str, Enum):
    """Severity levels as reported by the mobile app."""
    low = "Low"
    medium = "Medium"
    high = "High"


DEFAULT_SEVERITY = Severity.medium

# Severity level to rank mapping
SEVERITY_RANK: Dict[Severity, int] = {
    Severity.low: 1,
    Severity.medium: 2,
    Severity.high: 3,
}

_BY_NAME: Dict[str, Severity] = {s.value.lower(): s for s in Severity}


def normalize_severity(value: Any) -> Severity:
    """
    Coerce a raw severity value into a Severity.

    Accepts enum members and strings in any letter case. Missing, empty or
    unknown values fall back to Medium.
    """
    if isinstance(value, Severity):
        return value
    if isinstance(value, str):
        return _BY_NAME.get(value.strip().lower(), DEFAULT_SEVERITY)
    return DEFAULT_SEVERITY


def severity_rank(value: Any) -> int:
    return SEVERITY_RANK[normalize_severity(value)]


def max_severity(a: Any, b: Any) -> Severity:
    """Return the higher of two severities. Ties keep the first argument."""
    first, second = normalize_severity(a), normalize_severity(b)
    return second if SEVERITY_RANK[second] > SEVERITY_RANK[first] else first
