import re
from datetime import datetime, timezone
from typing import Optional


def get_current_datetime() -> datetime:
    return datetime.now(tz=timezone.utc)


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parses timestamps returned by the ECS API, e.g. `2024-07-01T08:16Z` or `2024-07-01T08:16:25Z`.
    """
    if not value:
        return None
    for fmt in ("%Y-%m-%dT%H:%MZ", "%Y-%m-%dT%H:%M:%SZ"):
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            pass
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


MEMORY_UNITS = {
    "B": 1,
    "K": 2**10,
    "M": 2**20,
    "G": 2**30,
    "T": 2**40,
    "P": 2**50,
}


def parse_memory(memory: str, as_units: str = "M") -> float:
    """
    Converts memory units to the units specified.
    >>> parse_memory("512Ki", as_units="M")
    0.5
    >>> parse_memory("60Gi", as_units="G")
    60.0
    """
    m = re.fullmatch(r"(\d+) *([kmgtp])(i|b)", memory.strip().lower())
    if not m:
        raise ValueError(f"Invalid memory: {memory}")
    value = int(m.group(1))
    units = m.group(2)
    value_in_bytes = value * MEMORY_UNITS[units.upper()]
    result = value_in_bytes / MEMORY_UNITS[as_units.upper()]
    return result

