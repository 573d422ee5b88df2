from __future__ import annotations

import re

_DURATION_RE = re.compile(r"^(?P<value>\d+(?:\.\d+)?)(?P<unit>ms|s|m)?$")

_UNIT_MS = {"ms": 1.0, "s": 1000.0, "m": 60_000.0}


def parse_duration_to_ms(raw: str) -> int:
    """Parse '500ms', '3s', '1m' (or a bare millisecond count) into milliseconds."""
    match = _DURATION_RE.match(raw.strip())
    if not match:
        raise ValueError("duration must match <number>[ms|s|m]")

    value = float(match.group("value"))
    unit = match.group("unit") or "ms"
    return int(round(value * _UNIT_MS[unit]))
