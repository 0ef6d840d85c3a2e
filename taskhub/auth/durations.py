"""
Token lifetime parsing.

Lifetimes are configured as `<integer><unit>` strings with unit one of
s, m, h, d ("15m", "7d"). A malformed value never aborts startup: it falls
back to the supplied default and logs a warning.
"""

import re
from datetime import timedelta

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_ACCESS_LIFETIME = timedelta(minutes=15)
DEFAULT_REFRESH_LIFETIME = timedelta(days=7)

_DURATION_RE = re.compile(r"^(\d+)([smhd])$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(raw: str | None, default: timedelta, setting_name: str = "duration") -> timedelta:
    """
    Parse a duration string such as "15m" or "7d".

    "0s", "0m", "0h" and "0d" are valid zero durations.

    Args:
        raw: Configured value
        default: Returned (with a warning) when raw is malformed
        setting_name: Name of the setting, for the warning

    Returns:
        timedelta: Parsed duration or the default
    """
    match = _DURATION_RE.match(raw.strip()) if isinstance(raw, str) else None
    if match is None:
        logger.warning(
            "Invalid duration format, falling back to default",
            setting=setting_name,
            value=raw,
            default_seconds=int(default.total_seconds()),
        )
        return default

    amount, unit = match.groups()
    return timedelta(seconds=int(amount) * _UNIT_SECONDS[unit])
