# Timestamps.py
#
# Imports
from datetime import datetime, timezone
from typing import Optional, Union
#
# Third-party Imports
#
# Local Imports
#
#######################################################################################################################
#
# Functions:

def utc_now_iso() -> str:
    """
    Current UTC time as an ISO 8601 string with millisecond precision and a 'Z' suffix.

    Example: "2025-01-01T10:00:00.123Z"
    """
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parses a local or server timestamp into an aware UTC datetime.

    Accepts ISO 8601 with 'Z' or an offset, fractional seconds of any length,
    and the SQLite "YYYY-MM-DD HH:MM:SS" form. Naive values are taken as UTC.
    Returns None for anything unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith(('Z', 'z')):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def is_strictly_newer(candidate: Union[str, datetime, None], reference: Union[str, datetime, None]) -> bool:
    """
    True when `candidate` is strictly later than `reference`.

    Either side being missing or unparseable counts as "not newer", so the
    caller falls back to the non-conflicting path.
    """
    candidate_dt = parse_timestamp(candidate)
    reference_dt = parse_timestamp(reference)
    if candidate_dt is None or reference_dt is None:
        return False
    return candidate_dt > reference_dt

#
# End of Timestamps.py
#######################################################################################################################
