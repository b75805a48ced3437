"""
Human-readable references for requests, moves and matches.

CLI-000042, TRJ-000007 and MTH-000123 are the formats shown to operators.
"""

import re

from movematch.app.core.exceptions import InvalidReferenceError

CLIENT_REQUEST_PREFIX = "CLI"
MOVE_PREFIX = "TRJ"
MATCH_PREFIX = "MTH"

_REFERENCE_RE = re.compile(r"^\s*([A-Za-z]{3})-0*(\d+)\s*$")


def format_reference(prefix: str, record_id: int) -> str:
    return f"{prefix}-{record_id:06d}"


def parse_reference(reference: str, expected_prefix: str) -> int:
    """Return the numeric id encoded in a reference such as ``MTH-000123``."""
    found = _REFERENCE_RE.match(reference or "")
    if not found or found.group(1).upper() != expected_prefix:
        raise InvalidReferenceError(reference)
    return int(found.group(2))
