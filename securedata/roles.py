"""
Secure Data API — API key → role resolution.

Keys look like ``ses-<role>-<secret>``.  The role is the second dash-separated
segment, taken verbatim; it is not checked against the permission table here.
"""

from __future__ import annotations

from typing import Optional

KEY_TAG = "ses"
KEY_SEPARATOR = "-"


def resolve_role(api_key: Optional[str]) -> Optional[str]:
    """Return the role encoded in *api_key*, or ``None`` for absent/malformed keys."""
    if not api_key:
        return None
    parts = api_key.split(KEY_SEPARATOR)
    if len(parts) < 2 or parts[0] != KEY_TAG:
        return None
    return parts[1]
