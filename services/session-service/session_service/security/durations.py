"""Compact duration strings such as ``15m`` or ``7d``."""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

DEFAULT_DURATION_SECONDS = 7 * 24 * 60 * 60

_UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
}

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([a-zA-Z])\s*$")


def parse_duration(value: str) -> int:
    """Convert a duration string into seconds.

    Supported units are ``s``, ``m``, ``h`` and ``d``. Anything else resolves
    to :data:`DEFAULT_DURATION_SECONDS` and logs a warning, so a typo in a TTL
    setting never yields a zero or negative lifetime.
    """
    match = _DURATION_RE.match(value or "")
    if match:
        amount, unit = match.groups()
        multiplier = _UNIT_SECONDS.get(unit.lower())
        if multiplier is not None:
            return int(amount) * multiplier
    logger.warning("unrecognised duration %r, falling back to %s seconds", value, DEFAULT_DURATION_SECONDS)
    return DEFAULT_DURATION_SECONDS
