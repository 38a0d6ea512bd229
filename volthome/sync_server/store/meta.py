"""
Opaque meta blob handling.

Clients attach an arbitrary string-keyed map to rooms, groups and devices.
It arrives either as a JSON object or as a JSON-encoded string. Parsing is
best-effort: anything that is not a JSON object is treated as absent and
never fails the surrounding operation.
"""

from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)


def parse_meta(value: Any) -> dict[str, Any] | None:
    """Normalize an incoming meta value into an ordered dict, or None."""
    if value is None:
        return None
    if isinstance(value, dict):
        return {str(key): item for key, item in value.items()}
    if isinstance(value, (str, bytes)):
        try:
            parsed = json.loads(value)
        except ValueError:
            logger.debug("Ignoring malformed meta string", extra={"length": len(value)})
            return None
        if isinstance(parsed, dict):
            return parsed
    return None


def dump_meta(meta: dict[str, Any] | None) -> str | None:
    if meta is None:
        return None
    return json.dumps(meta, ensure_ascii=False, default=str)


def load_meta(text: str | None) -> dict[str, Any] | None:
    """Decode a stored meta column. Corrupt values read back as None."""
    return parse_meta(text)
