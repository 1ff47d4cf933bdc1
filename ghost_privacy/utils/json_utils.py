"""
JSON utilities for request bodies.
"""

import json
from typing import Any, Dict, Optional, Union


def parse_json_object(raw: Union[str, bytes, None]) -> Optional[Dict[str, Any]]:
    """Parse a request body that must be a JSON object.

    Args:
        raw: Raw request body

    Returns:
        Parsed dictionary, or None if the body is empty, invalid JSON or not an object
    """
    if raw is None:
        return None
    if isinstance(raw, bytes):
        try:
            raw = raw.decode('utf-8')
        except UnicodeDecodeError:
            return None

    raw = raw.strip()
    if not raw:
        return None

    try:
        parsed = json.loads(raw)
    except ValueError:
        return None

    return parsed if isinstance(parsed, dict) else None
