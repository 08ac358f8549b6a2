"""
Utility functions for row conversion.
"""

import json
import logging
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Mapping

logger = logging.getLogger(__name__)


def json_serialize_safe(obj: Any) -> Any:
    """
    Safely serialize objects to JSON, handling datetime and enum objects.

    Args:
        obj: Object to serialize

    Returns:
        JSON-serializable representation of the object
    """
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif isinstance(obj, Enum):
        return getattr(obj, "value", str(obj))
    elif isinstance(obj, dict):
        return {str(k): json_serialize_safe(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple, set)):
        return [json_serialize_safe(item) for item in obj]
    else:
        return obj


def decode_json_field(value: Any) -> Dict[str, Any]:
    """
    Decode a JSON column value returned by Milvus into a dict.

    Strings that are not valid JSON objects are kept under a ``raw`` key.
    """
    if value is None:
        return {}
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except ValueError:
            logger.debug("Could not decode JSON field value, keeping it as raw")
            return {"raw": value}
        return decoded if isinstance(decoded, dict) else {"raw": decoded}
    if isinstance(value, Mapping):
        return dict(value)
    return {"raw": value}
