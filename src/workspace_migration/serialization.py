"""
JSON serialization utilities for migration documents and reports.

Documents and reports carry datetimes, UUIDs and enums which the
standard JSON encoder rejects.

Example:
    >>> from workspace_migration.serialization import json_dumps, json_loads
    >>> from datetime import UTC, datetime
    >>>
    >>> json_str = json_dumps({"lastUpdated": datetime.now(UTC)})
    >>> parsed = json_loads(json_str)
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


class MigrationJSONEncoder(json.JSONEncoder):
    """
    JSON encoder that handles UUID, datetime and Enum objects.

    - UUID objects: converted to their string form
    - datetime objects: converted to ISO 8601 strings
    - Enum members: converted to their value
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


def json_dumps(obj: Any, indent: int | None = None) -> str:
    """
    Serialize object to a JSON string using MigrationJSONEncoder.

    Args:
        obj: Object to serialize
        indent: Optional indentation for human-readable output

    Returns:
        JSON string representation
    """
    return json.dumps(obj, cls=MigrationJSONEncoder, indent=indent)


def json_loads(s: str) -> Any:
    """
    Deserialize a JSON string.

    Datetime strings are NOT converted back to datetime objects; the
    migration only copies such fields verbatim.
    """
    return json.loads(s)


__all__ = [
    "MigrationJSONEncoder",
    "json_dumps",
    "json_loads",
]
