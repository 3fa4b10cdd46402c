"""
Output formatting for CLI commands.

Supports table, JSON and YAML output for status and history listings.
Tables shorten timestamps and long reasons so an attempt fits on one line.
"""

import json
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import yaml
from tabulate import tabulate  # type: ignore[import-untyped]

FORMATS = ("table", "json", "yaml")

MAX_CELL_WIDTH = 80

_TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T")


def _cell(value: Any) -> str:
    """Render one table cell."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (dict, list)):
        text = json.dumps(value)
    else:
        text = str(value)
        if _TIMESTAMP_RE.match(text):
            # ISO 8601 timestamps are shown to the second, without the offset
            try:
                text = datetime.fromisoformat(text).strftime("%Y-%m-%d %H:%M:%S")
            except ValueError:
                pass
    if len(text) > MAX_CELL_WIDTH:
        text = text[: MAX_CELL_WIDTH - 3] + "..."
    return text


def format_table(records: List[Dict[str, Any]], columns: Optional[List[str]] = None) -> str:
    """
    Format a list of records as a table.

    Args:
        records: Records to format
        columns: Columns to include (defaults to every key seen, sorted)
    """
    if not records:
        return "No data available."

    if columns is None:
        columns = sorted({key for record in records for key in record})

    rows = [[_cell(record.get(column)) for column in columns] for record in records]
    result: str = tabulate(rows, headers=columns, tablefmt="simple")
    return result


def format_output(data: Any, output_format: str, columns: Optional[List[str]] = None) -> str:
    """
    Render ``data`` in one of FORMATS.

    A mapping shown as a table becomes key/value rows.

    Raises:
        ValueError: If the format is not one of FORMATS
    """
    output_format = output_format.lower()
    if output_format not in FORMATS:
        raise ValueError(f"Unknown format: {output_format}. Use one of {', '.join(FORMATS)}.")

    if output_format == "json":
        return json.dumps(data, indent=2, default=str)
    if output_format == "yaml":
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)

    if isinstance(data, dict):
        return format_table(
            [{"key": key, "value": value} for key, value in data.items()],
            columns or ["key", "value"],
        )
    if isinstance(data, list):
        return format_table(data, columns)
    return format_table([{"value": data}], columns)
