"""Human-readable rendering of submitted fields."""

from __future__ import annotations

import json

# Keys carrying admission credentials rather than submitted content.
CONTROL_FIELDS = ("csrfToken", "_csrf", "altcha")


def strip_control_fields(fields: dict) -> dict:
    return {k: v for k, v in fields.items() if k not in CONTROL_FIELDS}


def format_message(fields: dict) -> str:
    """Render ``key: value`` lines separated by blank lines.

    Empty strings and None are skipped, lists are comma-joined and any other
    value is JSON-encoded.
    """
    lines: list[str] = []
    for key, value in fields.items():
        if isinstance(value, str):
            if value != "":
                lines.append(f"{key}: {value}")
        elif isinstance(value, (list, tuple)):
            lines.append(f"{key}: {', '.join(str(v) for v in value)}")
        elif value is not None:
            encoded = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
            lines.append(f"{key}: {encoded}")
    return "\n\n".join(lines)
