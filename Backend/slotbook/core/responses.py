"""
Standardized API Response Module

Every endpoint answers with a JSON object carrying a boolean `ok`.

    Success:
        {"ok": true, ...domain fields}

    Error:
        {"ok": false, "error": "Human-readable reason", ...optional details}
"""

from typing import Any, Optional


def success_response(**data: Any) -> dict:
    """Create a success envelope with the given domain fields."""
    return {"ok": True, **data}


def error_response(message: str, details: Optional[dict] = None) -> dict:
    """Create an error envelope; `details` are merged at the top level."""
    response = {"ok": False, "error": message}
    if details:
        response.update(details)
    return response
