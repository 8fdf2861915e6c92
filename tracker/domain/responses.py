"""
Response envelope helpers shared by the presentation routes.

- Success: { "success": true, "data": <payload>, "meta": {...} }
- Error:   { "success": false, "error": { "code", "message", "details", "retryable" } }
"""
from typing import Any


def success_response(data: Any, meta: dict[str, Any] | None = None) -> dict[str, Any]:
    """Wrap a payload in the success envelope."""
    response = {"success": True, "data": data}
    if meta:
        response["meta"] = meta
    return response


def error_response(code: str, message: str, details: Any = None, retryable: bool = False) -> dict[str, Any]:
    """Build the error envelope used by the global exception handlers."""
    return {
        "success": False,
        "error": {
            "code": code,
            "message": message,
            "details": details,
            "retryable": retryable,
        },
    }
