from __future__ import annotations

from typing import Any

from flask import jsonify, request

from app.ums.errors import Failure


def json_body() -> dict[str, Any]:
    """Request JSON as a dict; anything else (missing, malformed, a list) reads as empty."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def failure_response(f: Failure):
    return jsonify(f.to_dict()), f.status_code


def error_response(status: int, kind: str, message: str):
    return jsonify({"error": kind, "message": message, "fieldErrors": []}), status


def pick(body: dict[str, Any], mapping: dict[str, str]) -> dict[str, Any]:
    """
    Translate camelCase JSON keys to service payload keys, keeping only the
    keys the caller actually sent (absent and null are different on update).
    """
    return {key: body[field] for field, key in mapping.items() if field in body}
