"""
Small request/response helpers shared by the JSON blueprints.
"""
from __future__ import annotations

from typing import Any, TypeVar

from flask import abort, g, jsonify, request
from sqlalchemy.orm import Session

from app.companyos.models import User

T = TypeVar("T")

DEFAULT_LIMIT = 50
MAX_LIMIT = 500


class ApiError(Exception):
    """Raised from service code; rendered as {"error": message} with `status`."""

    def __init__(self, message: str, status: int = 400, details: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.details = details


class ValidationError(ApiError):
    def __init__(self, errors: list[str]):
        super().__init__("Validation error", 400, errors)


class NotFound(ApiError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, 404)


class Conflict(ApiError):
    def __init__(self, message: str):
        super().__init__(message, 409)


def current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def json_body() -> dict[str, Any]:
    """JSON object body, falling back to form fields for plain HTML posts."""
    data = request.get_json(silent=True)
    if data is None:
        return request.form.to_dict()
    if not isinstance(data, dict):
        abort(400, description="Request body must be a JSON object.")
    return data


def ok(data: Any, status: int = 200, **extra: Any):
    payload: dict[str, Any] = {"data": data}
    payload.update(extra)
    return jsonify(payload), status


def error(message: str, status: int = 400, details: list[str] | None = None):
    payload: dict[str, Any] = {"error": message}
    if details:
        payload["details"] = details
    return jsonify(payload), status


def get_for_org_or_404(s: Session, model: type[T], obj_id: int, org_id: int) -> T:
    """Load a tenant-scoped row; rows of other organizations look missing."""
    obj = s.get(model, obj_id)
    if obj is None or getattr(obj, "org_id", None) != org_id:
        abort(404)
    return obj


def pagination_args() -> tuple[int, int]:
    limit = request.args.get("limit", DEFAULT_LIMIT, type=int) or DEFAULT_LIMIT
    offset = request.args.get("offset", 0, type=int) or 0
    return max(1, min(limit, MAX_LIMIT)), max(0, offset)
