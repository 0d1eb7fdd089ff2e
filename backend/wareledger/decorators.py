# Overview: Request decorators for API routes.

from functools import wraps

from flask import current_app, jsonify, request

from .errors import EngineError, ValidationError


def engine_endpoint(f):
    """
    Translate engine failures into JSON responses.

    - EngineError -> {"error", "code", "details"} with the error's status.
    - Anything else is logged and returned as a generic 500.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except EngineError as exc:
            if exc.http_status >= 500:
                current_app.logger.warning("%s on %s %s: %s", exc.code, request.method, request.path, exc.message)
            return jsonify(exc.to_dict()), exc.http_status
        except Exception:
            current_app.logger.exception("Unhandled error on %s %s", request.method, request.path)
            return jsonify({"error": "Internal server error", "code": "internal_error"}), 500

    return decorated_function


def acting_user_id(data: dict | None = None) -> int | None:
    """The caller's user id: body "user_id" first, then the X-User-Id header."""
    if data and data.get("user_id") is not None:
        raw = data.get("user_id")
    else:
        raw = request.headers.get("X-User-Id")
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError("user_id must be an integer")


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data
