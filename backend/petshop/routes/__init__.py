from flask import jsonify, request

from ..errors import ServiceError, ValidationError


def error_response(e: ServiceError):
    return jsonify(e.to_dict()), e.status_code


def internal_error():
    return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR", "details": {}}), 500


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def int_arg(name: str, default: int | None = None) -> int | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")
