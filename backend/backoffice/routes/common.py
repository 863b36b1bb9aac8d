# Overview: Shared request parsing and error translation for the API blueprints.

from flask import request, jsonify

from ..time_utils import parse_iso_datetime
from ..validation import ServiceError, ValidationError


def error_response(e: ServiceError):
    """ServiceError -> (JSON body, HTTP status)."""
    return jsonify(e.to_dict()), e.status_code


def datetime_arg(name: str):
    """Optional ISO-8601 query parameter, normalized to UTC-naive."""
    raw = request.args.get(name)
    try:
        return parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 datetime")


def page_args() -> dict:
    limit = request.args.get("limit", type=int)
    offset = request.args.get("offset", type=int)
    return {"limit": limit, "offset": offset}


def page_response(page: dict, key: str = "items", **extra) -> dict:
    body = {
        key: [row.to_dict() for row in page["items"]],
        "total": page["total"],
        "limit": page["limit"],
        "offset": page["offset"],
    }
    body.update(extra)
    return body
