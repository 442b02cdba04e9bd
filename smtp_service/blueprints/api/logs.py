from flask import jsonify, request

from smtp_service.errors import ValidationError
from smtp_service.storage import get_storage
from smtp_service.utils.validators import validate_log_entry
from . import bp

MAX_LIMIT = 1000
_QUERY_KEYS = ("status", "to", "from", "contains", "start", "end", "limit", "offset")


@bp.get("/logs")
def query_logs():
    """Filtered, newest-first page of email log records."""
    params = {k: request.args.get(k) for k in _QUERY_KEYS}
    statuses = request.args.getlist("status")
    if len(statuses) > 1:
        params["status"] = ",".join(statuses)
    try:
        if int(params["limit"]) > MAX_LIMIT:
            params["limit"] = MAX_LIMIT
    except (TypeError, ValueError):
        pass  # the store falls back to its default
    return jsonify(get_storage().logs.query(params)), 200


@bp.post("/logs")
def create_log():
    """Manually insert a log record."""
    value, errors = validate_log_entry(request.get_json(silent=True))
    if errors:
        raise ValidationError("Invalid log entry", details=errors)
    return jsonify(get_storage().logs.append(value)), 201
