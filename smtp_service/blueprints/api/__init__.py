import hmac

from flask import Blueprint, current_app, jsonify, request

bp = Blueprint("api", __name__, url_prefix="/api/v1")


@bp.before_request
def _require_api_token():
    expected = current_app.config.get("API_TOKEN")
    if not expected:
        return jsonify({"error": "API token not configured. Set API_TOKEN env var."}), 500
    provided = request.headers.get("X-Api-Token", "")
    if not provided or not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        return jsonify({"error": "Unauthorized: invalid or missing x-api-token"}), 401
    return None


from . import email, logs, templates  # noqa: E402,F401
