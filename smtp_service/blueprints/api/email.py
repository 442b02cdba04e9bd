from flask import jsonify, request

from smtp_service.errors import ValidationError
from smtp_service.services.email import send_direct, send_template
from smtp_service.utils.validators import validate_send_email, validate_send_template
from . import bp


@bp.post("/send-email")
def send_email():
    value, errors = validate_send_email(request.get_json(silent=True))
    if errors:
        raise ValidationError("Invalid send-email payload", details=errors)
    result = send_direct(value)
    return jsonify({"status": "queued", "result": result}), 202


@bp.post("/send-template")
def send_template_route():
    value, errors = validate_send_template(request.get_json(silent=True))
    if errors:
        raise ValidationError("Invalid send-template payload", details=errors)
    result = send_template(value)
    return jsonify({"status": "queued", "result": result}), 202
