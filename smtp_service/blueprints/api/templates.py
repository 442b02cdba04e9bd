from flask import jsonify, request

from smtp_service.errors import ValidationError
from smtp_service.services.templates import check_syntax
from smtp_service.storage import get_storage
from smtp_service.utils.validators import validate_template_create, validate_template_update
from . import bp


def _check_bodies(value: dict):
    for field in ("subject", "html"):
        if value.get(field) is not None:
            check_syntax(value[field], field)


@bp.get("/templates")
def list_templates():
    return jsonify(get_storage().templates.list()), 200


@bp.get("/templates/<template_id>")
def get_template(template_id):
    return jsonify(get_storage().templates.get(template_id)), 200


@bp.post("/templates")
def create_template():
    value, errors = validate_template_create(request.get_json(silent=True))
    if errors:
        raise ValidationError("Invalid template", details=errors)
    _check_bodies(value)
    return jsonify(get_storage().templates.create(value)), 201


@bp.put("/templates/<template_id>")
def update_template(template_id):
    value, errors = validate_template_update(request.get_json(silent=True))
    if errors:
        raise ValidationError("Invalid template update", details=errors)
    _check_bodies(value)
    return jsonify(get_storage().templates.update(template_id, value)), 200


@bp.delete("/templates/<template_id>")
def delete_template(template_id):
    get_storage().templates.delete(template_id)
    return "", 204
