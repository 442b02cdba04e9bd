import re
from typing import Any, Dict, List, Tuple

from smtp_service.storage import LOG_STATUSES

# Simple, pragmatic patterns
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
# "Name <addr@host>" is accepted wherever a bare address is
_NAMED_EMAIL_RE = re.compile(r"^[^<>]*<([^<>]+)>$")
_TEMPLATE_ID_RE = re.compile(r"^[A-Za-z0-9]{3,64}$")

Result = Tuple[Dict[str, Any], List[str]]


def is_valid_email(val: Any) -> bool:
    if not isinstance(val, str) or not val.strip():
        return False
    m = _NAMED_EMAIL_RE.match(val.strip())
    addr = m.group(1) if m else val.strip()
    return bool(_EMAIL_RE.match(addr))


def _check_addresses(data: dict, key: str, errors: List[str], required: bool = False, many: bool = True):
    val = data.get(key)
    if val is None:
        if required:
            errors.append(f'"{key}" is required')
        return
    if many and isinstance(val, list):
        if not val:
            errors.append(f'"{key}" must contain at least one address')
        for i, item in enumerate(val):
            if not is_valid_email(item):
                errors.append(f'"{key}[{i}]" must be a valid email')
        return
    if not is_valid_email(val):
        errors.append(f'"{key}" must be a valid email')


def _check_string(data: dict, key: str, errors: List[str], required: bool = False, allow_empty: bool = False):
    val = data.get(key)
    if val is None:
        if required:
            errors.append(f'"{key}" is required')
        return
    if not isinstance(val, str):
        errors.append(f'"{key}" must be a string')
    elif not allow_empty and not val.strip():
        errors.append(f'"{key}" is not allowed to be empty')


def _check_object(data: dict, key: str, errors: List[str]):
    val = data.get(key)
    if val is not None and not isinstance(val, dict):
        errors.append(f'"{key}" must be an object')


def _check_attachments(data: dict, errors: List[str]):
    atts = data.get("attachments")
    if atts is None:
        return
    if not isinstance(atts, list):
        errors.append('"attachments" must be an array')
        return
    for i, att in enumerate(atts):
        if not isinstance(att, dict):
            errors.append(f'"attachments[{i}]" must be an object')
            continue
        if att.get("content") is None:
            # remote `path` attachments are not fetched by this service
            errors.append(f'"attachments[{i}].content" is required')
        elif not isinstance(att["content"], str):
            errors.append(f'"attachments[{i}].content" must be a string')
        for key in ("filename", "contentType", "encoding"):
            if att.get(key) is not None and not isinstance(att[key], str):
                errors.append(f'"attachments[{i}].{key}" must be a string')


def _payload(data: Any, errors: List[str]) -> dict:
    if not isinstance(data, dict):
        errors.append("payload: must be a JSON object")
        return {}
    return data


def validate_send_email(data: Any) -> Result:
    errors: List[str] = []
    data = _payload(data, errors)
    _check_addresses(data, "from", errors, many=False)
    _check_addresses(data, "to", errors, required=True)
    _check_addresses(data, "cc", errors)
    _check_addresses(data, "bcc", errors)
    _check_addresses(data, "replyTo", errors, many=False)
    _check_string(data, "subject", errors, required=True)
    _check_string(data, "html", errors, required=True)
    _check_string(data, "text", errors)
    _check_attachments(data, errors)
    return data, errors


def validate_send_template(data: Any) -> Result:
    errors: List[str] = []
    data = _payload(data, errors)
    _check_string(data, "templateId", errors, required=True)
    _check_object(data, "params", errors)
    _check_addresses(data, "from", errors, many=False)
    _check_addresses(data, "to", errors)
    _check_addresses(data, "cc", errors)
    _check_addresses(data, "bcc", errors)
    _check_addresses(data, "replyTo", errors, many=False)
    _check_attachments(data, errors)
    value = dict(data)
    value["params"] = data.get("params") or {}
    return value, errors


def validate_log_entry(data: Any) -> Result:
    errors: List[str] = []
    data = _payload(data, errors)
    status = data.get("status")
    if status is None:
        errors.append('"status" is required')
    elif status not in LOG_STATUSES:
        errors.append(f'"status" must be one of [{", ".join(LOG_STATUSES)}]')

    to = data.get("to")
    if to is not None and not (
        isinstance(to, str) or (isinstance(to, list) and all(isinstance(t, str) for t in to))
    ):
        errors.append('"to" must be a string or an array of strings')
    for key in ("from", "subject", "provider", "response", "error"):
        _check_string(data, key, errors, allow_empty=True)
    _check_object(data, "meta", errors)

    value = {k: data[k] for k in ("status", "to", "from", "subject", "provider", "response", "error", "meta") if k in data}
    value.setdefault("provider", "smtp")
    return value, errors


def _check_defaults(data: dict, errors: List[str]):
    defaults = data.get("defaults")
    if defaults is None:
        return
    if not isinstance(defaults, dict):
        errors.append('"defaults" must be an object')
        return
    _check_addresses(defaults, "from", errors, many=False)
    _check_addresses(defaults, "to", errors)
    _check_addresses(defaults, "cc", errors)
    _check_addresses(defaults, "bcc", errors)
    _check_addresses(defaults, "replyTo", errors, many=False)


def validate_template_create(data: Any) -> Result:
    errors: List[str] = []
    data = _payload(data, errors)
    tid = data.get("id")
    if tid is not None and not (isinstance(tid, str) and _TEMPLATE_ID_RE.match(tid)):
        errors.append('"id" must be 3-64 alphanumeric characters')
    _check_string(data, "name", errors, required=True)
    _check_string(data, "subject", errors, required=True, allow_empty=True)
    _check_string(data, "html", errors, required=True, allow_empty=True)
    _check_defaults(data, errors)
    value = {k: data[k] for k in ("id", "name", "subject", "html", "defaults") if k in data}
    value.setdefault("defaults", {})
    return value, errors


def validate_template_update(data: Any) -> Result:
    errors: List[str] = []
    data = _payload(data, errors)
    value = {k: data[k] for k in ("name", "subject", "html", "defaults") if k in data}
    if isinstance(data, dict) and not value and not errors:
        errors.append("payload: must have at least 1 key")
    _check_string(data, "name", errors)
    _check_string(data, "subject", errors, allow_empty=True)
    _check_string(data, "html", errors, allow_empty=True)
    _check_object(data, "defaults", errors)
    return value, errors
