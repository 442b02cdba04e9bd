import json
import time
from typing import Any, Dict, Mapping, Optional

from flask import current_app

from smtp_service.errors import SendError, ValidationError
from smtp_service.storage import get_storage
from . import mailer
from .templates import render


def _log_structured(event: str, level: str = "info", **fields):
    """
    Minimal structured log: one JSON object per line.
    """
    payload = {"event": event, **fields}
    getattr(current_app.logger, level)(json.dumps(payload, default=str))


def _record_event(fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Append an audit record. A failure here must never mask the send outcome,
    so it is logged and dropped.
    """
    try:
        return get_storage().logs.append(fields)
    except Exception:
        current_app.logger.exception("email log append failed (status=%s)", fields.get("status"))
        return None


def _send(
    *,
    log_fields: Dict[str, Any],
    meta: Dict[str, Any],
    failed_fields: Optional[Dict[str, Any]] = None,
    **message,
) -> Dict[str, Any]:
    start = time.perf_counter()
    try:
        result = mailer.send_mail(**message)
    except SendError as exc:
        latency_ms = int((time.perf_counter() - start) * 1000)
        _record_event({
            **log_fields, **(failed_fields or {}),
            "status": "failed", "error": str(exc), "meta": meta or None,
        })
        _log_structured(
            "mail_send", "warning",
            to=message.get("to"), subject=message.get("subject"),
            outcome="smtp_error", latency_ms=latency_ms, smtp_error=str(exc),
        )
        raise

    latency_ms = int((time.perf_counter() - start) * 1000)
    _record_event({
        **log_fields,
        "status": "success",
        "response": result.get("response"),
        "meta": {
            **meta,
            "accepted": result.get("accepted"),
            "rejected": result.get("rejected"),
            "messageId": result.get("messageId"),
        },
    })
    _log_structured(
        "mail_send",
        to=message.get("to"), subject=message.get("subject"),
        outcome="sent", message_id=result.get("messageId"), latency_ms=latency_ms,
    )
    return result


def send_direct(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Send a fully specified message and record the attempt."""
    sender = payload.get("from") or current_app.config.get("MAIL_DEFAULT_SENDER")
    return _send(
        log_fields={"to": payload.get("to"), "from": sender, "subject": payload.get("subject"), "provider": "smtp"},
        meta={},
        to=payload.get("to"),
        subject=payload.get("subject"),
        html=payload.get("html"),
        text=payload.get("text"),
        sender=sender,
        cc=payload.get("cc"),
        bcc=payload.get("bcc"),
        reply_to=payload.get("replyTo"),
        attachments=payload.get("attachments"),
    )


def send_template(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Render a stored template, merge per-request overrides over its defaults,
    send, and record the attempt. Anything failing before the send itself
    (unknown template, bad syntax, no recipient) is recorded as failed too.
    """
    template_id = payload.get("templateId")
    try:
        rendered = render(get_storage().templates, template_id, payload.get("params") or {})
    except Exception as exc:
        _record_event({
            "status": "failed",
            "to": payload.get("to"),
            "from": payload.get("from"),
            "subject": f"template:{template_id}",
            "provider": "smtp",
            "error": str(exc),
            "meta": {"templateId": template_id},
        })
        raise

    defaults = rendered["defaults"]
    sender = payload.get("from") or defaults.get("from") or current_app.config.get("MAIL_DEFAULT_SENDER")
    to = payload.get("to") or defaults.get("to")
    if not to:
        raise ValidationError("Recipient (to) is required: pass it or set it in the template defaults")

    return _send(
        log_fields={"to": to, "from": sender, "subject": rendered["subject"], "provider": "smtp"},
        meta={"templateId": rendered["id"], "templateName": rendered["name"]},
        failed_fields={"subject": f"template:{template_id}"},
        to=to,
        subject=rendered["subject"],
        html=rendered["html"],
        sender=sender,
        cc=payload.get("cc") or defaults.get("cc"),
        bcc=payload.get("bcc") or defaults.get("bcc"),
        reply_to=payload.get("replyTo") or defaults.get("replyTo"),
        attachments=payload.get("attachments"),
    )
