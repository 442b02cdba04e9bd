import base64
import binascii
from typing import Any, Dict, Iterable, List, Optional, Union

from flask import current_app
from flask_mail import Message

from smtp_service.errors import SendError, ValidationError
from smtp_service.extensions import mail

Addresses = Union[str, Iterable[str], None]


def _as_list(value: Addresses) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [v for v in value if v]


def _attachment_bytes(att: Dict[str, Any]) -> bytes:
    content = att.get("content")
    if isinstance(content, bytes):
        return content
    encoding = (att.get("encoding") or "").lower()
    try:
        if encoding == "base64":
            return base64.b64decode(content, validate=True)
        if encoding == "hex":
            return bytes.fromhex(content)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError(f"attachment {att.get('filename') or ''!r}: content is not valid {encoding}") from exc
    return str(content).encode("utf-8")


def build_message(
    *,
    to: Addresses,
    subject: str,
    html: Optional[str] = None,
    text: Optional[str] = None,
    sender: Optional[str] = None,
    cc: Addresses = None,
    bcc: Addresses = None,
    reply_to: Optional[str] = None,
    attachments: Optional[List[Dict[str, Any]]] = None,
) -> Message:
    sender = sender or current_app.config.get("MAIL_DEFAULT_SENDER")
    if not sender:
        raise SendError("Missing sender. Provide from or set SMTP_FROM_DEFAULT")

    msg = Message(
        subject=subject or "",
        recipients=_as_list(to),
        sender=sender,
        cc=_as_list(cc),
        bcc=_as_list(bcc),
        reply_to=reply_to,
        html=html,
        body=text,
    )
    for att in attachments or []:
        msg.attach(
            filename=att.get("filename") or "attachment",
            content_type=att.get("contentType") or "application/octet-stream",
            data=_attachment_bytes(att),
        )
    return msg


def send_mail(*, to, subject, html=None, text=None, sender=None, cc=None, bcc=None, reply_to=None, attachments=None) -> Dict[str, Any]:
    """
    Hand one message to the SMTP server. Returns
    {messageId, accepted, rejected, response}; raises SendError on failure.
    """
    msg = build_message(
        to=to, subject=subject, html=html, text=text, sender=sender,
        cc=cc, bcc=bcc, reply_to=reply_to, attachments=attachments,
    )
    try:
        mail.send(msg)
    except Exception as exc:  # smtplib / socket / ssl errors all mean the same thing here
        raise SendError(str(exc) or exc.__class__.__name__) from exc

    return {
        "messageId": msg.msgId,
        # caller order: to, then cc, then bcc
        "accepted": list(dict.fromkeys(msg.recipients + list(msg.cc or []) + list(msg.bcc or []))),
        "rejected": [],
        "response": f"accepted {msg.msgId}",
    }
