from typing import Any, Dict, Mapping, Optional

from jinja2 import ChainableUndefined, TemplateError, TemplateSyntaxError
from jinja2.sandbox import SandboxedEnvironment

from smtp_service.errors import ValidationError
from smtp_service.storage import TemplateStore

# Unresolved placeholders (dotted paths included) render as ""; {{ }} output is HTML-escaped
_env = SandboxedEnvironment(autoescape=True, undefined=ChainableUndefined)


def check_syntax(text: Optional[str], field: str = "template") -> None:
    """Raise ValidationError if `text` is not a parseable template."""
    try:
        _env.parse(text or "")
    except TemplateSyntaxError as exc:
        raise ValidationError(f"{field}: invalid template syntax ({exc.message}, line {exc.lineno})") from exc


def _render_text(text: str, context: Mapping[str, Any], template_id: str) -> str:
    try:
        return _env.from_string(text or "").render(context)
    except TemplateError as exc:
        raise ValidationError(f"Template '{template_id}' could not be rendered: {exc}") from exc


def render(store: TemplateStore, template_id: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """
    Look up a template (NotFound propagates) and substitute `params` into
    its subject and html. Returns the stored defaults/id/name alongside so
    the caller can merge per-request overrides without a second lookup.
    """
    template = store.get(template_id)
    context = dict(params or {})
    return {
        "subject": _render_text(template.get("subject") or "", context, template["id"]),
        "html": _render_text(template.get("html") or "", context, template["id"]),
        "defaults": template.get("defaults") or {},
        "id": template["id"],
        "name": template.get("name"),
    }
