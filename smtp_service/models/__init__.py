from .email_log import EmailLog
from .email_template import EmailTemplate

__all__ = ["EmailLog", "EmailTemplate"]
