from typing import List, Optional


class ServiceError(RuntimeError):
    """Recoverable service error surfaced to API callers."""

    code = "ServiceError"
    status = 500

    def to_dict(self) -> dict:
        return {"error": self.code, "message": str(self)}


class ValidationError(ServiceError):
    code = "ValidationError"
    status = 400

    def __init__(self, message: str, details: Optional[List[str]] = None):
        super().__init__(message)
        self.details = list(details or [])

    def to_dict(self) -> dict:
        payload = super().to_dict()
        if self.details:
            payload["details"] = self.details
        return payload


class NotFound(ServiceError):
    code = "NotFound"
    status = 404


class Conflict(ServiceError):
    code = "Conflict"
    status = 409


class StorageUnavailable(ServiceError):
    """Backend I/O failed (filesystem error or database error)."""

    code = "StorageUnavailable"
    status = 503


class SendError(ServiceError):
    """The SMTP transport rejected or failed the message."""

    code = "SMTPError"
    status = 502
