from __future__ import annotations

import json
import os
import re
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from smtp_service.config import PROJECT_ROOT
from smtp_service.errors import NotFound, ValidationError

LOG_STATUSES = ("success", "failed", "canceled", "spam", "queued", "other")
DEFAULT_PROVIDER = "smtp"
DEFAULT_LIMIT = 100

RECORD_KEYS = ("id", "timestamp", "status", "to", "from", "subject", "provider", "response", "error", "meta")
TEMPLATE_FIELDS = ("name", "subject", "html", "defaults")

FILESYSTEM = "filesystem"
RELATIONAL = "postgres"
_RELATIONAL_ALIASES = {"postgres", "postgresql", "relational", "sql"}


def resolve_backend(value: Optional[str]) -> str:
    """Anything that does not name the relational backend means files."""
    key = (value or "").strip().lower()
    return RELATIONAL if key in _RELATIONAL_ALIASES else FILESYSTEM


def _resolve_path(path: str, root: str) -> str:
    return path if os.path.isabs(path) else os.path.abspath(os.path.join(root, path))


@dataclass(frozen=True)
class StorageConfig:
    """Storage settings resolved once at startup and shared by both stores."""

    backend: str
    log_file: str
    templates_dir: str

    @property
    def log_dir(self) -> str:
        return os.path.dirname(self.log_file)

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any], root: str = PROJECT_ROOT) -> "StorageConfig":
        log_dir = _resolve_path(config.get("LOG_DIR") or "data/logs", root)
        return cls(
            backend=resolve_backend(config.get("DB_PROVIDER")),
            log_file=os.path.join(log_dir, config.get("LOG_FILE_NAME") or "email.log"),
            templates_dir=_resolve_path(config.get("TEMPLATES_DIR") or "data/templates", root),
        )

    def with_backend(self, backend: str) -> "StorageConfig":
        return replace(self, backend=backend)


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------
class MonotonicClock:
    """UTC wall clock that never hands out the same instant twice."""

    def __init__(self):
        self._lock = threading.Lock()
        self._last: Optional[datetime] = None

    def now(self) -> datetime:
        with self._lock:
            current = datetime.now(timezone.utc)
            if self._last is not None and current <= self._last:
                current = self._last + timedelta(microseconds=1)
            self._last = current
            return current


default_clock = MonotonicClock()


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: datetime) -> str:
    return as_utc(value).isoformat(timespec="microseconds")


def parse_instant(value: Any) -> Optional[datetime]:
    """
    Parse an ISO 8601 instant ('Z' suffix and date-only accepted, naive = UTC).
    Returns None for anything unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    text = str(value).strip()
    if text[-1:] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return as_utc(parsed)


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Event log records
# ---------------------------------------------------------------------------
def field_text(value: Any) -> Optional[str]:
    """Textual form of an address field: strings as-is, lists as compact JSON."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return json.dumps(list(value), separators=(",", ":"), ensure_ascii=False)
    return str(value)


def field_value(text: Optional[str]) -> Any:
    """Inverse of field_text()."""
    if text and text.startswith("["):
        try:
            value = json.loads(text)
        except ValueError:
            return text
        if isinstance(value, list):
            return value
    return text


def _address(value: Any) -> Any:
    return list(value) if isinstance(value, (list, tuple)) else value


def build_record(fields: Mapping[str, Any], *, timestamp: datetime, record_id: Optional[str] = None) -> Dict[str, Any]:
    """Materialize a new record; id and timestamp always come from the store."""
    return {
        "id": record_id or str(uuid.uuid4()),
        "timestamp": isoformat(timestamp),
        "status": fields.get("status"),
        "to": _address(fields.get("to")),
        "from": _address(fields.get("from")),
        "subject": fields.get("subject"),
        "provider": fields.get("provider") or DEFAULT_PROVIDER,
        "response": fields.get("response") or None,
        "error": fields.get("error") or None,
        "meta": fields.get("meta"),
    }


def materialize(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """Fill every record key; re-serialize timestamps written by older writers."""
    record = {key: raw.get(key) for key in RECORD_KEYS}
    ts = parse_instant(record["timestamp"])
    if ts is not None:
        record["timestamp"] = isoformat(ts)
    return record


def _needle(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value).lower()


def _statuses(value: Any) -> Tuple[str, ...]:
    if not value:
        return ()
    parts = value if isinstance(value, (list, tuple, set)) else str(value).split(",")
    return tuple(p.strip() for p in (str(v) for v in parts) if p.strip())


def _positive_int(value: Any, default: int) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        return default
    return n if n > 0 else default


def _non_negative_int(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class LogFilter:
    statuses: Tuple[str, ...] = ()
    to: Optional[str] = None
    sender: Optional[str] = None
    contains: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    limit: int = DEFAULT_LIMIT
    offset: int = 0

    @classmethod
    def from_params(cls, params: Optional[Mapping[str, Any]] = None) -> "LogFilter":
        """
        Build a filter from loose request-style params.
        Unparseable dates are dropped rather than matching nothing.
        """
        params = params or {}
        return cls(
            statuses=_statuses(params.get("status")),
            to=_needle(params.get("to")),
            sender=_needle(params.get("from")),
            contains=_needle(params.get("contains")),
            start=parse_instant(params.get("start")),
            end=parse_instant(params.get("end")),
            limit=_positive_int(params.get("limit"), DEFAULT_LIMIT),
            offset=_non_negative_int(params.get("offset")),
        )

    @classmethod
    def coerce(cls, value: Any) -> "LogFilter":
        if isinstance(value, cls):
            return value
        return cls.from_params(value)

    def matches(self, record: Mapping[str, Any]) -> bool:
        if self.statuses and record.get("status") not in self.statuses:
            return False
        if self.to and self.to not in (field_text(record.get("to")) or "").lower():
            return False
        if self.sender and self.sender not in (field_text(record.get("from")) or "").lower():
            return False
        if self.contains:
            subject = str(record.get("subject") or "").lower()
            response = str(record.get("response") or "").lower()
            if self.contains not in subject and self.contains not in response:
                return False
        if self.start or self.end:
            ts = parse_instant(record.get("timestamp"))
            if ts is None:
                return False
            if self.start and ts < self.start:
                return False
            if self.end and ts > self.end:
                return False
        return True

    def page(self, records: List[Dict[str, Any]]) -> Dict[str, Any]:
        return {
            "total": len(records),
            "offset": self.offset,
            "limit": self.limit,
            "items": records[self.offset:self.offset + self.limit],
        }


def sort_newest_first(records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    # sorted() is stable with reverse=True, so equal timestamps keep insertion order
    return sorted(records, key=lambda r: parse_instant(r.get("timestamp")) or _EPOCH, reverse=True)


class LogStore(ABC):
    backend: str = ""

    @abstractmethod
    def append(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        """Persist one record and return it with id/timestamp assigned."""

    def query(self, params: Any = None) -> Dict[str, Any]:
        """Filtered, newest-first page: {total, offset, limit, items}."""
        return self._query(LogFilter.coerce(params))

    @abstractmethod
    def _query(self, flt: LogFilter) -> Dict[str, Any]:
        ...


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------
_UNSAFE_ID_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def normalize_id(value: Any) -> str:
    """Strip everything outside [a-zA-Z0-9_-] and lowercase."""
    return _UNSAFE_ID_CHARS.sub("", str(value)).lower()


def lookup_id(value: Any) -> str:
    template_id = normalize_id(value if value is not None else "")
    if not template_id:
        raise NotFound(f"Template '{value}' not found")
    return template_id


def new_template(fields: Mapping[str, Any], now: datetime) -> Dict[str, Any]:
    raw_id = fields.get("id")
    template_id = normalize_id(raw_id if raw_id else uuid.uuid4())
    if not template_id:
        raise ValidationError(f"Template id {raw_id!r} is empty after normalization")
    name = fields.get("name")
    stamp = isoformat(now)
    return {
        "id": template_id,
        "name": name if name and str(name).strip() else template_id,
        "subject": "" if fields.get("subject") is None else str(fields["subject"]),
        "html": "" if fields.get("html") is None else str(fields["html"]),
        "defaults": dict(fields.get("defaults") or {}),
        "createdAt": stamp,
        "updatedAt": stamp,
    }


def merge_template(current: Mapping[str, Any], fields: Mapping[str, Any], now: datetime) -> Dict[str, Any]:
    """Shallow merge of the updatable fields; None means 'not supplied'."""
    merged = dict(current)
    for key in TEMPLATE_FIELDS:
        value = fields.get(key)
        if value is None:
            continue
        if key == "defaults":
            merged[key] = dict(value)
        elif key in ("subject", "html"):
            merged[key] = str(value)
        else:
            merged[key] = value
    previous = parse_instant(current.get("updatedAt"))
    if previous is not None and now <= previous:
        now = previous + timedelta(microseconds=1)
    merged["updatedAt"] = isoformat(now)
    return merged


def summary(template: Mapping[str, Any]) -> Dict[str, Any]:
    return {"id": template.get("id"), "name": template.get("name"), "updatedAt": template.get("updatedAt")}


class TemplateStore(ABC):
    backend: str = ""

    @abstractmethod
    def list(self) -> List[Dict[str, Any]]:
        """Summaries {id, name, updatedAt} sorted by id."""

    @abstractmethod
    def get(self, template_id: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    def create(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    def update(self, template_id: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    def delete(self, template_id: str) -> None:
        ...
