from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import delete, func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from smtp_service.errors import Conflict, NotFound, StorageUnavailable
from smtp_service.models import EmailLog, EmailTemplate
from .base import (
    RELATIONAL,
    LogFilter,
    LogStore,
    MonotonicClock,
    TemplateStore,
    build_record,
    default_clock,
    field_text,
    field_value,
    isoformat,
    lookup_id,
    merge_template,
    new_template,
    parse_instant,
    summary,
)

logger = logging.getLogger(__name__)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _icontains(column, needle: str):
    # needle is already lowercased by LogFilter
    return func.lower(column).like(f"%{_escape_like(needle)}%", escape="\\")


def _log_to_record(row: EmailLog) -> Dict[str, Any]:
    return {
        "id": row.id,
        "timestamp": isoformat(row.timestamp),
        "status": row.status,
        "to": field_value(row.recipient),
        "from": field_value(row.sender),
        "subject": row.subject,
        "provider": row.provider,
        "response": row.response,
        "error": row.error,
        "meta": row.meta,
    }


def _template_to_dict(row: EmailTemplate) -> Dict[str, Any]:
    return {
        "id": row.id,
        "name": row.name,
        "subject": row.subject,
        "html": row.html,
        "defaults": row.defaults or {},
        "createdAt": isoformat(row.created_at),
        "updatedAt": isoformat(row.updated_at),
    }


class _SqlStore:
    def __init__(self, db, clock: Optional[MonotonicClock] = None):
        self.db = db
        self._clock = clock or default_clock

    @property
    def session(self):
        return self.db.session

    def _fail(self, action: str, exc: SQLAlchemyError):
        self.session.rollback()
        logger.error("Database %s failed: %s", action, exc)
        return StorageUnavailable(f"Database {action} failed: {exc.__class__.__name__}")


class SqlLogStore(_SqlStore, LogStore):
    backend = RELATIONAL

    def append(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        now = self._clock.now()
        record = build_record(fields, timestamp=now)
        row = EmailLog(
            id=record["id"],
            timestamp=now,
            status=record["status"],
            recipient=field_text(record["to"]),
            sender=field_text(record["from"]),
            subject=record["subject"],
            provider=record["provider"],
            response=record["response"],
            error=record["error"],
            meta=record["meta"],
        )
        try:
            self.session.add(row)
            self.session.commit()
        except SQLAlchemyError as exc:
            raise self._fail("append", exc) from exc
        return record

    def _conditions(self, flt: LogFilter) -> list:
        conds = []
        if flt.statuses:
            conds.append(EmailLog.status.in_(flt.statuses))
        if flt.to:
            conds.append(_icontains(EmailLog.recipient, flt.to))
        if flt.sender:
            conds.append(_icontains(EmailLog.sender, flt.sender))
        if flt.contains:
            conds.append(or_(_icontains(EmailLog.subject, flt.contains), _icontains(EmailLog.response, flt.contains)))
        if flt.start:
            conds.append(EmailLog.timestamp >= flt.start)
        if flt.end:
            conds.append(EmailLog.timestamp <= flt.end)
        return conds

    def _query(self, flt: LogFilter) -> Dict[str, Any]:
        conds = self._conditions(flt)
        count_stmt = select(func.count()).select_from(EmailLog)
        page_stmt = select(EmailLog).order_by(EmailLog.timestamp.desc(), EmailLog.id.desc()).limit(flt.limit).offset(flt.offset)
        if conds:
            count_stmt = count_stmt.where(*conds)
            page_stmt = page_stmt.where(*conds)
        try:
            total = self.session.scalar(count_stmt) or 0
            rows = self.session.scalars(page_stmt).all()
        except SQLAlchemyError as exc:
            raise self._fail("query", exc) from exc
        return {
            "total": total,
            "offset": flt.offset,
            "limit": flt.limit,
            "items": [_log_to_record(r) for r in rows],
        }


class SqlTemplateStore(_SqlStore, TemplateStore):
    backend = RELATIONAL

    def list(self) -> List[Dict[str, Any]]:
        stmt = select(EmailTemplate.id, EmailTemplate.name, EmailTemplate.updated_at)
        try:
            rows = self.session.execute(stmt).all()
        except SQLAlchemyError as exc:
            raise self._fail("template list", exc) from exc
        items = [summary({"id": tid, "name": name, "updatedAt": isoformat(ts)}) for tid, name, ts in rows]
        # sort in Python: database collations disagree on '-' and '_'
        return sorted(items, key=lambda t: t["id"])

    def _fetch(self, tid: str, for_update: bool = False) -> EmailTemplate:
        stmt = select(EmailTemplate).where(EmailTemplate.id == tid)
        if for_update:
            stmt = stmt.with_for_update()
        try:
            row = self.session.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise self._fail("template read", exc) from exc
        if row is None:
            raise NotFound(f"Template '{tid}' not found")
        return row

    def get(self, template_id: str) -> Dict[str, Any]:
        return _template_to_dict(self._fetch(lookup_id(template_id)))

    def create(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        now = self._clock.now()
        record = new_template(fields, now)
        stmt = insert(EmailTemplate).values(
            id=record["id"],
            name=record["name"],
            subject=record["subject"],
            html=record["html"],
            defaults=record["defaults"],
            created_at=now,
            updated_at=now,
        )
        try:
            self.session.execute(stmt)
            self.session.commit()
        except IntegrityError:
            # primary key does the create-if-absent check
            self.session.rollback()
            raise Conflict(f"Template '{record['id']}' already exists") from None
        except SQLAlchemyError as exc:
            raise self._fail("template create", exc) from exc
        return record

    def update(self, template_id: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
        tid = lookup_id(template_id)
        try:
            current = _template_to_dict(self._fetch(tid, for_update=True))
        except NotFound:
            self.session.rollback()
            raise
        merged = merge_template(current, fields, self._clock.now())
        stmt = (
            update(EmailTemplate)
            .where(EmailTemplate.id == tid)
            .values(
                name=merged["name"],
                subject=merged["subject"],
                html=merged["html"],
                defaults=merged["defaults"],
                updated_at=parse_instant(merged["updatedAt"]),
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.session.execute(stmt)
            if result.rowcount == 0:
                self.session.rollback()
                raise NotFound(f"Template '{tid}' not found")
            self.session.commit()
        except SQLAlchemyError as exc:
            raise self._fail("template update", exc) from exc
        return merged

    def delete(self, template_id: str) -> None:
        tid = lookup_id(template_id)
        stmt = delete(EmailTemplate).where(EmailTemplate.id == tid).execution_options(synchronize_session=False)
        try:
            result = self.session.execute(stmt)
            if result.rowcount == 0:
                self.session.rollback()
                raise NotFound(f"Template '{tid}' not found")
            self.session.commit()
        except SQLAlchemyError as exc:
            raise self._fail("template delete", exc) from exc
