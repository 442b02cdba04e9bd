"""
Embedded file backend.

Event log: one append-only JSON-lines file. Appends are serialized by a
process-wide lock and land as a single write() on an O_APPEND descriptor, so
concurrent writers never interleave partial lines. Readers drop an
unterminated trailing line, so a record still being written is never seen.

Templates: one pretty-printed JSON file per normalized id.
"""
from __future__ import annotations

import contextlib
import json
import logging
import os
import threading
import uuid
from typing import Any, Dict, List, Mapping, Optional

from smtp_service.errors import Conflict, NotFound, StorageUnavailable
from .base import (
    FILESYSTEM,
    LogFilter,
    LogStore,
    MonotonicClock,
    StorageConfig,
    TemplateStore,
    build_record,
    default_clock,
    lookup_id,
    materialize,
    merge_template,
    new_template,
    sort_newest_first,
    summary,
)

logger = logging.getLogger(__name__)

# One lock per physical file, shared by every store instance in the process
_locks: Dict[str, threading.Lock] = {}
_locks_guard = threading.Lock()


def _lock_for(path: str) -> threading.Lock:
    with _locks_guard:
        return _locks.setdefault(os.path.abspath(path), threading.Lock())


class FileLogStore(LogStore):
    backend = FILESYSTEM

    def __init__(self, config: StorageConfig, clock: Optional[MonotonicClock] = None):
        self.path = config.log_file
        self._clock = clock or default_clock
        self._lock = _lock_for(self.path)

    def append(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        with self._lock:
            # timestamp assigned inside the lease so file order == timestamp order
            record = build_record(fields, timestamp=self._clock.now())
            on_disk = {k: v for k, v in record.items() if v is not None}
            data = (json.dumps(on_disk, ensure_ascii=False, default=str) + "\n").encode("utf-8")
            try:
                os.makedirs(os.path.dirname(self.path), exist_ok=True)
                fd = os.open(self.path, os.O_RDWR | os.O_APPEND | os.O_CREAT, 0o644)
                try:
                    size = os.fstat(fd).st_size
                    if size and os.pread(fd, 1, size - 1) != b"\n":
                        # close off a torn tail so this record starts on its own line
                        data = b"\n" + data
                    written = os.write(fd, data)
                finally:
                    os.close(fd)
            except OSError as exc:
                raise StorageUnavailable(f"Could not append to {self.path}: {exc}") from exc
            if written != len(data):
                raise StorageUnavailable(f"Short write to {self.path} ({written}/{len(data)} bytes)")
        return record

    def _read_records(self) -> List[Dict[str, Any]]:
        with self._lock:
            try:
                with open(self.path, "rb") as fh:
                    data = fh.read()
            except FileNotFoundError:
                # never written to: zero records, not a failure
                return []
            except OSError as exc:
                raise StorageUnavailable(f"Could not read {self.path}: {exc}") from exc

        lines = data.decode("utf-8", errors="replace").split("\n")
        lines.pop()  # "" for a complete file, otherwise a record still being written

        records = []
        for lineno, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                raw = json.loads(line)
            except ValueError:
                raw = None
            if not isinstance(raw, dict):
                logger.warning("Skipping unparseable line %d in %s", lineno, self.path)
                continue
            records.append(materialize(raw))
        return records

    def _query(self, flt: LogFilter) -> Dict[str, Any]:
        records = [r for r in self._read_records() if flt.matches(r)]
        return flt.page(sort_newest_first(records))


class FileTemplateStore(TemplateStore):
    backend = FILESYSTEM

    def __init__(self, config: StorageConfig, clock: Optional[MonotonicClock] = None):
        self.directory = config.templates_dir
        self._clock = clock or default_clock
        self._lock = _lock_for(self.directory)

    def _path(self, template_id: str) -> str:
        return os.path.join(self.directory, f"{template_id}.json")

    def _read(self, path: str) -> Dict[str, Any]:
        """Raises FileNotFoundError untouched; other failures are storage errors."""
        try:
            with open(path, "r", encoding="utf-8") as fh:
                return json.load(fh)
        except FileNotFoundError:
            raise
        except (OSError, ValueError) as exc:
            raise StorageUnavailable(f"Could not read template file {path}: {exc}") from exc

    def _load(self, template_id: str) -> Dict[str, Any]:
        try:
            return self._read(self._path(template_id))
        except FileNotFoundError:
            raise NotFound(f"Template '{template_id}' not found") from None

    def _write_temp(self, record: Mapping[str, Any]) -> str:
        # temp names never end in .json, so list() cannot pick them up
        tmp = os.path.join(self.directory, f".{record['id']}.{uuid.uuid4().hex}.tmp")
        try:
            os.makedirs(self.directory, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as fh:
                json.dump(record, fh, indent=2, ensure_ascii=False)
        except OSError as exc:
            with contextlib.suppress(FileNotFoundError):
                os.remove(tmp)
            raise StorageUnavailable(f"Could not write template file: {exc}") from exc
        return tmp

    def list(self) -> List[Dict[str, Any]]:
        try:
            names = os.listdir(self.directory)
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise StorageUnavailable(f"Could not list {self.directory}: {exc}") from exc

        items = []
        for name in names:
            if not name.endswith(".json"):
                continue
            try:
                items.append(summary(self._read(os.path.join(self.directory, name))))
            except FileNotFoundError:
                continue  # deleted between listdir() and open()
        return sorted(items, key=lambda t: str(t["id"]))

    def get(self, template_id: str) -> Dict[str, Any]:
        return self._load(lookup_id(template_id))

    def create(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        record = new_template(fields, self._clock.now())
        path = self._path(record["id"])
        with self._lock:
            tmp = self._write_temp(record)
            try:
                # link() refuses to overwrite: atomic create-if-absent, even across processes
                os.link(tmp, path)
            except FileExistsError:
                raise Conflict(f"Template '{record['id']}' already exists") from None
            except OSError as exc:
                raise StorageUnavailable(f"Could not create template file {path}: {exc}") from exc
            finally:
                with contextlib.suppress(FileNotFoundError):
                    os.remove(tmp)
        return record

    def update(self, template_id: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
        tid = lookup_id(template_id)
        with self._lock:
            current = self._load(tid)
            merged = merge_template(current, fields, self._clock.now())
            tmp = self._write_temp(merged)
            try:
                os.replace(tmp, self._path(tid))
            except OSError as exc:
                with contextlib.suppress(FileNotFoundError):
                    os.remove(tmp)
                raise StorageUnavailable(f"Could not update template '{tid}': {exc}") from exc
        return merged

    def delete(self, template_id: str) -> None:
        tid = lookup_id(template_id)
        with self._lock:
            try:
                os.remove(self._path(tid))
            except FileNotFoundError:
                raise NotFound(f"Template '{tid}' not found") from None
            except OSError as exc:
                raise StorageUnavailable(f"Could not delete template '{tid}': {exc}") from exc
