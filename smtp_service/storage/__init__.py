"""
Backend selection for the event log and template stores.

The backend is chosen once at startup from DB_PROVIDER. If the relational
backend cannot be initialized, the app keeps running on the file backend and
says so in the logs (and in /health).
"""
import logging
from dataclasses import dataclass

from flask import current_app

from .base import (
    FILESYSTEM,
    LOG_STATUSES,
    RELATIONAL,
    LogFilter,
    LogStore,
    StorageConfig,
    TemplateStore,
    normalize_id,
)
from .filesystem import FileLogStore, FileTemplateStore

logger = logging.getLogger(__name__)

__all__ = [
    "FILESYSTEM",
    "LOG_STATUSES",
    "RELATIONAL",
    "LogFilter",
    "LogStore",
    "Storage",
    "StorageConfig",
    "TemplateStore",
    "build_storage",
    "get_storage",
    "init_storage",
    "normalize_id",
]


@dataclass(frozen=True)
class Storage:
    backend: str
    logs: LogStore
    templates: TemplateStore
    config: StorageConfig
    degraded: bool = False


def _file_storage(config: StorageConfig, degraded: bool = False) -> Storage:
    return Storage(
        backend=FILESYSTEM,
        logs=FileLogStore(config),
        templates=FileTemplateStore(config),
        config=config,
        degraded=degraded,
    )


def _init_relational(db):
    # Registers both tables on the metadata before create_all()
    from smtp_service import models  # noqa: F401

    db.create_all()  # CREATE TABLE IF NOT EXISTS semantics


def build_storage(config: StorageConfig, db=None) -> Storage:
    """Needs an app context when config.backend is relational."""
    if config.backend != RELATIONAL:
        logger.info("Filesystem storage backend enabled (logs=%s, templates=%s)", config.log_file, config.templates_dir)
        return _file_storage(config)

    try:
        _init_relational(db)
    except Exception as exc:
        logger.warning("Relational storage init failed, falling back to filesystem: %s", exc)
        return _file_storage(config.with_backend(FILESYSTEM), degraded=True)

    from .relational import SqlLogStore, SqlTemplateStore

    logger.info("Relational storage backend enabled")
    return Storage(
        backend=RELATIONAL,
        logs=SqlLogStore(db),
        templates=SqlTemplateStore(db),
        config=config,
    )


def init_storage(app, db=None) -> Storage:
    if db is None:
        from smtp_service.extensions import db

    config = StorageConfig.from_mapping(app.config)
    with app.app_context():
        storage = build_storage(config, db)
    app.extensions["storage"] = storage
    return storage


def get_storage() -> Storage:
    return current_app.extensions["storage"]
