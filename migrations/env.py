import logging
from logging.config import fileConfig
from pathlib import Path

from flask import current_app
from alembic import context

config = context.config


def _init_logging():
    # alembic.ini lives next to this file when created by `flask db init`
    ini = config.config_file_name
    if ini and Path(ini).exists():
        fileConfig(ini)
    else:
        logging.basicConfig(level=logging.INFO)


_init_logging()
logger = logging.getLogger("alembic.env")


def get_engine():
    # Flask-SQLAlchemy >= 3.x
    return current_app.extensions["migrate"].db.engine


def get_engine_url():
    return get_engine().url.render_as_string(hide_password=False).replace("%", "%%")


config.set_main_option("sqlalchemy.url", get_engine_url())
target_db = current_app.extensions["migrate"].db


def get_metadata():
    # importing the package registers email_logs + email_templates
    import smtp_service.models  # noqa: F401

    if hasattr(target_db, "metadatas"):
        return target_db.metadatas[None]
    return target_db.metadata


def _include_object(object, name, type_, reflected, compare_to):
    # Never autogenerate DROP INDEX for indexes that only exist in the database
    if type_ == "index" and reflected and compare_to is None:
        return False
    return True


def run_migrations_offline():
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=get_metadata(),
        literal_binds=True,
        compare_type=True,
        include_object=_include_object,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    def process_revision_directives(context_, revision, directives):
        if getattr(config.cmd_opts, "autogenerate", False):
            script = directives[0]
            if script.upgrade_ops.is_empty():
                directives[:] = []
                logger.info("No changes in schema detected.")

    conf_args = dict(current_app.extensions["migrate"].configure_args)
    conf_args.setdefault("process_revision_directives", process_revision_directives)
    conf_args.update(
        compare_type=True,
        include_object=_include_object,
        target_metadata=get_metadata(),
    )

    with get_engine().connect() as connection:
        context.configure(connection=connection, **conf_args)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
