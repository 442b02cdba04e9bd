import os
import logging
from logging.config import dictConfig


def init_logging(app):
    """Structured logs (JSON) in staging/prod; keep default console in dev/tests."""
    app_env = (os.getenv("APP_ENV", "development") or "development").lower()
    level = (app.config.get("LOG_LEVEL") or "INFO").upper()
    if app_env in ("staging", "production"):
        fmt = "%(asctime)s %(levelname)s %(name)s %(message)s"
        dictConfig({
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"json": {"()": "pythonjsonlogger.json.JsonFormatter", "fmt": fmt}},
            "handlers": {"wsgi": {"class": "logging.StreamHandler", "formatter": "json"}},
            "root": {"level": level, "handlers": ["wsgi"]},
        })
    else:
        # storage/service module loggers follow the app's level
        logging.getLogger("smtp_service").setLevel(level)
    app.logger.setLevel(level)


def init_sentry(app):
    """Wire Sentry if DSN present; no-op otherwise."""
    dsn = os.getenv("SENTRY_DSN")
    if not dsn:
        return
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration

    sentry_sdk.init(
        dsn=dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=float(os.getenv("SENTRY_TRACES", "0.0")),
        environment=os.getenv("APP_ENV", "development"),
    )
