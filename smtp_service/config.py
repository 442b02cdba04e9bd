import os

from sqlalchemy.engine import URL

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))


def _bool_env(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.strip().lower() in ("1", "true", "yes", "y", "on")


def _database_url():
    """
    DATABASE_URL wins, then PG_CONNECTION_STRING, then discrete PG_* parts.
    """
    url = os.environ.get("DATABASE_URL") or os.environ.get("PG_CONNECTION_STRING")
    if url:
        # SQLAlchemy 2.x no longer accepts the legacy "postgres://" scheme
        if url.startswith("postgres://"):
            url = "postgresql://" + url[len("postgres://"):]
        return url
    return URL.create(
        "postgresql+psycopg2",
        username=os.getenv("PG_USER", "postgres"),
        password=os.getenv("PG_PASSWORD") or None,
        host=os.getenv("PG_HOST", "localhost"),
        port=int(os.getenv("PG_PORT") or 5432),
        database=os.getenv("PG_DATABASE", "ms_smtp"),
    ).render_as_string(hide_password=False)


def _engine_options():
    opts = {"pool_pre_ping": True}
    if _bool_env("PG_SSL"):
        opts["connect_args"] = {"sslmode": "require"}
    return opts


class BaseConfig:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-not-secure")

    # Shared secret for the X-Api-Token header
    API_TOKEN = os.environ.get("API_TOKEN")

    # Storage backend: filesystem | postgres (evaluated once at startup)
    DB_PROVIDER = os.environ.get("DB_PROVIDER", "filesystem")
    LOG_DIR = os.environ.get("LOG_DIR", "data/logs")
    LOG_FILE_NAME = os.environ.get("LOG_FILE_NAME", "email.log")
    TEMPLATES_DIR = os.environ.get("TEMPLATES_DIR", "data/templates")

    # Database (only used when DB_PROVIDER=postgres)
    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_ENGINE_OPTIONS = _engine_options()
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Logging / misc
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    MAX_CONTENT_LENGTH = 1024 * 1024  # 1mb request bodies
    # staging/production only; turn off when TLS terminates at a proxy that talks plain HTTP
    FORCE_HTTPS = _bool_env("FORCE_HTTPS", True)

    # Flask-Limiter: one global window, like the old express limiter
    RATELIMIT_DEFAULT = os.environ.get("RATELIMIT_DEFAULT", "100 per 15 minutes")
    RATELIMIT_HEADERS_ENABLED = True

    # --- Mail (SMTP_* names kept for existing deployments) ---
    MAIL_SERVER = os.getenv("SMTP_HOST") or os.getenv("MAIL_SERVER", "localhost")
    MAIL_PORT = int(os.getenv("SMTP_PORT") or os.getenv("MAIL_PORT", "587"))
    MAIL_USE_SSL = _bool_env("SMTP_SECURE", _bool_env("MAIL_USE_SSL", MAIL_PORT == 465))
    MAIL_USE_TLS = _bool_env("MAIL_USE_TLS", not MAIL_USE_SSL)
    MAIL_USERNAME = os.getenv("SMTP_USER") or os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("SMTP_PASS") or os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("SMTP_FROM_DEFAULT") or os.getenv("MAIL_DEFAULT_SENDER")
    MAIL_SUPPRESS_SEND = _bool_env("MAIL_SUPPRESS_SEND", False)


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG")
    MAIL_SUPPRESS_SEND = _bool_env("MAIL_SUPPRESS_SEND", True)


class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "WARNING")
    SECRET_KEY = os.environ.get("SECRET_KEY")  # no fallback; create_app() refuses to boot without it
    MAIL_SUPPRESS_SEND = False


class TestingConfig(BaseConfig):
    TESTING = True
    DEBUG = True
    API_TOKEN = "test-token"
    SQLALCHEMY_DATABASE_URI = os.environ.get("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    MAIL_SUPPRESS_SEND = True
    MAIL_DEFAULT_SENDER = "SMTP Service <no-reply@local.test>"


_ENV_MAP = {
    "development": DevelopmentConfig,
    "staging": ProductionConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}


def get_config():
    env = os.environ.get("APP_ENV", "development").lower()
    return _ENV_MAP.get(env, DevelopmentConfig)
