import os
import time

from flask import Flask, jsonify, request

# Load .env only for local/dev. In prod, env vars come from the platform.
if os.getenv("APP_ENV", "development") != "production":
    from dotenv import load_dotenv
    load_dotenv(".env")


from .config import get_config
from .errors import ServiceError
from .extensions import db, migrate, limiter, mail, cors
from .security import init_security
from .observability import init_logging, init_sentry
from .storage import get_storage, init_storage

_STARTED_AT = time.monotonic()


def create_app(overrides=None):
    app = Flask(__name__)

    # ---- Rate limiting storage configuration ----
    app_env = (os.getenv("APP_ENV", "development") or "development").lower()
    use_redis = app_env in ("staging", "production")
    storage_uri = os.environ.get("REDIS_URL") if use_redis else "memory://"
    if use_redis and not storage_uri:
        # Hard fail in stage/prod so we never silently run without RL storage
        raise RuntimeError("REDIS_URL is required in staging/production for rate limiting")
    app.config["RATELIMIT_STORAGE_URI"] = storage_uri

    # Config: clean, explicit, class-based
    app.config.from_object(get_config())
    if overrides:
        app.config.update(overrides)

    # --- Required env validation for prod-like envs (staging/production) ---
    def _require(name: str):
        val = os.getenv(name) or app.config.get(name)
        if not val:
            raise RuntimeError(f"Missing required environment variable: {name}")
        return val

    if app_env in ("staging", "production"):
        _require("SECRET_KEY")
        _require("API_TOKEN")

    init_logging(app)
    init_sentry(app)
    if app_env in ("staging", "production"):
        init_security(app)

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db, directory="migrations")
    limiter.init_app(app)
    mail.init_app(app)
    cors.init_app(app)

    # Storage backend: chosen once, here (falls back to files if the DB is unusable)
    init_storage(app, db)

    from .blueprints.api import bp as api_bp
    app.register_blueprint(api_bp)

    @limiter.exempt
    @app.get("/health")
    def health():
        storage = get_storage()
        return jsonify({
            "status": "ok",
            "uptime": round(time.monotonic() - _STARTED_AT, 3),
            "storage": storage.backend,
            "degraded": storage.degraded,
        }), 200

    @app.errorhandler(ServiceError)
    def handle_service_error(e):
        if e.status >= 500:
            app.logger.error("%s on %s %s: %s", e.code, request.method, request.path, e)
        return jsonify(e.to_dict()), e.status

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not Found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method Not Allowed"}), 405

    # 429 Too Many Requests with Retry-After
    @app.errorhandler(429)
    def too_many_requests(e):
        retry_after = getattr(e, "retry_after", None)
        headers = {}
        payload = {"error": "rate_limited", "code": 429}
        if retry_after is not None:
            headers["Retry-After"] = str(int(retry_after))
            payload["retry_after"] = int(retry_after)
        return jsonify(payload), 429, headers

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal Server Error"}), 500

    # CLI commands (ops-grade utilities)
    from .cli import register_cli
    register_cli(app)

    return app
