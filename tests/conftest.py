import os
# Ensure the app factory picks the Testing config
os.environ.setdefault("APP_ENV", "testing")

import pytest
from smtp_service import create_app
from smtp_service.extensions import db

API_HEADERS = {"X-Api-Token": "test-token"}


@pytest.fixture()
def make_app(tmp_path):
    """Build an isolated app: its own log file, templates dir and SQLite file."""
    apps = []

    def _make(backend="filesystem", **overrides):
        config = {
            "DB_PROVIDER": backend,
            "LOG_DIR": str(tmp_path / "logs"),
            "LOG_FILE_NAME": "email.log",
            "TEMPLATES_DIR": str(tmp_path / "templates"),
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'test.db'}",
        }
        config.update(overrides)
        app = create_app(config)
        apps.append(app)
        return app

    yield _make

    for app in apps:
        with app.app_context():
            db.session.remove()
            db.engine.dispose()


@pytest.fixture(params=["filesystem", "postgres"])
def backend(request):
    return request.param


@pytest.fixture()
def app(make_app, backend):
    return make_app(backend)


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def auth():
    return dict(API_HEADERS)
