from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_mail import Mail
from flask_cors import CORS

db = SQLAlchemy()
migrate = Migrate()
cors = CORS()


def _rate_limit_key():
    # Callers share one API token, so the client address is the only useful key
    return get_remote_address()


# Storage is configured in create_app() via limiter.init_app(...).
limiter = Limiter(key_func=_rate_limit_key)

mail = Mail()
