from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from typing import Optional, Dict, Any
import os

from .logging_config import setup_logger

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()

_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def _env_flag(name: str, default: str = '0') -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret')
    app.config['DATABASE_URL'] = os.getenv('DATABASE_URL', 'sqlite:///dev.db')
    app.config['IDENTITY_FALLBACK_FILE'] = os.getenv(
        'IDENTITY_FALLBACK_FILE', os.path.join(_BACKEND_DIR, 'seeds', 'identity_fallbacks.json'))
    app.config['IDENTITY_DEFAULT_ROLE'] = os.getenv('IDENTITY_DEFAULT_ROLE', 'DataEntry')
    app.config['IDENTITY_FAIL_CLOSED'] = _env_flag('IDENTITY_FAIL_CLOSED')
    app.config['PCS_REFRESH_SECONDS'] = float(os.getenv('PCS_REFRESH_SECONDS', '30'))
    app.config['PCS_WATCH_MAX_SECONDS'] = float(os.getenv('PCS_WATCH_MAX_SECONDS', '25'))
    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')

    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

    setup_logger(app.config['LOG_LEVEL'])

    # Database
    db_url = app.config['DATABASE_URL']
    if db_url.endswith(':memory:'):
        # Ensure a single shared in-memory SQLite database across all sessions
        db_engine = create_engine(
            db_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        db_engine = create_engine(db_url, echo=False, future=True)
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    jwt.init_app(app)

    from .routes.iam import iam_bp
    from .routes.pcs import pcs_bp
    from .routes.requests import req_bp
    from .routes.procurement import proc_bp
    from .routes.notifications import ntf_bp
    app.register_blueprint(iam_bp, url_prefix='/iam')
    app.register_blueprint(pcs_bp, url_prefix='/pcs')
    app.register_blueprint(req_bp, url_prefix='/requests')
    app.register_blueprint(proc_bp, url_prefix='/procurement')
    app.register_blueprint(ntf_bp, url_prefix='/notifications')

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    @app.teardown_appcontext
    def remove_session(exc=None):
        SessionLocal.remove()

    # Unified error handler producing standardized JSON shape
    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        if isinstance(e, HTTPException):
            payload = {
                'error': {
                    'status': e.code,
                    'title': e.name,
                    'detail': e.description,
                }
            }
            return payload, e.code
        # Unhandled exception
        app.logger.exception('Unhandled exception')
        return {
            'error': {
                'status': 500,
                'title': 'Internal Server Error',
                'detail': 'Unexpected error'
            }
        }, 500

    return app


def get_db():
    return SessionLocal()
