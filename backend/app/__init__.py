from flask import Flask
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from typing import Optional, Dict, Any

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()

DOCS_HTML = (
    "<!DOCTYPE html><html><head><title>Maintenance API Docs</title>"
    "<link rel=\"stylesheet\" href=\"https://cdn.jsdelivr.net/npm/redoc@next/bundles/redoc.standalone.css\" />"
    "</head><body><redoc spec-url='/openapi.json'></redoc>"
    "<script src='https://cdn.jsdelivr.net/npm/redoc@next/bundles/redoc.standalone.js'></script>"
    "</body></html>"
)


def _make_engine(db_url: str):
    if db_url.endswith(':memory:'):
        # one shared in-memory database for every session and thread
        return create_engine(
            db_url,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(db_url, future=True)


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    from .config.settings import apply_log_level, load_settings
    from .errors import register_error_handlers

    app = Flask(__name__)
    app.config.update(load_settings(config))
    apply_log_level(app)

    db_engine = _make_engine(app.config['DATABASE_URL'])
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    jwt.init_app(app)

    from .routes.workflow import workflow_bp
    from .routes.approvals import apr_bp
    from .routes.payments import pay_bp
    app.register_blueprint(workflow_bp, url_prefix='/workflow')
    app.register_blueprint(apr_bp, url_prefix='/approvals')
    app.register_blueprint(pay_bp, url_prefix='/payments')

    @app.teardown_appcontext
    def remove_session(exc):  # type: ignore
        if SessionLocal is not None:
            SessionLocal.remove()

    register_error_handlers(app)

    from .openapi import build_openapi_spec

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    @app.route('/openapi.json')
    def openapi_spec():
        return build_openapi_spec()

    @app.route('/docs')
    def docs_index():
        return DOCS_HTML

    return app


def get_db():
    return SessionLocal()
