import atexit
import os
from datetime import datetime, timezone

import click
from flask import Flask, jsonify
from flask_cors import CORS
from flask_wtf import CSRFProtect
from sqlalchemy import create_engine
from werkzeug.middleware.proxy_fix import ProxyFix

from .audit import AuditLog
from .credentials import CredentialService
from .errors import register_error_handlers
from .extensions import init_db_session, Base
from .logging_config import setup_logging
from .rate_limiter import RateLimiter, MemoryCounterStore, DatabaseCounterStore
from .storage import ObjectStore
from .tokens import TokenService

__version__ = '1.0.0'


def _env_flag(name, default):
    return os.environ.get(name, default).lower() == 'true'


def default_config():
    return dict(
        ENV=os.environ.get('ENV', 'production'),
        API_PREFIX=os.environ.get('API_PREFIX', '/api'),
        SQLALCHEMY_DATABASE_URI=os.environ.get('DATABASE_URL', 'sqlite:///filegate.db'),
        SECRET_KEY=os.environ.get('SECRET_KEY', 'dev-secret'),
        TOKEN_EXPIRES_SECONDS=int(os.environ.get('TOKEN_EXPIRES_SECONDS', 60 * 60 * 24)),
        PASSWORD_HASH_TIME_COST=int(os.environ.get('PASSWORD_HASH_TIME_COST', '3')),
        PASSWORD_HASH_MEMORY_COST=int(os.environ.get('PASSWORD_HASH_MEMORY_COST', '65536')),
        MAX_UPLOAD_MB=int(os.environ.get('MAX_UPLOAD_MB', '100')),
        DOWNLOAD_MODE=os.environ.get('DOWNLOAD_MODE', 'presigned'),
        SIGNED_URL_EXPIRES_SECONDS=int(os.environ.get('SIGNED_URL_EXPIRES_SECONDS', '3600')),
        S3_ENDPOINT=os.environ.get('S3_ENDPOINT'),
        S3_REGION=os.environ.get('S3_REGION', 'eu-central-1'),
        S3_ACCESS_KEY=os.environ.get('S3_ACCESS_KEY'),
        S3_SECRET_KEY=os.environ.get('S3_SECRET_KEY'),
        S3_BUCKET=os.environ.get('S3_BUCKET', 'filegate'),
        S3_FORCE_PATH_STYLE=_env_flag('S3_FORCE_PATH_STYLE', 'false'),
        RATE_LIMIT_ENABLED=_env_flag('RATE_LIMIT_ENABLED', 'true'),
        RATE_LIMIT_STORAGE=os.environ.get('RATE_LIMIT_STORAGE', 'database'),
        RATE_LIMIT_FAIL_OPEN=_env_flag('RATE_LIMIT_FAIL_OPEN', 'true'),
        AUDIT_ASYNC=_env_flag('AUDIT_ASYNC', 'true'),
        TRUST_PROXY=_env_flag('TRUST_PROXY', 'false'),
        ADMIN_EMAIL=os.environ.get('ADMIN_EMAIL'),
        ADMIN_PASSWORD=os.environ.get('ADMIN_PASSWORD'),
        LEGACY_ALBUMS_FILE=os.environ.get('LEGACY_ALBUMS_FILE'),
        LEGACY_ALBUMS_DIR=os.environ.get('LEGACY_ALBUMS_DIR'),
        LOG_LEVEL=os.environ.get('LOG_LEVEL', 'INFO'),
        # comma-separated origins allowed to call the API from a browser
        CORS_ORIGIN=os.environ.get('CORS_ORIGIN', 'http://localhost:3000'),
        # secure cookie settings (CSRF session for the legacy form)
        SESSION_COOKIE_SECURE=_env_flag('SESSION_COOKIE_SECURE', 'true'),
        SESSION_COOKIE_HTTPONLY=_env_flag('SESSION_COOKIE_HTTPONLY', 'true'),
        SESSION_COOKIE_SAMESITE=os.environ.get('SESSION_COOKIE_SAMESITE', 'Lax'),
    )


def _origins(value):
    return [o.strip() for o in value.split(',') if o.strip()]


def create_app(config_object=None):
    app = Flask(__name__)
    app.config.from_mapping(default_config())
    if config_object:
        app.config.update(config_object)

    setup_logging(app.config['LOG_LEVEL'])

    if app.config['DOWNLOAD_MODE'] not in ('presigned', 'proxy'):
        raise RuntimeError(f"DOWNLOAD_MODE must be 'presigned' or 'proxy', got {app.config['DOWNLOAD_MODE']!r}")

    if app.config['TRUST_PROXY']:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1)

    # initialize DB engine and session
    engine = create_engine(app.config['SQLALCHEMY_DATABASE_URI'], future=True)
    db_session = init_db_session(engine)
    app.db_engine = engine
    app.db_session = db_session

    app.credentials = CredentialService(
        time_cost=app.config['PASSWORD_HASH_TIME_COST'],
        memory_cost=app.config['PASSWORD_HASH_MEMORY_COST'],
    )
    app.tokens = TokenService(app.config['SECRET_KEY'], expires_in=app.config['TOKEN_EXPIRES_SECONDS'])
    app.audit = AuditLog(db_session.session_factory, asynchronous=app.config['AUDIT_ASYNC'])
    atexit.register(app.audit.close)

    if app.config['RATE_LIMIT_STORAGE'] == 'memory':
        counter_store = MemoryCounterStore()
    else:
        counter_store = DatabaseCounterStore(db_session.session_factory)
    app.rate_limiter = RateLimiter(counter_store, enabled=app.config['RATE_LIMIT_ENABLED'],
                                   fail_open=app.config['RATE_LIMIT_FAIL_OPEN'])

    app.object_store = app.config.get('OBJECT_STORE')
    if app.object_store is None:
        app.object_store = ObjectStore.from_config(app.config)

    @app.teardown_appcontext
    def _remove_session(exc=None):
        db_session.remove()

    @app.after_request
    def _security_headers(resp):
        resp.headers.setdefault('X-Frame-Options', 'DENY')
        resp.headers.setdefault('X-Content-Type-Options', 'nosniff')
        resp.headers.setdefault('Content-Security-Policy', "default-src 'self'; frame-ancestors 'none'")
        resp.headers.setdefault('Referrer-Policy', 'no-referrer-when-downgrade')
        return resp

    register_error_handlers(app)

    # CSRF protection applies to form posts; bearer-token API blueprints are exempt
    csrf = CSRFProtect()
    csrf.init_app(app)

    from .auth import auth_bp
    from .files import files_bp
    from .users import users_bp
    from .assignments import assignments_bp
    from .legacy import legacy, download as legacy_download

    prefix = app.config['API_PREFIX'].rstrip('/')
    CORS(app, resources={prefix + '/*': {'origins': _origins(app.config['CORS_ORIGIN'])}},
         supports_credentials=True, methods=['GET', 'POST', 'PUT', 'PATCH', 'DELETE', 'OPTIONS'],
         allow_headers=['Content-Type', 'Authorization'])
    for bp, path in ((auth_bp, '/auth'), (files_bp, '/files'), (users_bp, '/users'),
                     (assignments_bp, '/assignments')):
        csrf.exempt(bp)
        app.register_blueprint(bp, url_prefix=prefix + path)

    if app.config['LEGACY_ALBUMS_FILE'] and app.config['LEGACY_ALBUMS_DIR']:
        # verified by hand after the rate limit check
        csrf.exempt(legacy_download)
        app.register_blueprint(legacy, url_prefix='/legacy')

    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({
            'status': 'ok',
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'version': __version__,
        })

    register_cli(app)
    app.logger.info('filegate ready', extra={'download_mode': app.config['DOWNLOAD_MODE'],
                                             'rate_limit_storage': app.config['RATE_LIMIT_STORAGE']})
    return app


def register_cli(app):
    from .seed import seed_admin

    @app.cli.command('init-db')
    def init_db_command():
        """Create all tables."""
        Base.metadata.create_all(bind=app.db_engine)
        click.echo('Tables created')

    @app.cli.command('seed-admin')
    @click.option('--email', default=None)
    @click.option('--password', default=None)
    def seed_admin_command(email, password):
        """Create the bootstrap administrator."""
        email = email or app.config['ADMIN_EMAIL']
        password = password or app.config['ADMIN_PASSWORD']
        if not email or not password:
            raise click.UsageError('ADMIN_EMAIL and ADMIN_PASSWORD are required')
        admin = seed_admin(app, email, password)
        app.audit.flush()
        click.echo(f'Admin created: {admin.email}' if admin else f'Admin already exists: {email}')

    @app.cli.command('hash-password')
    @click.argument('password')
    def hash_password_command(password):
        """Print a password hash for the legacy albums file."""
        click.echo(app.credentials.hash(password))
