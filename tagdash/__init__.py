from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
import logging
from logging.handlers import RotatingFileHandler
import os
from dotenv import load_dotenv

load_dotenv()

db = SQLAlchemy()
login_manager = LoginManager()

LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s %(message)s'


def _env_int(name, default):
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_flag(name, default=False):
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() not in ('0', 'false', 'off', '')


def _configure_logging(app):
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(handler)

    if app.config.get('TESTING'):
        return

    log_path = app.config['LOG_DIR']
    os.makedirs(log_path, exist_ok=True)
    log_file = os.path.join(log_path, 'tagdash.log')
    already_attached = any(
        isinstance(h, RotatingFileHandler) and getattr(h, 'baseFilename', None) == os.path.abspath(log_file)
        for h in root_logger.handlers
    )
    if not already_attached:
        file_handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(file_handler)
    app.logger.setLevel(logging.DEBUG if app.debug else logging.INFO)


def create_app(test_config=None):
    app = Flask(__name__)

    # Configuration
    app.config['SECRET_KEY'] = os.getenv('SECRET_KEY', 'dev-secret-key')
    app.config['SQLALCHEMY_DATABASE_URI'] = os.getenv('DATABASE_URL', 'sqlite:///tagdash.db')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['GOOGLE_CLIENT_ID'] = os.getenv('GOOGLE_CLIENT_ID')
    app.config['GOOGLE_CLIENT_SECRET'] = os.getenv('GOOGLE_CLIENT_SECRET')
    app.config['GOOGLE_REDIRECT_URI'] = os.getenv('GOOGLE_REDIRECT_URI', 'http://localhost:5000/auth/google/callback')
    app.config['EMAIL_PAGE_SIZE'] = _env_int('EMAIL_PAGE_SIZE', 20)
    app.config['SEARCH_MAX_RESULTS'] = _env_int('SEARCH_MAX_RESULTS', 50)
    app.config['GMAIL_DETAIL_WORKERS'] = _env_int('GMAIL_DETAIL_WORKERS', 8)
    app.config['ACTIVITY_LIMIT'] = _env_int('ACTIVITY_LIMIT', 20)
    app.config['CALENDAR_ACTIVITY_LIMIT'] = _env_int('CALENDAR_ACTIVITY_LIMIT', 10)
    app.config['TAG_FILTER_SERVER_AGGREGATE'] = _env_flag('TAG_FILTER_SERVER_AGGREGATE')
    app.config['LOG_DIR'] = os.getenv('LOG_DIR', os.path.join(os.getcwd(), 'logs'))
    if test_config:
        app.config.update(test_config)

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)
    login_manager.login_view = 'auth.login'

    # Ensure models are imported so db.create_all sees them
    from tagdash import models  # noqa: F401

    with app.app_context():
        db.create_all()

    from tagdash.errors import register_error_handlers
    from tagdash.services.view_sessions import ViewSessionRegistry
    register_error_handlers(app)
    ViewSessionRegistry().init_app(app)

    # Register blueprints
    from tagdash.routes import main_bp, auth_bp, email_bp, tag_bp, calendar_bp, card_bp, activity_bp
    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(email_bp)
    app.register_blueprint(tag_bp)
    app.register_blueprint(calendar_bp)
    app.register_blueprint(card_bp)
    app.register_blueprint(activity_bp)

    _configure_logging(app)

    return app
