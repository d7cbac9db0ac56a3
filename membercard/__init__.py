from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_migrate import Migrate
from werkzeug.security import generate_password_hash
import logging
import os
from dotenv import load_dotenv

load_dotenv()

db = SQLAlchemy()
login_manager = LoginManager()
migrate = Migrate()


def _bundled_template(app, filename):
    """Card artwork shipped under static/templates; faces are drawn on plain white without it"""
    path = os.path.join(app.root_path, 'static', 'templates', filename)
    return path if os.path.exists(path) else None


def create_app(config_overrides=None):
    app = Flask(__name__)

    # Configuration
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL') or 'sqlite:///membercard.db'
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['UPLOAD_FOLDER'] = os.environ.get('UPLOAD_FOLDER') or os.path.join(app.root_path, 'static', 'uploads')
    app.config['MAX_CONTENT_LENGTH'] = 10 * 1024 * 1024  # base64 photos travel inside JSON bodies
    app.config['ADMIN_PASSWORD'] = os.environ.get('ADMIN_PASSWORD') or 'admin123'
    app.config['AUTH_TOKEN_TTL_DAYS'] = int(os.environ.get('AUTH_TOKEN_TTL_DAYS', 7))
    app.config['PUBLIC_BASE_URL'] = os.environ.get('PUBLIC_BASE_URL') or 'http://localhost:4000'
    app.config['CARD_FRONT_TEMPLATE'] = os.environ.get('CARD_FRONT_TEMPLATE') or _bundled_template(app, 'front.png')
    app.config['CARD_BACK_TEMPLATE'] = os.environ.get('CARD_BACK_TEMPLATE') or _bundled_template(app, 'back.png')
    app.config['PHOTO_FETCH_TIMEOUT'] = float(os.environ.get('PHOTO_FETCH_TIMEOUT', 10))
    app.config['DEFAULT_CREDENTIAL_YEARS'] = int(os.environ.get('DEFAULT_CREDENTIAL_YEARS', 1))
    app.config['SEED_DEMO_DATA'] = os.environ.get('SEED_DEMO_DATA', 'false').lower() == 'true'
    app.config['LOG_LEVEL'] = os.environ.get('LOG_LEVEL', 'INFO')

    if config_overrides:
        app.config.update(config_overrides)

    # Only the hash is kept around once the app is configured
    app.config['ADMIN_PASSWORD_HASH'] = generate_password_hash(app.config.pop('ADMIN_PASSWORD'))

    app.logger.setLevel(getattr(logging, str(app.config['LOG_LEVEL']).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)
    migrate.init_app(app, db)

    # Record store lives for the lifetime of the process
    from membercard.store import MemberStore
    app.extensions['member_store'] = MemberStore(db)

    # Create tables
    with app.app_context():
        from membercard import models  # noqa: F401
        db.create_all()

    # Create upload directory
    os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)

    # Bearer token guard for Flask-Login
    from membercard.auth import load_user_from_request, unauthorized

    login_manager.request_loader(load_user_from_request)
    login_manager.unauthorized_handler(unauthorized)

    # Register blueprints
    from membercard.routes.api import api_bp
    from membercard.routes.public import public_bp

    app.register_blueprint(api_bp, url_prefix='/api')
    app.register_blueprint(public_bp)

    return app
