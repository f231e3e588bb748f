from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from .config import load_config, apply_defaults
import logging
import os
import secrets

db = SQLAlchemy()


def create_app(test_config: dict | None = None):
    base_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))

    app = Flask(__name__)

    # Tests supply their own PREPPER_CONFIG and must not depend on config.yml
    if test_config and 'PREPPER_CONFIG' in test_config:
        config = apply_defaults(test_config['PREPPER_CONFIG'])
    else:
        config = load_config()

    db_url = config.get('database_url')
    if not db_url:
        data_dir = os.path.join(base_dir, 'data')
        os.makedirs(data_dir, exist_ok=True)
        # SQLite DB file at an absolute path to avoid driver path issues
        db_url = 'sqlite:///' + os.path.join(data_dir, 'app.db')
    app.config['SQLALCHEMY_DATABASE_URI'] = db_url
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    # Photos are uploaded through the API; cap request bodies at 20 MB
    app.config['MAX_CONTENT_LENGTH'] = 20 * 1024 * 1024
    app.config['SESSION_COOKIE_HTTPONLY'] = True
    app.config['SESSION_COOKIE_SAMESITE'] = 'Lax'

    secret = config.get('secret_key')
    if not secret:
        secret = secrets.token_hex(32)
    app.config['SECRET_KEY'] = secret
    app.config['PREPPER_CONFIG'] = config

    # Allow tests to override configuration (database, testing flag, etc.)
    if test_config:
        app.config.update(test_config)

    level = str(config.get('log_level') or 'INFO').upper()
    app.logger.setLevel(getattr(logging, level, logging.INFO))
    logging.getLogger('prepper').setLevel(getattr(logging, level, logging.INFO))

    db.init_app(app)

    with app.app_context():
        from . import models  # noqa: F401 ensures model metadata is registered
        db.create_all()

    from .blueprints import main_bp
    # Register modular route modules to attach endpoints to main_bp
    from .blueprints import auth  # noqa: F401
    from .blueprints import stashes  # noqa: F401
    from .blueprints import invitations  # noqa: F401
    from .blueprints import items  # noqa: F401
    from .blueprints import photos  # noqa: F401
    from .blueprints import checklist  # noqa: F401
    from .blueprints import ai  # noqa: F401
    from .blueprints import push  # noqa: F401
    from .blueprints import cron  # noqa: F401
    app.register_blueprint(main_bp)

    return app
