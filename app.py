from flask import Flask
from flask_sqlalchemy import SQLAlchemy
import logging
from logging.handlers import RotatingFileHandler

from config import Config

db = SQLAlchemy()


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    db.init_app(app)

    config_class.init_app(app)

    # --- Logging ---
    log_formatter = logging.Formatter('%(asctime)s %(levelname)s %(funcName)s(%(lineno)d) %(message)s')
    file_handler = RotatingFileHandler(app.config['LOG_FILE'], maxBytes=1024 * 1024 * 5, backupCount=2)
    file_handler.setFormatter(log_formatter)
    file_handler.setLevel(logging.INFO)

    if not app.debug:
        app.logger.addHandler(file_handler)

    app.logger.setLevel(logging.INFO)
    app.logger.info('Project store started')

    # --- Blueprints and commands ---
    from projectstore import projectstore_bp, commands, context
    app.register_blueprint(projectstore_bp)
    commands.init_app(app)

    with app.app_context():
        db.create_all()
        context.init_app(app)

    return app
