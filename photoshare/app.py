# Main Flask app
import logging

import click
from flask import Flask, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from photoshare import media
from photoshare.auth import bcrypt, clear_session, jwt
from photoshare.config import config
from photoshare.errors import ApiError
from photoshare.models import db
from photoshare.routes import auth_bp, main_bp, posts_bp, users_bp

logger = logging.getLogger(__name__)


def create_app(config_name='default'):
    app = Flask(__name__)
    app.config.from_object(config[config_name])

    configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    bcrypt.init_app(app)
    jwt.init_app(app)
    media.init_app(app)
    CORS(app, origins=[app.config['CLIENT_URL']], supports_credentials=True)

    # Register blueprints
    prefix = app.config['API_PREFIX']
    app.register_blueprint(main_bp, url_prefix='/')
    app.register_blueprint(auth_bp, url_prefix=f'{prefix}/auth')
    app.register_blueprint(posts_bp, url_prefix=f'{prefix}/posts')
    app.register_blueprint(users_bp, url_prefix=f'{prefix}/users')

    register_error_handlers(app)
    register_commands(app)

    return app


def configure_logging(app):
    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(exc):
        db.session.rollback()
        response, status = exc.to_response()
        if exc.clears_session:
            clear_session(response)
        if status >= 500:
            logger.error('%s: %s', type(exc).__name__, exc.message)
        return response, status

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        return jsonify({"message": exc.description}), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc):
        db.session.rollback()
        logger.exception('Unhandled error')
        return jsonify({"message": "Server error"}), 500


def register_commands(app):
    @app.cli.command('init-db')
    def init_db():
        """Create all database tables."""
        db.create_all()
        click.echo('Initialized the database.')
