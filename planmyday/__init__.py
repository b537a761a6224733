from flask import Flask

from .config import Config, DevelopmentConfig, ProductionConfig
from .extensions import cors, create_logger, db, jwt

logger = create_logger(__name__, level="DEBUG")


def get_config_class():
    if Config.ENV == "production":
        return ProductionConfig
    return DevelopmentConfig


def create_app(config_class=None):
    app = Flask(__name__)
    app.config.from_object(config_class or get_config_class())

    db.init_app(app)
    jwt.init_app(app)
    cors.init_app(app)

    # Registers the JWT user lookup loader
    from . import models  # noqa: F401
    from .carryover_routes import carryover_bp
    from .dependency_routes import dependency_bp
    from .group_routes import group_bp
    from .routes import base_bp, task_bp, user_bp

    app.register_blueprint(base_bp)
    app.register_blueprint(task_bp)
    app.register_blueprint(dependency_bp)
    app.register_blueprint(carryover_bp)
    app.register_blueprint(group_bp)
    app.register_blueprint(user_bp)

    with app.app_context():
        db.create_all()

    logger.info(f"App created with {app.config.get('ENV')} config")
    return app
