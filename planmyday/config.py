import os
import uuid
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


class Config:
    ROOT_DIR = Path(os.path.abspath(os.path.dirname(__file__))).parent
    SECRET_KEY = os.environ.get("SECRET_KEY")
    if not SECRET_KEY:
        SECRET_KEY = str(uuid.uuid4())
    JWT_SECRET_KEY = SECRET_KEY
    ENV = os.environ.get("ENV", "development").lower()

    CORS_HEADERS = "Content-Type"

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Scheduling engine tunables
    SLOT_GRANULARITY_MINUTES = 15  # matches the calendar grid
    NOW_HORIZON_DAYS = 7
    ASAP_HORIZON_DAYS = int(os.environ.get("ASAP_HORIZON_DAYS", 7))
    ASAP_EXTENDED_HORIZON_DAYS = int(os.environ.get("ASAP_EXTENDED_HORIZON_DAYS", 28))
    MAX_DISPLACED_TASKS = int(os.environ.get("MAX_DISPLACED_TASKS", 25))

    # Used when a user has never configured awake hours
    DEFAULT_TIMEZONE = "UTC"
    DEFAULT_AWAKE_START_HOUR = 9
    DEFAULT_AWAKE_END_HOUR = 17

    AUTO_SCHEDULE_DEFAULT_TASKS = 5
    AUTO_SCHEDULE_MAX_TASKS = 20


class DevelopmentConfig(Config):
    ENV = "development"
    DEBUG = True

    SQLALCHEMY_DATABASE_URI = "sqlite:///" + os.path.join(Config.ROOT_DIR, "app.db")


class ProductionConfig(Config):
    ENV = "production"
    DEBUG = False

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", "sqlite:///" + os.path.join(Config.ROOT_DIR, "app.db")
    )


class TestingConfig(Config):
    ENV = "testing"
    DEBUG = True
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    JWT_SECRET_KEY = "testing-secret-key-that-is-long-enough-for-hs256"
