import sys
from pathlib import Path

# Add the project root directory to Python path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))
from datetime import datetime, timedelta

import pytest
from flask_jwt_extended import create_access_token

from planmyday import create_app
from planmyday.config import TestingConfig
from planmyday.extensions import db
from planmyday.models import Task, TaskDependency, TaskGroup, User
from planmyday.src.scheduling.types import (
    Availability,
    EngineSettings,
    Snapshot,
    TaskSnapshot,
    WeeklyHours,
)

"""
Shared fixtures: a Flask app on in-memory SQLite for route tests, and
snapshot builders for pure engine tests.
"""

# A Monday; engine tests pin "now" relative to it
MONDAY = datetime(2024, 1, 8)


def at(day_offset, hour, minute=0):
    """Naive UTC instant `day_offset` days after MONDAY at hour:minute."""
    return MONDAY + timedelta(days=day_offset, hours=hour, minutes=minute)


@pytest.fixture
def app():
    """Create and configure a Flask app for testing."""
    app = create_app(TestingConfig)

    with app.app_context():
        db.create_all()
        yield app
        # Clean up after tests
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def test_db(app):
    """Set up the database for testing and clean it after tests."""
    with app.app_context():
        TaskDependency.query.delete()
        Task.query.delete()
        TaskGroup.query.delete()
        User.query.delete()
        db.session.commit()

        yield db

        db.session.rollback()
        TaskDependency.query.delete()
        Task.query.delete()
        TaskGroup.query.delete()
        User.query.delete()
        db.session.commit()


@pytest.fixture
def user(test_db):
    """A user awake from midnight to 23:00 UTC every day, so route tests never run out of window."""
    user = User(
        email="planner@example.com",
        timezone="UTC",
        awake_hours=WeeklyHours.every_day(0, 23).to_dict(),
    )
    test_db.session.add(user)
    test_db.session.commit()
    return user


@pytest.fixture
def auth_headers(app, user):
    token = create_access_token(identity=user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def create_task_factory(test_db, user):
    """Factory to create tasks owned by the test user"""

    def _create_task(title, duration=60, **kwargs):
        task = Task(user_id=user.id, title=title, duration=duration, **kwargs)
        test_db.session.add(task)
        test_db.session.commit()
        return task

    return _create_task


@pytest.fixture
def create_group_factory(test_db, user):
    """Factory to create task groups owned by the test user"""

    def _create_group(name, **kwargs):
        group = TaskGroup(user_id=user.id, name=name, **kwargs)
        test_db.session.add(group)
        test_db.session.commit()
        return group

    return _create_group


@pytest.fixture
def make_task():
    """Factory for engine task snapshots; later calls get later created_at values."""
    counter = {"n": 0}

    def _make_task(task_id, **kwargs):
        counter["n"] += 1
        kwargs.setdefault("title", task_id)
        kwargs.setdefault("duration", 60)
        kwargs.setdefault(
            "created_at", MONDAY - timedelta(days=7) + timedelta(minutes=counter["n"])
        )
        return TaskSnapshot(id=task_id, **kwargs)

    return _make_task


@pytest.fixture
def make_snapshot():
    """Factory for engine snapshots; defaults to 09:00-17:00 UTC every day."""

    def _make_snapshot(
        tasks,
        awake_hours=None,
        timezone="UTC",
        groups=(),
        dependency_map=None,
        settings=None,
    ):
        if awake_hours is None:
            awake_hours = WeeklyHours.every_day(9, 17)
        return Snapshot(
            tasks,
            groups=groups,
            dependency_map=dependency_map,
            availability=Availability(timezone=timezone, awake_hours=awake_hours),
            settings=settings or EngineSettings(),
        )

    return _make_snapshot
