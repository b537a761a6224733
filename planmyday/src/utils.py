import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import date, datetime

import pytz
from flask import current_app

from planmyday.extensions import create_logger, db
from planmyday.models import Task, TaskDependency, TaskGroup
from planmyday.src.scheduling.types import EngineSettings, Snapshot

logger = create_logger(__name__, level="DEBUG")

_user_locks = defaultdict(threading.Lock)
_user_locks_guard = threading.Lock()


def parse_iso_datetime(datetime_str):
    """
    Parse an ISO format datetime string into a naive UTC datetime object.
    This function will consistently handle:
    - UTC ISO strings with 'Z' suffix
    - ISO strings with explicit timezone offsets
    - Naive ISO strings (assuming they represent UTC times)
    """
    if not datetime_str:
        return None

    # Parse the ISO string - handling both timezone-aware and naive formats
    if "Z" in datetime_str or "+" in datetime_str[10:] or "-" in datetime_str[10:]:
        dt = datetime.fromisoformat(datetime_str.replace("Z", "+00:00"))
    else:
        # String is naive - assume it's UTC already
        dt = pytz.utc.localize(datetime.fromisoformat(datetime_str))

    # Convert to UTC and make it naive for storage
    return dt.astimezone(pytz.utc).replace(tzinfo=None)


def parse_date(date_str):
    """Parse a YYYY-MM-DD string into a date."""
    if isinstance(date_str, date) and not isinstance(date_str, datetime):
        return date_str
    if not date_str:
        raise ValueError("A date is required")
    return date.fromisoformat(date_str[:10])


def get_engine_settings():
    return EngineSettings.from_config(current_app.config)


def load_snapshot(user):
    """
    Build the engine's read-only view of everything a user has scheduled.

    Completed and cancelled tasks are included so the dependency gate can see
    them; they never occupy the calendar.
    """
    tasks = Task.query.filter_by(user_id=user.id).all()
    groups = TaskGroup.query.filter_by(user_id=user.id).all()

    dependency_map = {}
    task_ids = [task.id for task in tasks]
    if task_ids:
        edges = TaskDependency.query.filter(TaskDependency.task_id.in_(task_ids)).all()
        for edge in edges:
            dependency_map.setdefault(edge.task_id, []).append(edge.depends_on_task_id)
    for dep_ids in dependency_map.values():
        dep_ids.sort()

    logger.debug(
        f"Loaded snapshot for user {user.id}: {len(tasks)} tasks, {len(groups)} groups"
    )
    return Snapshot(
        [task.to_snapshot() for task in tasks],
        groups=[group.to_snapshot() for group in groups],
        dependency_map=dependency_map,
        availability=user.to_availability(current_app.config["DEFAULT_TIMEZONE"]),
        settings=get_engine_settings(),
    )


def persist_result(user_id, result):
    """
    Write a successful engine result back to the tasks table in one commit.

    Returns the updated Task rows keyed by id.
    """
    touched = {}

    def _task(task_id):
        if task_id not in touched:
            task = Task.query.filter_by(id=task_id, user_id=user_id).first()
            if task is None:
                raise LookupError(f"Task {task_id} not found")
            touched[task_id] = task
        return touched[task_id]

    for task_id in result.cleared_task_ids:
        task = _task(task_id)
        if task.locked and task.scheduled_start is not None:
            raise ValueError(f"Refusing to clear locked task {task.id}")
        task.clear_schedule()
    for relocation in result.relocations:
        task = _task(relocation.task_id)
        if task.locked:
            raise ValueError(f"Refusing to move locked task {task.id}")
        task.set_slot(relocation.slot)
    for placement in result.placements:
        _task(placement.task_id).set_slot(placement.slot)

    db.session.commit()
    return touched


@contextmanager
def user_schedule_lock(user_id):
    """Serialise read-snapshot, compute and write for one user."""
    with _user_locks_guard:
        lock = _user_locks[user_id]
    with lock:
        yield
