from datetime import datetime

import pytz
from flask import Blueprint, jsonify, request
from flask_jwt_extended import current_user, jwt_required

from planmyday.dependency_routes import (
    add_dependency,
    load_dependency_graph,
)
from planmyday.extensions import create_logger, db
from planmyday.models import Task, TaskGroup
from planmyday.src.scheduling.dependencies import validate_dependencies
from planmyday.src.scheduling.errors import DependencyError
from planmyday.src.scheduling.scheduler import SchedulingMode, schedule_task
from planmyday.src.scheduling.types import TaskStatus, WeeklyHours
from planmyday.src.utils import (
    load_snapshot,
    parse_iso_datetime,
    persist_result,
    user_schedule_lock,
)

logger = create_logger(__name__, level="DEBUG")

base_bp = Blueprint("base", __name__)
task_bp = Blueprint("task", __name__, url_prefix="/api/tasks")
user_bp = Blueprint("user", __name__, url_prefix="/api/user")

VALID_STATUSES = [status.value for status in TaskStatus]

# Fields a client may never set directly
READ_ONLY_PROPS = [
    "id",
    "user_id",
    "is_active",
    "is_completed",
    "created_at",
    "completed_at",
    "subtask_ids",
    "continued_from_task_id",
]


@base_bp.route("/")
def index():
    """API root endpoint - returns API status and basic information"""
    logger.info("Root endpoint accessed")
    return jsonify({"status": "healthy"}), 200


def get_user_task(task_id):
    return Task.query.filter_by(id=task_id, user_id=current_user.id).first_or_404()


def _parse_int(data, key, low, high):
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    if value < low or value > high:
        raise ValueError(f"{key} must be between {low} and {high}")
    return value


def _is_descendant(candidate, ancestor_id):
    seen = set()
    while candidate is not None and candidate.id not in seen:
        if candidate.parent_task_id == ancestor_id:
            return True
        seen.add(candidate.id)
        candidate = candidate.parent
    return False


def _parse_task_fields(data, task=None):
    """
    Validate task fields from a request body.

    Returns a dict of column values ready to assign. Raises ValueError with a
    client-facing message on bad input.
    """
    fields = {}

    if "title" in data:
        if not data["title"] or not str(data["title"]).strip():
            raise ValueError("Title cannot be empty")
        fields["title"] = str(data["title"]).strip()

    if "description" in data:
        fields["description"] = data["description"]

    if "duration" in data:
        if data["duration"] is None:
            fields["duration"] = None
        else:
            fields["duration"] = _parse_int(data, "duration", 1, 24 * 60)

    if "priority" in data:
        fields["priority"] = _parse_int(data, "priority", 1, 5)

    if "step_order" in data:
        if data["step_order"] is None:
            fields["step_order"] = None
        else:
            fields["step_order"] = _parse_int(data, "step_order", 0, 10000)

    if "locked" in data:
        fields["locked"] = bool(data["locked"])

    if "status" in data:
        if data["status"] not in VALID_STATUSES:
            raise ValueError(f"Invalid status: {data['status']}")
        fields["status"] = data["status"]

    if "due_date" in data:
        fields["due_date"] = parse_iso_datetime(data["due_date"])

    if "scheduled_start" in data or "scheduled_end" in data:
        start = parse_iso_datetime(data.get("scheduled_start"))
        end = parse_iso_datetime(data.get("scheduled_end"))
        if (start is None) != (end is None):
            raise ValueError("scheduled_start and scheduled_end must be set together")
        if start is not None and start >= end:
            raise ValueError("scheduled_start must be before scheduled_end")
        fields["scheduled_start"] = start
        fields["scheduled_end"] = end

    if data.get("group_id"):
        group = TaskGroup.query.filter_by(
            id=data["group_id"], user_id=current_user.id
        ).first()
        if group is None:
            raise ValueError(f"Task group not found: {data['group_id']}")
        fields["group_id"] = group.id
    elif "group_id" in data:
        fields["group_id"] = None

    if data.get("parent_task_id"):
        parent_id = data["parent_task_id"]
        if task is not None and parent_id == task.id:
            raise ValueError("A task cannot be its own parent")
        parent = Task.query.filter_by(id=parent_id, user_id=current_user.id).first()
        if parent is None:
            raise ValueError(f"Parent task not found: {parent_id}")
        if task is not None and _is_descendant(parent, task.id):
            raise ValueError("A task cannot be nested under its own subtask")
        fields["parent_task_id"] = parent.id
    elif "parent_task_id" in data:
        fields["parent_task_id"] = None

    return fields


# Task routes
@task_bp.route("", methods=["GET"])
@jwt_required()
def get_tasks():
    """
    Get the current user's tasks with optional filtering

    Query parameters:
    - status: only tasks with this status
    - group_id: only tasks in this group
    - scheduled: 'true' or 'false' to filter by whether a slot is assigned
    - parent_task_id: only subtasks of this task
    - start_date / end_date: tasks scheduled to start within this range (ISO format)
    """
    status = request.args.get("status")
    group_id = request.args.get("group_id")
    scheduled = request.args.get("scheduled")
    parent_task_id = request.args.get("parent_task_id")
    start_date = request.args.get("start_date")
    end_date = request.args.get("end_date")

    query = Task.query.filter_by(user_id=current_user.id)

    if status:
        query = query.filter(Task.status == status)

    if group_id:
        query = query.filter(Task.group_id == group_id)

    if scheduled is not None:
        if scheduled.lower() == "true":
            query = query.filter(Task.scheduled_start.isnot(None))
        else:
            query = query.filter(Task.scheduled_start.is_(None))

    if parent_task_id:
        query = query.filter(Task.parent_task_id == parent_task_id)

    try:
        if start_date:
            query = query.filter(Task.scheduled_start >= parse_iso_datetime(start_date))
        if end_date:
            query = query.filter(Task.scheduled_start <= parse_iso_datetime(end_date))
    except ValueError as e:
        return jsonify({"error": f"Invalid date format: {e}"}), 400

    tasks = query.order_by(Task.scheduled_start, Task.created_at).all()
    return jsonify([task.to_dict() for task in tasks])


@task_bp.route("", methods=["POST"])
@jwt_required()
def create_task():
    """Create a new task"""
    data = request.json

    if not data or not data.get("title"):
        return jsonify({"error": "Missing required fields"}), 400

    dependencies = data.pop("dependencies", None) or []
    for prop in READ_ONLY_PROPS:
        data.pop(prop, None)

    try:
        fields = _parse_task_fields(data)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    task = Task(user_id=current_user.id, **fields)
    db.session.add(task)
    db.session.flush()

    if dependencies:
        graph = load_dependency_graph(current_user.id)
        known_ids = {
            t.id for t in Task.query.filter_by(user_id=current_user.id).all()
        }
        try:
            validate_dependencies(task.id, dependencies, graph, known_ids)
        except DependencyError as e:
            db.session.rollback()
            return jsonify({"error": str(e)}), 400
        for dep_id in dependencies:
            add_dependency(task.id, dep_id, graph)

    db.session.commit()

    return (
        jsonify(
            {
                "id": task.id,
                "title": task.title,
                "task": task.to_dict(),
                "message": "Task created successfully",
            }
        ),
        201,
    )


@task_bp.route("/<task_id>", methods=["GET"])
@jwt_required()
def get_task(task_id):
    """Get task details"""
    task = get_user_task(task_id)
    return jsonify(task.to_dict())


@task_bp.route("/<task_id>", methods=["PUT"])
@jwt_required()
def update_task(task_id):
    """Update a task"""
    task = get_user_task(task_id)
    data = request.json or {}

    for prop in READ_ONLY_PROPS + ["dependencies"]:
        data.pop(prop, None)

    try:
        fields = _parse_task_fields(data, task=task)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    for key, value in fields.items():
        setattr(task, key, value)
    if fields.get("status") == TaskStatus.COMPLETED.value and task.completed_at is None:
        task.completed_at = datetime.utcnow()

    db.session.commit()

    return jsonify({"message": "Task updated successfully", "task": task.to_dict()})


@task_bp.route("/<task_id>", methods=["DELETE"])
@jwt_required()
def delete_task(task_id):
    """Delete a task along with its subtasks and dependency edges"""
    task = get_user_task(task_id)

    Task.query.filter_by(continued_from_task_id=task.id).update(
        {"continued_from_task_id": None}
    )
    db.session.delete(task)
    db.session.commit()

    return jsonify({"message": "Task deleted successfully"})


@task_bp.route("/<task_id>/complete", methods=["POST"])
@jwt_required()
def complete_task(task_id):
    """Mark task as complete"""
    task = get_user_task(task_id)
    task.complete()
    db.session.commit()

    return jsonify({"message": "Task marked as complete", "task": task.to_dict()})


# Scheduling routes
def run_schedule(task_id, mode):
    """Load the user's snapshot, run the engine and persist the outcome."""
    try:
        mode = SchedulingMode.parse(mode)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    user = current_user
    get_user_task(task_id)

    with user_schedule_lock(user.id):
        try:
            snapshot = load_snapshot(user)
            result = schedule_task(task_id, snapshot, mode, now=datetime.utcnow())

            if not result.success:
                logger.warning(
                    f"Could not schedule task {task_id} ({mode.value}): {result.error}"
                )
                return jsonify(result.to_dict()), 422

            touched = persist_result(user.id, result)
        except ValueError as e:
            db.session.rollback()
            logger.error(f"Invalid scheduling data for task {task_id}: {str(e)}")
            return jsonify({"error": str(e)}), 400
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error scheduling task {task_id}: {str(e)}")
            return jsonify({"error": f"Failed to schedule task: {str(e)}"}), 500

    response = result.to_dict()
    response.update(
        {
            "message": "Task scheduled successfully (times in UTC)",
            "task": Task.query.get(task_id).to_dict(),
            "shuffled_tasks": [
                touched[relocation.task_id].to_dict()
                for relocation in result.relocations
            ],
        }
    )
    return jsonify(response)


@task_bp.route("/<task_id>/schedule", methods=["POST"])
@jwt_required()
def schedule(task_id):
    data = request.json or {}
    if not data.get("mode"):
        return jsonify({"error": "Missing mode parameter"}), 400
    return run_schedule(task_id, data["mode"])


@task_bp.route("/<task_id>/schedule-now", methods=["POST"])
@jwt_required()
def schedule_now(task_id):
    return run_schedule(task_id, SchedulingMode.NOW)


@task_bp.route("/<task_id>/schedule-today", methods=["POST"])
@jwt_required()
def schedule_today(task_id):
    return run_schedule(task_id, SchedulingMode.TODAY)


@task_bp.route("/<task_id>/schedule-tomorrow", methods=["POST"])
@jwt_required()
def schedule_tomorrow(task_id):
    return run_schedule(task_id, SchedulingMode.TOMORROW)


@task_bp.route("/<task_id>/schedule-asap", methods=["POST"])
@jwt_required()
def schedule_asap(task_id):
    return run_schedule(task_id, SchedulingMode.ASAP)


@task_bp.route("/<task_id>/unschedule", methods=["POST"])
@jwt_required()
def unschedule_task(task_id):
    """Clear a task's slot, and its subtasks' slots, unless locked"""
    task = get_user_task(task_id)
    if task.locked:
        return jsonify({"error": "Task is locked and cannot be unscheduled"}), 400

    with user_schedule_lock(current_user.id):
        cleared = []
        for item in [task] + list(task.subtasks):
            if item.locked or item.scheduled_start is None:
                continue
            item.clear_schedule()
            cleared.append(item.id)
        db.session.commit()

    return jsonify(
        {
            "message": "Task unscheduled",
            "task": task.to_dict(),
            "cleared_task_ids": cleared,
        }
    )


# User availability routes
@user_bp.route("/awake-hours", methods=["GET"])
@jwt_required()
def get_awake_hours():
    return jsonify(
        {
            "awake_hours": current_user.awake_hours,
            "timezone": current_user.timezone,
        }
    )


@user_bp.route("/awake-hours", methods=["PUT"])
@jwt_required()
def update_awake_hours():
    """Replace the user's awake hours; null clears them back to the default"""
    data = request.json
    if data is None or "awake_hours" not in data:
        return jsonify({"error": "Missing awake_hours parameter"}), 400

    try:
        hours = WeeklyHours.from_dict(data["awake_hours"])
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    current_user.awake_hours = hours.to_dict() if hours is not None else None
    db.session.commit()

    return jsonify(
        {
            "message": "Awake hours updated successfully",
            "awake_hours": current_user.awake_hours,
        }
    )


@user_bp.route("/timezone", methods=["PUT"])
@jwt_required()
def update_timezone():
    data = request.json
    if not data or not data.get("timezone"):
        return jsonify({"error": "Missing timezone parameter"}), 400

    if data["timezone"] not in pytz.all_timezones_set:
        return jsonify({"error": f"Unknown timezone: {data['timezone']}"}), 400

    current_user.timezone = data["timezone"]
    db.session.commit()

    return jsonify(
        {"message": "Timezone updated successfully", "timezone": current_user.timezone}
    )
