from datetime import datetime

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import current_user, jwt_required

from planmyday.extensions import create_logger, db
from planmyday.models import TaskGroup
from planmyday.src.scheduling.scheduler import (
    SchedulingMode,
    auto_schedule_group,
    pull_forward,
)
from planmyday.src.scheduling.types import WeeklyHours
from planmyday.src.utils import (
    load_snapshot,
    parse_date,
    persist_result,
    user_schedule_lock,
)

logger = create_logger(__name__, level="DEBUG")

group_bp = Blueprint("group", __name__, url_prefix="/api")

# due-date mode needs a per-task deadline, so it is not offered for whole groups
GROUP_MODES = [mode.value for mode in SchedulingMode if mode is not SchedulingMode.DUE_DATE]


def _apply_group_fields(group, data):
    if "name" in data:
        if not data["name"] or not str(data["name"]).strip():
            raise ValueError("Group name cannot be empty")
        group.name = str(data["name"]).strip()

    if "color" in data:
        group.color = data["color"]

    if "priority" in data:
        priority = data["priority"]
        if isinstance(priority, bool) or not isinstance(priority, int):
            raise ValueError("priority must be an integer")
        if priority < 1 or priority > 10:
            raise ValueError("priority must be between 1 and 10")
        group.priority = priority

    if "auto_schedule_enabled" in data:
        group.auto_schedule_enabled = bool(data["auto_schedule_enabled"])

    if "auto_schedule_hours" in data:
        hours = WeeklyHours.from_dict(data["auto_schedule_hours"])
        group.auto_schedule_hours = hours.to_dict() if hours is not None else None


@group_bp.route("/task-groups", methods=["GET"])
@jwt_required()
def get_groups():
    groups = (
        TaskGroup.query.filter_by(user_id=current_user.id)
        .order_by(TaskGroup.name)
        .all()
    )
    return jsonify([group.to_dict() for group in groups])


@group_bp.route("/task-groups", methods=["POST"])
@jwt_required()
def create_group():
    data = request.json
    if not data or not data.get("name"):
        return jsonify({"error": "Missing required fields"}), 400

    group = TaskGroup(user_id=current_user.id)
    try:
        _apply_group_fields(group, data)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    db.session.add(group)
    db.session.commit()

    return (
        jsonify({"message": "Task group created successfully", "group": group.to_dict()}),
        201,
    )


@group_bp.route("/task-groups/<group_id>", methods=["PUT"])
@jwt_required()
def update_group(group_id):
    group = TaskGroup.query.filter_by(id=group_id, user_id=current_user.id).first_or_404()
    data = request.json or {}

    try:
        _apply_group_fields(group, data)
    except ValueError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400

    db.session.commit()
    return jsonify({"message": "Task group updated successfully", "group": group.to_dict()})


@group_bp.route("/task-groups/<group_id>", methods=["DELETE"])
@jwt_required()
def delete_group(group_id):
    """Delete a group; its tasks are kept and become ungrouped"""
    group = TaskGroup.query.filter_by(id=group_id, user_id=current_user.id).first_or_404()
    for task in group.tasks:
        task.group_id = None
    db.session.delete(group)
    db.session.commit()
    return jsonify({"message": "Task group deleted successfully"})


def _group_response(result):
    if not result.success:
        return jsonify(result.to_dict()), 422

    touched = persist_result(current_user.id, result)
    response = result.to_dict()
    response.update(
        {
            "scheduled_tasks": [touched[p.task_id].to_dict() for p in result.placements],
            "shuffled_tasks": [
                touched[r.task_id].to_dict() for r in result.relocations
            ],
        }
    )
    return jsonify(response)


@group_bp.route("/tasks/auto-schedule-group", methods=["POST"])
@jwt_required()
def auto_schedule_group_route():
    """Schedule the top unscheduled tasks of a group, one after another"""
    data = request.json or {}
    group_id = data.get("group_id")
    mode = data.get("mode")
    max_tasks = data.get("max_tasks", current_app.config["AUTO_SCHEDULE_DEFAULT_TASKS"])

    if not group_id:
        return jsonify({"error": "Missing group_id parameter"}), 400
    if mode not in GROUP_MODES:
        return (
            jsonify({"error": f"Invalid mode. Must be one of: {', '.join(GROUP_MODES)}"}),
            400,
        )
    try:
        max_tasks = int(max_tasks)
    except (TypeError, ValueError):
        return jsonify({"error": "max_tasks must be an integer"}), 400

    TaskGroup.query.filter_by(id=group_id, user_id=current_user.id).first_or_404()

    with user_schedule_lock(current_user.id):
        try:
            snapshot = load_snapshot(current_user)
            result = auto_schedule_group(
                group_id, snapshot, mode, now=datetime.utcnow(), max_tasks=max_tasks
            )
            return _group_response(result)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error auto-scheduling group {group_id}: {str(e)}")
            return jsonify({"error": f"Failed to auto-schedule group: {str(e)}"}), 500


@group_bp.route("/tasks/pull-forward", methods=["POST"])
@jwt_required()
def pull_forward_route():
    """Pull a group's later tasks into free time on the given date"""
    data = request.json or {}
    group_id = data.get("group_id")

    if not group_id or not data.get("date"):
        return jsonify({"error": "Missing date or group_id parameter"}), 400
    try:
        target_date = parse_date(data["date"])
    except ValueError as e:
        return jsonify({"error": f"Invalid date: {e}"}), 400

    TaskGroup.query.filter_by(id=group_id, user_id=current_user.id).first_or_404()

    with user_schedule_lock(current_user.id):
        try:
            snapshot = load_snapshot(current_user)
            result = pull_forward(group_id, target_date, snapshot, now=datetime.utcnow())
            return _group_response(result)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error pulling tasks forward for group {group_id}: {str(e)}")
            return jsonify({"error": f"Failed to pull tasks forward: {str(e)}"}), 500
