from datetime import datetime

from flask import Blueprint, jsonify, request
from flask_jwt_extended import current_user, jwt_required

from planmyday.extensions import create_logger, db
from planmyday.models import Task, TaskDependency
from planmyday.routes import get_user_task
from planmyday.src.scheduling.scheduler import SchedulingMode, schedule_task
from planmyday.src.scheduling.types import TaskStatus
from planmyday.src.utils import load_snapshot, persist_result, user_schedule_lock

logger = create_logger(__name__, level="DEBUG")

carryover_bp = Blueprint("carryover", __name__, url_prefix="/api/tasks")


def _carryover_description(original, notes):
    description = original.description or ""
    if notes:
        if description:
            description = f"{notes}\n\n---\nOriginal description:\n{description}"
        else:
            description = notes
    return description or None


def _parent_duration_check(parent, original, additional_duration):
    """Return (400 body or None, subtask total once the carryover is added)."""
    siblings = Task.query.filter(
        Task.parent_task_id == parent.id, Task.id != original.id
    ).all()
    current_total = sum(s.duration or 0 for s in siblings)
    required_total = current_total + additional_duration

    if parent.duration is None or required_total <= parent.duration:
        return None, required_total

    extension = required_total - parent.duration
    return (
        {
            "error": "Subtask carryover duration exceeds parent task duration",
            "details": [
                f"Total subtask duration ({required_total} min) exceeds parent task "
                f"duration ({parent.duration} min) by {extension} min"
            ],
            "current_total": current_total,
            "carryover_duration": additional_duration,
            "total_with_carryover": required_total,
            "parent_duration": parent.duration,
            "required_extension": extension,
        },
        required_total,
    )


def _auto_schedule(task):
    """Try to place a fresh carryover task. Failure leaves it unscheduled."""
    now = datetime.utcnow()
    if task.due_date is not None and task.due_date > now:
        mode = SchedulingMode.DUE_DATE
    else:
        mode = SchedulingMode.NOW

    with user_schedule_lock(current_user.id):
        snapshot = load_snapshot(current_user)
        result = schedule_task(task.id, snapshot, mode, now=now)
        if not result.success:
            logger.warning(
                f"Carryover task {task.id} left unscheduled ({mode.value}): {result.error}"
            )
            return result
        persist_result(current_user.id, result)
    return result


@carryover_bp.route("/<task_id>/carryover", methods=["POST"])
@jwt_required()
def create_carryover(task_id):
    """
    Continue an unfinished task as a new task with extra time

    The original is marked rescheduled and stays visible. A subtask carries
    over as a sibling under the same parent; a top-level task carries over as
    a new task that keeps its dependencies and can be scheduled right away.

    Body parameters:
    - additional_duration: minutes still needed (required, positive)
    - notes: prepended to the description
    - auto_schedule: place the new task immediately (top-level tasks only)
    - extend_parent_duration: grow the parent when the subtasks no longer fit
    """
    data = request.json or {}
    additional_duration = data.get("additional_duration")
    if (
        isinstance(additional_duration, bool)
        or not isinstance(additional_duration, int)
        or additional_duration <= 0
    ):
        return (
            jsonify({"error": "additional_duration is required and must be positive"}),
            400,
        )

    original = get_user_task(task_id)
    if original.status == TaskStatus.COMPLETED.value:
        return jsonify({"error": "Cannot create carryover for a completed task"}), 400
    if original.status == TaskStatus.RESCHEDULED.value:
        return jsonify({"error": "Task has already been carried over"}), 400

    carryover = Task(
        user_id=current_user.id,
        title=f"{original.title} (continued)",
        description=_carryover_description(original, data.get("notes")),
        duration=additional_duration,
        priority=original.priority,
        status=TaskStatus.PENDING.value,
        locked=False,
        group_id=original.group_id,
        due_date=original.due_date,
        continued_from_task_id=original.id,
    )

    parent = original.parent
    if parent is not None:
        problem, required_total = _parent_duration_check(parent, original, additional_duration)
        if problem is not None:
            if not data.get("extend_parent_duration"):
                return jsonify(problem), 400
            logger.info(f"Extending parent {parent.id} to {required_total} min")
            parent.duration = required_total

        carryover.parent_task_id = parent.id
        carryover.step_order = original.step_order
        carryover.due_date = original.due_date or parent.due_date

    db.session.add(carryover)
    db.session.flush()

    if parent is None:
        for edge in original.dependencies_assoc:
            db.session.add(
                TaskDependency(
                    task_id=carryover.id, depends_on_task_id=edge.depends_on_task_id
                )
            )

    original.status = TaskStatus.RESCHEDULED.value
    db.session.commit()
    logger.info(f"Task {original.id} carried over to {carryover.id}")

    feedback = []
    scheduled = False
    if parent is None and data.get("auto_schedule"):
        try:
            result = _auto_schedule(carryover)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error auto-scheduling carryover task {carryover.id}: {str(e)}")
            return jsonify({"error": f"Failed to schedule carryover task: {str(e)}"}), 500
        feedback = result.feedback
        scheduled = result.success

    if parent is not None:
        message = "Carryover subtask created successfully. Original subtask marked as rescheduled."
    elif scheduled:
        message = "Carryover task created and scheduled successfully. Original task marked as rescheduled."
    else:
        message = "Carryover task created successfully. Original task marked as rescheduled."

    return (
        jsonify(
            {
                "carryover_task": carryover.to_dict(),
                "original_task": original.to_dict(),
                "message": message,
                "feedback": feedback,
            }
        ),
        201,
    )


def _carryover_chain(task):
    ancestors = []
    seen = {task.id}
    current = task
    while current.continued_from_task_id and current.continued_from_task_id not in seen:
        current = Task.query.filter_by(
            id=current.continued_from_task_id, user_id=current_user.id
        ).first()
        if current is None:
            break
        seen.add(current.id)
        ancestors.insert(0, current)

    return ancestors, _descendants(task.id, seen)


def _descendants(task_id, seen):
    found = []
    children = (
        Task.query.filter_by(continued_from_task_id=task_id, user_id=current_user.id)
        .order_by(Task.created_at)
        .all()
    )
    for child in children:
        if child.id in seen:
            continue
        seen.add(child.id)
        found.append(child)
        found.extend(_descendants(child.id, seen))
    return found


@carryover_bp.route("/<task_id>/carryover", methods=["GET"])
@jwt_required()
def get_carryover_chain(task_id):
    """Get a task's carryover history: the tasks it continues and its continuations"""
    task = get_user_task(task_id)
    ancestors, descendants = _carryover_chain(task)

    return jsonify(
        {
            "task": task.to_dict(),
            "carryover_chain": [t.to_dict() for t in ancestors + [task] + descendants],
            "is_carryover": task.continued_from_task_id is not None,
            "has_carryovers": bool(descendants),
        }
    )
