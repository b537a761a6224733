from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional

from planmyday.extensions import create_logger
from planmyday.src.scheduling.conflicts import overlapping
from planmyday.src.scheduling.dependencies import BLOCKED, earliest_start
from planmyday.src.scheduling.displacement import plan_displacement
from planmyday.src.scheduling.errors import (
    DisplacementError,
    FailureReason,
    SchedulingError,
)
from planmyday.src.scheduling.slot_finder import find_slot
from planmyday.src.scheduling.types import CLOSED_STATUSES, Placement, Relocation
from planmyday.src.scheduling.windows import local_date, local_midnight, to_local

logger = create_logger(__name__, level="DEBUG")

ASAP_SUGGESTION = 'Try "asap" to move lower-priority tasks out of the way.'


class SchedulingMode(str, Enum):
    NOW = "now"
    TODAY = "today"
    TOMORROW = "tomorrow"
    NEXT_WEEK = "next-week"
    NEXT_MONTH = "next-month"
    ASAP = "asap"
    DUE_DATE = "due-date"

    @classmethod
    def parse(cls, value):
        """Accept a mode or its name ("next_week" and "next-week" are both fine)."""
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower().replace("_", "-")
        try:
            return cls(normalized)
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise ValueError(
                f"Unknown scheduling mode: {value!r}. Valid modes: {valid}"
            ) from None

    @property
    def allows_displacement(self):
        return self is SchedulingMode.ASAP


def _first_of_next_month(day):
    return (day.replace(day=1) + timedelta(days=32)).replace(day=1)


def search_bounds(mode, now, timezone, settings, task=None):
    """
    Compute (anchor, horizon_end) for a mode, as naive UTC instants.

    Calendar boundaries (today, next week, next month) are taken in the
    user's timezone. Weeks start on Monday. No anchor precedes `now`.
    """
    mode = SchedulingMode.parse(mode)
    today = local_date(now, timezone)

    if mode is SchedulingMode.NOW:
        anchor, horizon_end = now, now + timedelta(days=settings.now_horizon_days)
    elif mode is SchedulingMode.ASAP:
        anchor, horizon_end = now, now + timedelta(days=settings.asap_horizon_days)
    elif mode is SchedulingMode.TODAY:
        anchor = local_midnight(today, timezone)
        horizon_end = local_midnight(today + timedelta(days=1), timezone)
    elif mode is SchedulingMode.TOMORROW:
        anchor = local_midnight(today + timedelta(days=1), timezone)
        horizon_end = local_midnight(today + timedelta(days=2), timezone)
    elif mode is SchedulingMode.NEXT_WEEK:
        monday = today + timedelta(days=7 - today.weekday())
        anchor = local_midnight(monday, timezone)
        horizon_end = local_midnight(monday + timedelta(days=7), timezone)
    elif mode is SchedulingMode.NEXT_MONTH:
        first = _first_of_next_month(today)
        anchor = local_midnight(first, timezone)
        horizon_end = local_midnight(_first_of_next_month(first), timezone)
    else:
        if task is None or task.due_date is None:
            raise ValueError("due-date mode needs a task with a due date")
        anchor, horizon_end = now, task.due_date

    return max(anchor, now), horizon_end


@dataclass
class ScheduleResult:
    """
    Outcome of one scheduling call.

    `placements` are slots for the tasks the caller asked to schedule,
    `relocations` are other tasks moved to make room, and `cleared_task_ids`
    are tasks whose schedule must be emptied (parents of scheduled subtasks).
    A failed result never carries placements or relocations.
    """

    task_id: Optional[str]
    placements: list = field(default_factory=list)
    relocations: list = field(default_factory=list)
    feedback: list = field(default_factory=list)
    cleared_task_ids: list = field(default_factory=list)
    error: Optional[str] = None
    reason: Optional[FailureReason] = None

    @property
    def success(self):
        return self.error is None

    @property
    def slot(self):
        for placement in self.placements:
            if placement.task_id == self.task_id:
                return placement.slot
        return None

    @classmethod
    def failure(cls, task_id, reason, message=None, feedback=None):
        message = message or reason.message
        return cls(
            task_id=task_id,
            feedback=list(feedback or [message]),
            error=message,
            reason=reason,
        )

    def to_dict(self):
        return {
            "task_id": self.task_id,
            "success": self.success,
            "placements": [p.to_dict() for p in self.placements],
            "relocations": [r.to_dict() for r in self.relocations],
            "cleared_task_ids": list(self.cleared_task_ids),
            "feedback": list(self.feedback),
            "error": self.error,
            "reason": self.reason.value if self.reason else None,
        }


@dataclass
class GroupScheduleResult(ScheduleResult):
    group_id: Optional[str] = None
    failed_task_ids: list = field(default_factory=list)

    @property
    def scheduled_task_ids(self):
        return [p.task_id for p in self.placements]

    def to_dict(self):
        data = super().to_dict()
        data["group_id"] = self.group_id
        data["scheduled_task_ids"] = self.scheduled_task_ids
        data["failed_task_ids"] = list(self.failed_task_ids)
        return data


def apply_result(snapshot, result):
    """Return a new snapshot with a successful result's writes applied."""
    slots = {task_id: None for task_id in result.cleared_task_ids}
    for move in list(result.relocations) + list(result.placements):
        slots[move.task_id] = move.slot
    return snapshot.with_schedules(slots)


def format_slot(slot, timezone):
    start = to_local(slot.start, timezone)
    end = to_local(slot.end, timezone)
    return f"{start.strftime('%a %b %d %H:%M')}-{end.strftime('%H:%M')}"


def _check_preconditions(task, mode):
    if task.status in CLOSED_STATUSES:
        raise SchedulingError(reason=FailureReason.INVALID_STATUS)
    if task.locked and task.is_scheduled:
        raise SchedulingError(reason=FailureReason.LOCKED_TASK)
    if not task.duration or task.duration <= 0:
        raise SchedulingError(reason=FailureReason.INVALID_DURATION)
    if mode is SchedulingMode.DUE_DATE and task.due_date is None:
        raise SchedulingError(reason=FailureReason.MISSING_DUE_DATE)


def _placed(task, slot, relocations, snapshot):
    timezone = snapshot.availability.timezone
    feedback = [f'Scheduled "{task.title}" for {format_slot(slot, timezone)}']
    for relocation in relocations:
        moved = snapshot.get(relocation.task_id)
        feedback.append(
            f'Moved "{moved.title}" to {format_slot(relocation.slot, timezone)}'
        )
    return ScheduleResult(
        task_id=task.id,
        placements=[Placement(task.id, slot)],
        relocations=list(relocations),
        feedback=feedback,
    )


def _search_failure(task, snapshot, mode, anchor, horizon_end):
    # Where the task would go if nothing else were on the calendar
    unobstructed = find_slot(
        task, snapshot, anchor, horizon_end, blocking=lambda other: False
    )
    if unobstructed is not None:
        blockers = overlapping(
            unobstructed.start, unobstructed.end, snapshot.tasks, exclude_ids=(task.id,)
        )
        if any(b.locked for b in blockers):
            return ScheduleResult.failure(
                task.id,
                FailureReason.LOCKED_CONFLICT,
                feedback=[FailureReason.LOCKED_CONFLICT.message, ASAP_SUGGESTION],
            )

    if mode is SchedulingMode.DUE_DATE:
        return ScheduleResult.failure(task.id, FailureReason.NO_SLOT_BEFORE_DUE_DATE)
    return ScheduleResult.failure(
        task.id,
        FailureReason.NO_SLOT,
        feedback=[FailureReason.NO_SLOT.message, ASAP_SUGGESTION],
    )


def schedule_task(task_id, snapshot, mode, now=None, start_from=None):
    """
    Place a single task according to a scheduling mode.

    Parent tasks with subtasks are never placed themselves; their subtasks
    are scheduled in order instead. In asap mode the earlier of the first free
    slot and the best displacement plan wins; when neither exists within the
    asap horizon the search is retried once out to the extended horizon.

    Args:
        task_id: id of the task to schedule
        snapshot: Snapshot of the user's tasks, groups and dependencies
        mode: SchedulingMode or its name
        now: current naive UTC instant
        start_from: optional instant the task may not start before

    Returns:
        ScheduleResult; constraint and search failures come back as a failed
        result with a FailureReason rather than an exception.

    Raises:
        ValueError: unknown mode
    """
    mode = SchedulingMode.parse(mode)
    now = now or datetime.utcnow()

    task = snapshot.get(task_id)
    if task is None:
        return ScheduleResult.failure(task_id, FailureReason.NOT_FOUND)

    if task.status not in CLOSED_STATUSES and snapshot.subtasks_of(task.id):
        return schedule_subtasks(task.id, snapshot, mode, now=now)

    try:
        _check_preconditions(task, mode)
    except SchedulingError as e:
        logger.debug(f"Task {task_id} rejected: {e}")
        return ScheduleResult.failure(task_id, e.reason, str(e))

    gate = earliest_start(task, snapshot.dependency_map, snapshot.tasks_by_id)
    if gate is BLOCKED:
        logger.warning(f"Task {task_id} is blocked by a dependency with no end time")
        return ScheduleResult.failure(task_id, FailureReason.BLOCKED)

    anchor, horizon_end = search_bounds(
        mode, now, snapshot.availability.timezone, snapshot.settings, task
    )
    if start_from is not None:
        anchor = max(anchor, start_from)

    duration = timedelta(minutes=task.duration)
    if mode is SchedulingMode.DUE_DATE and gate is not None and gate + duration > task.due_date:
        return ScheduleResult.failure(task_id, FailureReason.DUE_DATE_UNSATISFIABLE)

    result = _search(task, snapshot, mode, anchor, horizon_end)

    settings = snapshot.settings
    if (
        not result.success
        and mode is SchedulingMode.ASAP
        and settings.asap_extended_horizon_days > settings.asap_horizon_days
    ):
        extended_end = now + timedelta(days=settings.asap_extended_horizon_days)
        logger.debug(f"Retrying task {task_id} with the search extended to {extended_end}")
        retry = _search(task, snapshot, mode, anchor, extended_end)
        if retry.success:
            return retry

    return result


def _search(task, snapshot, mode, anchor, horizon_end):
    logger.debug(f"Scheduling task {task.id} ({mode.value}) between {anchor} and {horizon_end}")
    free_slot = find_slot(task, snapshot, anchor, horizon_end)

    if mode.allows_displacement:
        try:
            plan = plan_displacement(task, snapshot, anchor, horizon_end)
        except DisplacementError as e:
            if free_slot is None:
                return ScheduleResult.failure(task.id, e.reason, str(e))
            logger.debug(f"Displacement for task {task.id} failed, using free slot: {e}")
            plan = None

        if plan is not None and (free_slot is None or plan.slot.start < free_slot.start):
            return _placed(task, plan.slot, plan.relocations, snapshot)

    if free_slot is None:
        return _search_failure(task, snapshot, mode, anchor, horizon_end)

    return _placed(task, free_slot, (), snapshot)


def _merge_moves(existing, new):
    # A task moved twice keeps only its latest slot
    by_id = {move.task_id: move for move in existing}
    for move in new:
        by_id.pop(move.task_id, None)
        by_id[move.task_id] = move
    return list(by_id.values())


def _in_parent_cycle(task, snapshot):
    seen = {task.id}
    current = task
    while current.parent_task_id is not None:
        if current.parent_task_id in seen:
            return True
        seen.add(current.parent_task_id)
        current = snapshot.get(current.parent_task_id)
        if current is None:
            return False
    return False


def schedule_subtasks(parent_id, snapshot, mode, now=None):
    """
    Schedule a parent's subtasks one after another.

    Each subtask is anchored at the end of the previous one. Completed
    subtasks and subtasks without a duration are skipped, locked subtasks
    stay where they are, and the parent's own schedule is cleared. The run
    stops at the first subtask that cannot be placed; later subtasks are left
    unscheduled so they never precede an earlier step. A locked, scheduled
    parent is left alone.
    """
    mode = SchedulingMode.parse(mode)
    now = now or datetime.utcnow()

    parent = snapshot.get(parent_id)
    if parent is None:
        return ScheduleResult.failure(parent_id, FailureReason.NOT_FOUND)
    if _in_parent_cycle(parent, snapshot):
        logger.warning(f"Task {parent_id} is nested under one of its own subtasks")
        return ScheduleResult.failure(parent_id, FailureReason.PARENT_CYCLE)
    if parent.locked and parent.is_scheduled:
        return ScheduleResult.failure(parent_id, FailureReason.LOCKED_TASK)

    subtasks = snapshot.subtasks_of(parent_id)
    movable = [
        s
        for s in subtasks
        if s.status not in CLOSED_STATUSES
        and s.duration
        and s.duration > 0
        and not (s.locked and s.is_scheduled)
    ]

    # Old slots of the steps being rescheduled must not block the new ones
    vacated = {s.id: None for s in movable}
    working = snapshot.with_schedules({parent_id: None, **vacated})

    result = ScheduleResult(task_id=parent_id, cleared_task_ids=[parent_id])
    first_failure = None
    previous_end = None
    unplaced = []

    for subtask in subtasks:
        if first_failure is not None:
            if subtask.id in vacated:
                unplaced.append(subtask.id)
            continue
        if subtask.status in CLOSED_STATUSES:
            result.feedback.append(f'Skipped "{subtask.title}": already {subtask.status.value}')
            continue
        if not subtask.duration or subtask.duration <= 0:
            result.feedback.append(f'Skipped "{subtask.title}": no duration set')
            continue
        if subtask.locked and subtask.is_scheduled:
            result.feedback.append(f'Kept locked step "{subtask.title}" in place')
            previous_end = max(previous_end or subtask.scheduled_end, subtask.scheduled_end)
            continue

        step = schedule_task(subtask.id, working, mode, now=now, start_from=previous_end)
        if not step.success:
            first_failure = step
            unplaced.append(subtask.id)
            result.feedback.append(f'Could not schedule "{subtask.title}": {step.error}')
            continue

        working = apply_result(working, step)
        result.placements = _merge_moves(result.placements, step.placements)
        result.relocations = _merge_moves(result.relocations, step.relocations)
        result.feedback.extend(step.feedback)
        previous_end = step.slot.end

    if not result.placements:
        if first_failure is not None:
            return ScheduleResult.failure(
                parent_id, first_failure.reason, first_failure.error, result.feedback
            )
        return ScheduleResult.failure(
            parent_id,
            FailureReason.INVALID_DURATION,
            "no subtask has a positive duration",
            result.feedback,
        )

    result.cleared_task_ids.extend(unplaced)
    return result


def _auto_schedule_order(task):
    return (
        task.priority,
        task.due_date is None,
        task.due_date or datetime.min,
        task.created_at,
        task.id,
    )


def auto_schedule_group(group_id, snapshot, mode, now=None, max_tasks=5):
    """
    Schedule the most pressing unscheduled tasks of a group, one at a time.

    Candidates are active, unscheduled, top-level tasks with a duration,
    ordered by priority, then due date (undated last), then creation time.
    Each placement is applied to a working snapshot before the next task is
    scheduled, so later tasks see earlier ones.
    """
    mode = SchedulingMode.parse(mode)
    now = now or datetime.utcnow()

    if group_id not in snapshot.groups_by_id:
        return GroupScheduleResult.failure(None, FailureReason.GROUP_NOT_FOUND)

    max_tasks = max(1, min(int(max_tasks), snapshot.settings.auto_schedule_max_tasks))
    candidates = sorted(
        (
            t
            for t in snapshot.tasks
            if t.group_id == group_id
            and t.parent_task_id is None
            and t.is_active
            and not t.is_scheduled
            and t.duration
            and t.duration > 0
        ),
        key=_auto_schedule_order,
    )[:max_tasks]

    if not candidates:
        result = GroupScheduleResult.failure(None, FailureReason.NO_ELIGIBLE_TASKS)
        result.group_id = group_id
        return result

    result = GroupScheduleResult(task_id=None, group_id=group_id)
    working = snapshot
    first_failure = None
    for task in candidates:
        step = schedule_task(task.id, working, mode, now=now)
        if not step.success:
            first_failure = first_failure or step
            result.failed_task_ids.append(task.id)
            result.feedback.append(f'Could not schedule "{task.title}": {step.error}')
            continue
        working = apply_result(working, step)
        result.placements = _merge_moves(result.placements, step.placements)
        result.relocations = _merge_moves(result.relocations, step.relocations)
        result.cleared_task_ids.extend(step.cleared_task_ids)
        result.feedback.extend(step.feedback)

    if not result.placements:
        failure = GroupScheduleResult.failure(
            None, first_failure.reason, first_failure.error, result.feedback
        )
        failure.group_id = group_id
        failure.failed_task_ids = result.failed_task_ids
        return failure

    logger.debug(
        f"Group {group_id}: scheduled {len(result.placements)} of {len(candidates)} task(s)"
    )
    return result


def pull_forward(group_id, target_date, snapshot, now=None):
    """
    Move a group's tasks scheduled after target_date into free time on it.

    Tasks keep their current order; a task that does not fit on the target
    day (or whose dependencies forbid the earlier time) stays where it is.
    """
    now = now or datetime.utcnow()
    if group_id not in snapshot.groups_by_id:
        return GroupScheduleResult.failure(None, FailureReason.GROUP_NOT_FOUND)
    if not isinstance(target_date, date) or isinstance(target_date, datetime):
        raise ValueError("target_date must be a date")

    timezone = snapshot.availability.timezone
    day_start = local_midnight(target_date, timezone)
    day_end = local_midnight(target_date + timedelta(days=1), timezone)
    anchor = max(now, day_start)

    candidates = sorted(
        (
            t
            for t in snapshot.tasks
            if t.group_id == group_id
            and t.is_active
            and t.is_scheduled
            and not t.locked
            and t.scheduled_start >= day_end
        ),
        key=lambda t: (t.scheduled_start, t.id),
    )

    if not candidates:
        result = GroupScheduleResult.failure(
            None,
            FailureReason.NO_ELIGIBLE_TASKS,
            "No tasks in this group are scheduled after that date",
        )
        result.group_id = group_id
        return result

    result = GroupScheduleResult(task_id=None, group_id=group_id)
    working = snapshot
    for task in candidates:
        slot = find_slot(working.get(task.id), working, anchor, day_end)
        if slot is None:
            result.failed_task_ids.append(task.id)
            continue
        working = working.with_schedule(task.id, slot)
        result.placements.append(Relocation(task.id, slot))
        result.feedback.append(f'Pulled "{task.title}" forward to {format_slot(slot, timezone)}')

    if not result.placements:
        failure = GroupScheduleResult.failure(
            None,
            FailureReason.NO_SLOT,
            f"no available slot on {target_date.isoformat()}",
        )
        failure.group_id = group_id
        failure.failed_task_ids = result.failed_task_ids
        return failure

    if result.failed_task_ids:
        result.feedback.append(
            f"{len(result.failed_task_ids)} task(s) did not fit on {target_date.isoformat()}"
        )
    return result
