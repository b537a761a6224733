from datetime import timedelta

from planmyday.extensions import create_logger
from planmyday.src.scheduling.conflicts import is_occupying, overlapping
from planmyday.src.scheduling.dependencies import BLOCKED, earliest_start
from planmyday.src.scheduling.types import Slot
from planmyday.src.scheduling.windows import windows_between

logger = create_logger(__name__, level="DEBUG")


def round_up_to_grid(instant, minutes):
    """
    Round an instant up to the next multiple of `minutes` past the hour.

    Rounding happens in UTC; every real timezone offset is a multiple of 15
    minutes, so a 15-minute grid lines up with the user's local grid too.
    """
    rounded = instant.replace(second=0, microsecond=0)
    if rounded != instant:
        rounded += timedelta(minutes=1)
    remainder = rounded.minute % minutes
    if remainder:
        rounded += timedelta(minutes=minutes - remainder)
    return rounded


def find_slot(task, snapshot, anchor, horizon_end, blocking=None):
    """
    Find the earliest free, in-window, dependency-satisfied slot for a task.

    Walks the task's availability windows forward from the anchor. Inside a
    window the candidate start moves to the end of whatever it collides with
    (rounded up to the grid) until the task fits or the window runs out.

    Args:
        task: TaskSnapshot to place; its own current slot never blocks it
        snapshot: Snapshot providing tasks, groups, dependencies and availability
        anchor: earliest instant the search may consider (naive UTC)
        horizon_end: the slot must end no later than this instant
        blocking: optional predicate; when given, only occupying tasks for
            which it returns True count as conflicts

    Returns:
        Slot, or None if nothing fits before horizon_end or the task is
        blocked by a dependency without an end time.
    """
    if not task.duration or task.duration <= 0:
        return None

    gate = earliest_start(task, snapshot.dependency_map, snapshot.tasks_by_id)
    if gate is BLOCKED:
        return None

    granularity = snapshot.settings.slot_granularity_minutes
    duration = timedelta(minutes=task.duration)

    candidate = anchor if gate is None else max(anchor, gate)
    candidate = round_up_to_grid(candidate, granularity)
    if candidate + duration > horizon_end:
        return None

    occupying = [
        t
        for t in snapshot.tasks
        if t.id != task.id
        and is_occupying(t)
        and t.scheduled_end > candidate
        and (blocking is None or blocking(t))
    ]

    for window in windows_between(task, snapshot, candidate, horizon_end):
        start = max(candidate, round_up_to_grid(window.start, granularity))
        while True:
            end = start + duration
            if end > horizon_end:
                logger.debug(f"Task {task.id}: search reached horizon {horizon_end}")
                return None
            if end > window.end:
                break

            conflicts = overlapping(start, end, occupying)
            if not conflicts:
                logger.debug(f"Task {task.id}: found slot {start} - {end}")
                return Slot(start, end)

            start = round_up_to_grid(
                max(c.scheduled_end for c in conflicts), granularity
            )

    return None
