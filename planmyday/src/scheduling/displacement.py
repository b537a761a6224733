from dataclasses import dataclass
from datetime import datetime, timedelta

from planmyday.extensions import create_logger
from planmyday.src.scheduling.conflicts import is_occupying, overlapping
from planmyday.src.scheduling.errors import DisplacementError
from planmyday.src.scheduling.slot_finder import find_slot
from planmyday.src.scheduling.types import Relocation

logger = create_logger(__name__, level="DEBUG")


@dataclass(frozen=True)
class DisplacementPlan:
    slot: object
    relocations: tuple = ()

    @property
    def displaced_ids(self):
        return [r.task_id for r in self.relocations]


def is_displaceable(candidate, incoming):
    """
    Whether `candidate` may be pushed aside to make room for `incoming`.

    Only active, unlocked tasks of strictly lower importance (a higher
    priority number) qualify; on equal priority the later-created task gives
    way.
    """
    if candidate.id == incoming.id or candidate.locked or not is_occupying(candidate):
        return False
    if candidate.priority != incoming.priority:
        return candidate.priority > incoming.priority
    return candidate.created_at > incoming.created_at


def _relocation_order(task):
    # Keep calendar order; among tasks starting together, the least important
    # and then the most recently created are pushed first.
    created = (task.created_at - datetime.min).total_seconds()
    return (task.scheduled_start, -task.priority, -created, task.id)


def plan_displacement(task, snapshot, anchor, horizon_end, relocation_horizon=None):
    """
    Make room for a task by pushing displaceable tasks later.

    Finds the earliest window-valid, dependency-satisfied slot where every
    overlapping task is displaceable, then relocates each of those tasks with
    the slot finder, searching from the incoming task's new end within the
    displaced task's own windows. Dependents that would now start before a
    relocated dependency ends are relocated as well.

    Displaced tasks only move into free time; they never displace others.

    Args:
        task: incoming TaskSnapshot
        snapshot: Snapshot to plan against (never mutated)
        anchor: earliest start for the incoming task
        horizon_end: latest end for the incoming task
        relocation_horizon: latest end for relocated tasks; defaults to the
            incoming slot's end plus the asap horizon

    Returns:
        DisplacementPlan with the incoming slot and every relocation.

    Raises:
        DisplacementError: no slot could be cleared, a displaced task found no
            new home, or more than max_displaced_tasks would have to move. No
            partial plan is ever returned.
    """
    settings = snapshot.settings

    slot = find_slot(
        task,
        snapshot,
        anchor,
        horizon_end,
        blocking=lambda other: not is_displaceable(other, task),
    )
    if slot is None:
        logger.warning(f"Task {task.id}: no slot can be cleared before {horizon_end}")
        raise DisplacementError()

    displaced = overlapping(slot.start, slot.end, snapshot.tasks, exclude_ids=(task.id,))
    if not displaced:
        return DisplacementPlan(slot=slot)

    if relocation_horizon is None:
        relocation_horizon = slot.end + timedelta(days=settings.asap_horizon_days)

    logger.debug(
        f"Task {task.id}: displacing {len(displaced)} task(s) to take {slot.start} - {slot.end}"
    )

    vacated = {d.id: None for d in displaced}
    working = snapshot.with_schedules({task.id: slot, **vacated})
    queue = sorted(displaced, key=_relocation_order)
    queued = set(vacated)
    relocations = []

    while queue:
        if len(relocations) >= settings.max_displaced_tasks:
            raise DisplacementError(
                f"could not resolve conflicts — more than {settings.max_displaced_tasks} "
                "tasks would need to move"
            )

        current = queue.pop(0)
        new_slot = find_slot(
            working.get(current.id), working, slot.end, relocation_horizon
        )
        if new_slot is None:
            logger.warning(f"Displaced task {current.id} has nowhere to go")
            raise DisplacementError(
                f'could not resolve conflicts — no room remains for "{current.title}"'
            )

        working = working.with_schedule(current.id, new_slot)
        relocations.append(Relocation(current.id, new_slot))

        for dependent_id in working.dependents_of(current.id):
            if dependent_id in queued or dependent_id == task.id:
                continue
            dependent = working.get(dependent_id)
            if dependent is None or not is_occupying(dependent):
                continue
            if dependent.scheduled_start >= new_slot.end:
                continue
            if dependent.locked:
                raise DisplacementError(
                    f'could not resolve conflicts — "{dependent.title}" is locked and '
                    f'depends on "{current.title}"'
                )
            queued.add(dependent_id)
            working = working.with_schedule(dependent_id, None)
            queue.append(dependent)
            queue.sort(key=_relocation_order)

    return DisplacementPlan(slot=slot, relocations=tuple(relocations))
