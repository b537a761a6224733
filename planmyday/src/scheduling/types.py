from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional

WEEKDAYS = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"


# Only these statuses occupy the calendar
ACTIVE_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.IN_PROGRESS})

# A task in one of these states is never placed again
CLOSED_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.CANCELLED, TaskStatus.RESCHEDULED}
)


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime

    def overlaps(self, start, end):
        """Half-open overlap: touching endpoints do not conflict."""
        return self.start < end and start < self.end

    def to_dict(self):
        return {
            "start": self.start.isoformat() + "Z",
            "end": self.end.isoformat() + "Z",
        }


@dataclass(frozen=True)
class DayHours:
    start: int
    end: int

    def __post_init__(self):
        for value in (self.start, self.end):
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"Hours must be integers, got {value!r}")
            if value < 0 or value > 23:
                raise ValueError(f"Hours must be between 0 and 23, got {value}")
        if self.start >= self.end:
            raise ValueError(
                f"Start hour must be before end hour, got {self.start}-{self.end}"
            )


@dataclass(frozen=True)
class WeeklyHours:
    """
    Per-weekday availability, validated once when it is loaded.

    A weekday mapped to None is fully unavailable.
    """

    days: tuple = (None,) * 7

    @classmethod
    def from_dict(cls, data):
        """
        Parse the stored JSON shape: {"monday": {"start": 9, "end": 17}, "tuesday": null, ...}

        Missing weekdays are treated as unavailable. Raises ValueError on any
        malformed entry so invalid blobs are rejected at the boundary.
        """
        if data is None:
            return None
        if not isinstance(data, dict):
            raise ValueError("Schedule hours must be an object keyed by weekday")

        unknown = set(data) - set(WEEKDAYS)
        if unknown:
            raise ValueError(f"Unknown weekday(s): {', '.join(sorted(unknown))}")

        days = []
        for day in WEEKDAYS:
            entry = data.get(day)
            if entry is None:
                days.append(None)
                continue
            if not isinstance(entry, dict) or "start" not in entry or "end" not in entry:
                raise ValueError(f"Invalid time range for {day}")
            try:
                days.append(DayHours(entry["start"], entry["end"]))
            except ValueError as e:
                raise ValueError(f"Invalid time range for {day}: {e}") from e
        return cls(tuple(days))

    @classmethod
    def every_day(cls, start, end):
        hours = DayHours(start, end)
        return cls((hours,) * 7)

    def for_weekday(self, weekday):
        """weekday follows date.weekday(): 0 = Monday."""
        return self.days[weekday]

    def to_dict(self):
        return {
            day: ({"start": hours.start, "end": hours.end} if hours else None)
            for day, hours in zip(WEEKDAYS, self.days)
        }


@dataclass(frozen=True)
class GroupSchedule:
    id: str
    name: str = ""
    auto_schedule_enabled: bool = False
    auto_schedule_hours: Optional[WeeklyHours] = None
    priority: int = 5


@dataclass(frozen=True)
class Availability:
    timezone: str = "UTC"
    awake_hours: Optional[WeeklyHours] = None


@dataclass(frozen=True)
class TaskSnapshot:
    id: str
    title: str = ""
    duration: Optional[int] = None  # minutes
    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None
    due_date: Optional[datetime] = None
    priority: int = 3
    status: TaskStatus = TaskStatus.PENDING
    locked: bool = False
    group_id: Optional[str] = None
    parent_task_id: Optional[str] = None
    step_order: Optional[int] = None
    created_at: datetime = datetime(1970, 1, 1)

    def __post_init__(self):
        if (self.scheduled_start is None) != (self.scheduled_end is None):
            raise ValueError(
                f"Task {self.id} must have both scheduled_start and scheduled_end or neither"
            )
        if not isinstance(self.status, TaskStatus):
            object.__setattr__(self, "status", TaskStatus(self.status))

    @property
    def is_scheduled(self):
        return self.scheduled_start is not None

    @property
    def is_active(self):
        return self.status in ACTIVE_STATUSES

    @property
    def slot(self):
        if not self.is_scheduled:
            return None
        return Slot(self.scheduled_start, self.scheduled_end)

    def with_slot(self, slot):
        if slot is None:
            return replace(self, scheduled_start=None, scheduled_end=None)
        return replace(self, scheduled_start=slot.start, scheduled_end=slot.end)


@dataclass(frozen=True)
class Relocation:
    task_id: str
    slot: Slot

    def to_dict(self):
        return {"task_id": self.task_id, "new_slot": self.slot.to_dict()}


# A placement has the same shape as a relocation; the distinction is whether
# the caller asked for the task to move.
Placement = Relocation


@dataclass(frozen=True)
class EngineSettings:
    slot_granularity_minutes: int = 15
    now_horizon_days: int = 7
    asap_horizon_days: int = 7
    # asap retries once out to this horizon when the first search fails
    asap_extended_horizon_days: int = 28
    max_displaced_tasks: int = 25
    auto_schedule_max_tasks: int = 20
    default_awake_start_hour: int = 9
    default_awake_end_hour: int = 17

    @classmethod
    def from_config(cls, config):
        """Build settings from a Flask config mapping or a Config class."""
        get = config.get if hasattr(config, "get") else lambda k, d: getattr(config, k, d)
        return cls(
            slot_granularity_minutes=get("SLOT_GRANULARITY_MINUTES", 15),
            now_horizon_days=get("NOW_HORIZON_DAYS", 7),
            asap_horizon_days=get("ASAP_HORIZON_DAYS", 7),
            asap_extended_horizon_days=get("ASAP_EXTENDED_HORIZON_DAYS", 28),
            max_displaced_tasks=get("MAX_DISPLACED_TASKS", 25),
            auto_schedule_max_tasks=get("AUTO_SCHEDULE_MAX_TASKS", 20),
            default_awake_start_hour=get("DEFAULT_AWAKE_START_HOUR", 9),
            default_awake_end_hour=get("DEFAULT_AWAKE_END_HOUR", 17),
        )

    @property
    def default_awake_hours(self):
        return WeeklyHours.every_day(
            self.default_awake_start_hour, self.default_awake_end_hour
        )


class Snapshot:
    """
    Read-only, point-in-time view of one user's tasks, groups and dependencies.

    Components never mutate a snapshot; `with_schedule` and `with_schedules`
    return a new snapshot with the given tasks moved.
    """

    def __init__(
        self,
        tasks,
        groups=(),
        dependency_map=None,
        availability=None,
        settings=None,
    ):
        self.tasks = tuple(tasks)
        self.tasks_by_id = {task.id: task for task in self.tasks}
        self.groups_by_id = {group.id: group for group in groups}
        self.dependency_map = {
            task_id: tuple(dep_ids) for task_id, dep_ids in (dependency_map or {}).items()
        }
        self.availability = availability or Availability()
        self.settings = settings or EngineSettings()

    def __contains__(self, task_id):
        return task_id in self.tasks_by_id

    def get(self, task_id):
        return self.tasks_by_id.get(task_id)

    def group_for(self, task):
        if task.group_id is None:
            return None
        return self.groups_by_id.get(task.group_id)

    def subtasks_of(self, parent_id):
        """Subtasks in execution order: step_order first, then creation time."""
        subtasks = [t for t in self.tasks if t.parent_task_id == parent_id]
        subtasks.sort(
            key=lambda t: (
                t.step_order is None,
                t.step_order if t.step_order is not None else 0,
                t.created_at,
                t.id,
            )
        )
        return subtasks

    def dependencies_of(self, task_id):
        return self.dependency_map.get(task_id, ())

    def dependents_of(self, task_id):
        return sorted(
            dependent_id
            for dependent_id, dep_ids in self.dependency_map.items()
            if task_id in dep_ids
        )

    def with_schedules(self, slots_by_id):
        """Return a new snapshot where each task id in slots_by_id has the given slot (or None)."""
        tasks = [
            task.with_slot(slots_by_id[task.id]) if task.id in slots_by_id else task
            for task in self.tasks
        ]
        return Snapshot(
            tasks,
            groups=self.groups_by_id.values(),
            dependency_map=self.dependency_map,
            availability=self.availability,
            settings=self.settings,
        )

    def with_schedule(self, task_id, slot):
        return self.with_schedules({task_id: slot})
