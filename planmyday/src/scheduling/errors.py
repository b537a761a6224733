from enum import Enum


class FailureReason(str, Enum):
    # Precondition errors
    NOT_FOUND = "not_found"
    INVALID_DURATION = "invalid_duration"
    INVALID_STATUS = "invalid_status"
    LOCKED_TASK = "locked_task"
    MISSING_DUE_DATE = "missing_due_date"
    PARENT_CYCLE = "parent_cycle"
    # Constraint-unsatisfiable errors
    BLOCKED = "blocked"
    DUE_DATE_UNSATISFIABLE = "due_date_unsatisfiable"
    # Search-exhaustion errors
    NO_SLOT = "no_slot"
    NO_SLOT_BEFORE_DUE_DATE = "no_slot_before_due_date"
    LOCKED_CONFLICT = "locked_conflict"
    # Displacement failure
    DISPLACEMENT_FAILED = "displacement_failed"
    # Group operations
    GROUP_NOT_FOUND = "group_not_found"
    NO_ELIGIBLE_TASKS = "no_eligible_tasks"

    @property
    def message(self):
        return FAILURE_MESSAGES[self]

    @property
    def is_precondition(self):
        return self in PRECONDITION_REASONS


FAILURE_MESSAGES = {
    FailureReason.NOT_FOUND: "task not found",
    FailureReason.INVALID_DURATION: "task must have positive duration",
    FailureReason.INVALID_STATUS: "task is already completed, cancelled or rescheduled",
    FailureReason.LOCKED_TASK: "task is locked and cannot be moved",
    FailureReason.MISSING_DUE_DATE: "task has no due date",
    FailureReason.PARENT_CYCLE: "task is nested under one of its own subtasks",
    FailureReason.BLOCKED: "blocked: incomplete dependency with no end time",
    FailureReason.DUE_DATE_UNSATISFIABLE: "due date precedes the earliest possible start",
    FailureReason.NO_SLOT: "no available slot in horizon",
    FailureReason.NO_SLOT_BEFORE_DUE_DATE: "no available slot before due date",
    FailureReason.LOCKED_CONFLICT: "would conflict with locked task and displacement disabled",
    FailureReason.DISPLACEMENT_FAILED: (
        "could not resolve conflicts — some tasks are locked or no room remains"
    ),
    FailureReason.GROUP_NOT_FOUND: "group not found",
    FailureReason.NO_ELIGIBLE_TASKS: "No eligible tasks to schedule in this group",
}

PRECONDITION_REASONS = frozenset(
    {
        FailureReason.NOT_FOUND,
        FailureReason.INVALID_DURATION,
        FailureReason.INVALID_STATUS,
        FailureReason.LOCKED_TASK,
        FailureReason.MISSING_DUE_DATE,
        FailureReason.PARENT_CYCLE,
        FailureReason.GROUP_NOT_FOUND,
    }
)


class SchedulingError(Exception):
    """Base class for failures raised inside the scheduling engine."""

    reason = None

    def __init__(self, message=None, reason=None):
        if reason is not None:
            self.reason = reason
        if message is None and self.reason is not None:
            message = self.reason.message
        super().__init__(message)


class DependencyError(SchedulingError):
    """Raised when a dependency edge is invalid (self, unknown task or cycle)."""


class DisplacementError(SchedulingError):
    reason = FailureReason.DISPLACEMENT_FAILED
