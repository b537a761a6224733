import uuid
from datetime import datetime

from .extensions import create_logger, db, jwt
from .src.scheduling.types import (
    Availability,
    GroupSchedule,
    TaskSnapshot,
    TaskStatus,
    WeeklyHours,
)

logger = create_logger(__name__, level="DEBUG")


def generate_uuid():
    return str(uuid.uuid4())


def _isoformat(value):
    # Add Z to indicate UTC time
    return value.isoformat() + "Z" if value else None


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
    email = db.Column(db.String(255), nullable=True, unique=True)
    name = db.Column(db.String(255), nullable=True)

    timezone = db.Column(db.String(64), nullable=False, default="UTC")
    # {"monday": {"start": 9, "end": 17}, "tuesday": null, ...}
    awake_hours = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    tasks = db.relationship("Task", backref="user", lazy=True)
    groups = db.relationship("TaskGroup", backref="user", lazy=True)

    def __repr__(self):
        return f"<User {self.id}>"

    def get_awake_hours(self):
        return WeeklyHours.from_dict(self.awake_hours)

    def to_availability(self, default_timezone="UTC"):
        return Availability(
            timezone=self.timezone or default_timezone,
            awake_hours=self.get_awake_hours(),
        )

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "timezone": self.timezone,
            "awake_hours": self.awake_hours,
        }


@jwt.user_lookup_loader
def user_lookup_callback(_jwt_header, jwt_data):
    identity = jwt_data["sub"]
    return User.query.filter_by(id=identity).one_or_none()


class TaskGroup(db.Model):
    __tablename__ = "task_groups"

    id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    color = db.Column(db.String(20), nullable=True)
    priority = db.Column(db.Integer, nullable=False, default=5)  # 1-10

    auto_schedule_enabled = db.Column(db.Boolean, nullable=False, default=False)
    # Same shape as User.awake_hours; a null weekday disables the day
    auto_schedule_hours = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    tasks = db.relationship("Task", backref="group", lazy=True)

    def __repr__(self):
        return f"<TaskGroup {self.id}: {self.name}>"

    def to_snapshot(self):
        return GroupSchedule(
            id=self.id,
            name=self.name,
            auto_schedule_enabled=bool(self.auto_schedule_enabled),
            auto_schedule_hours=WeeklyHours.from_dict(self.auto_schedule_hours),
            priority=self.priority if self.priority is not None else 5,
        )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "priority": self.priority,
            "auto_schedule_enabled": self.auto_schedule_enabled,
            "auto_schedule_hours": self.auto_schedule_hours,
            "created_at": _isoformat(self.created_at),
            "task_count": len(self.tasks),
        }


class Task(db.Model):
    __tablename__ = "tasks"

    id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    duration = db.Column(db.Integer, nullable=True)  # in minutes

    scheduled_start = db.Column(db.DateTime, nullable=True)
    scheduled_end = db.Column(db.DateTime, nullable=True)
    due_date = db.Column(db.DateTime, nullable=True)

    priority = db.Column(db.Integer, nullable=False, default=3)  # 1 (urgent) - 5
    status = db.Column(db.String(20), nullable=False, default=TaskStatus.PENDING.value)
    locked = db.Column(db.Boolean, nullable=False, default=False)

    group_id = db.Column(db.String(36), db.ForeignKey("task_groups.id"), nullable=True)
    parent_task_id = db.Column(
        db.String(36), db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True
    )
    step_order = db.Column(db.Integer, nullable=True)
    # Set on a carryover task; points at the task it continues
    continued_from_task_id = db.Column(
        db.String(36), db.ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True
    )

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
    completed_at = db.Column(db.DateTime, nullable=True)

    subtasks = db.relationship(
        "Task",
        foreign_keys=[parent_task_id],
        backref=db.backref("parent", remote_side=[id]),
        cascade="all, delete-orphan",
        lazy=True,
    )

    @property
    def is_active(self):
        return self.status in (TaskStatus.PENDING.value, TaskStatus.IN_PROGRESS.value)

    @property
    def is_completed(self):
        return self.status == TaskStatus.COMPLETED.value

    def __repr__(self):
        s = f"<Task {self.id}: {self.title}."
        if self.due_date:
            s += f" Due: {self.due_date}"
        if self.scheduled_start:
            s += f" Scheduled: {self.scheduled_start} - {self.scheduled_end}"
        if self.locked:
            s += " Locked"
        s += f" Status: {self.status}>"
        return s

    def complete(self):
        self.status = TaskStatus.COMPLETED.value
        self.completed_at = datetime.utcnow()

    def set_slot(self, slot):
        self.scheduled_start = slot.start
        self.scheduled_end = slot.end

    def clear_schedule(self):
        self.scheduled_start = None
        self.scheduled_end = None

    def to_snapshot(self):
        return TaskSnapshot(
            id=self.id,
            title=self.title,
            duration=self.duration,
            scheduled_start=self.scheduled_start,
            scheduled_end=self.scheduled_end,
            due_date=self.due_date,
            priority=self.priority if self.priority is not None else 3,
            status=self.status or TaskStatus.PENDING.value,
            locked=bool(self.locked),
            group_id=self.group_id,
            parent_task_id=self.parent_task_id,
            step_order=self.step_order,
            created_at=self.created_at or datetime(1970, 1, 1),
        )

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "duration": self.duration,
            "scheduled_start": _isoformat(self.scheduled_start),
            "scheduled_end": _isoformat(self.scheduled_end),
            "due_date": _isoformat(self.due_date),
            "priority": self.priority,
            "status": self.status,
            "locked": self.locked,
            "group_id": self.group_id,
            "parent_task_id": self.parent_task_id,
            "step_order": self.step_order,
            "continued_from_task_id": self.continued_from_task_id,
            "created_at": _isoformat(self.created_at),
            "completed_at": _isoformat(self.completed_at),
            "is_active": self.is_active,
            "is_completed": self.is_completed,
            "subtask_ids": [subtask.id for subtask in self.subtasks],
            "dependencies": [
                assoc.depends_on_task_id for assoc in self.dependencies_assoc
            ],
        }


class TaskDependency(db.Model):
    __tablename__ = "task_dependencies"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.String(36), db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False
    )
    depends_on_task_id = db.Column(
        db.String(36), db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False
    )
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    task = db.relationship(
        "Task",
        foreign_keys=[task_id],
        backref=db.backref("dependencies_assoc", cascade="all, delete-orphan"),
    )
    depends_on = db.relationship(
        "Task",
        foreign_keys=[depends_on_task_id],
        backref=db.backref("dependents_assoc", cascade="all, delete-orphan"),
    )

    __table_args__ = (
        db.UniqueConstraint(
            "task_id", "depends_on_task_id", name="_task_dependency_uc"
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "depends_on_task_id": self.depends_on_task_id,
        }
