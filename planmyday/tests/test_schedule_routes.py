from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from flask import json

from planmyday.models import Task, TaskDependency, User
from planmyday.src.scheduling.scheduler import ScheduleResult
from planmyday.src.utils import load_snapshot, persist_result


def tomorrow_midnight():
    return datetime.combine(datetime.utcnow().date() + timedelta(days=1), datetime.min.time())


def iso(value):
    return value.isoformat() + "Z"


# Tests for POST /api/tasks/<id>/schedule-*
def test_schedule_tomorrow(client, auth_headers, create_task_factory):
    task = create_task_factory("Plan trip", duration=45)

    response = client.post(f"/api/tasks/{task.id}/schedule-tomorrow", headers=auth_headers)

    assert response.status_code == 200
    data = json.loads(response.data)
    start = tomorrow_midnight()
    assert data["task"]["scheduled_start"] == iso(start)
    assert data["task"]["scheduled_end"] == iso(start + timedelta(minutes=45))
    assert data["placements"] == [
        {
            "task_id": task.id,
            "new_slot": {
                "start": iso(start),
                "end": iso(start + timedelta(minutes=45)),
            },
        }
    ]
    assert data["shuffled_tasks"] == []
    assert data["feedback"][0].startswith('Scheduled "Plan trip" for')


def test_schedule_with_mode_parameter(client, auth_headers, create_task_factory):
    task = create_task_factory("Plan trip")

    response = client.post(
        f"/api/tasks/{task.id}/schedule", json={"mode": "tomorrow"}, headers=auth_headers
    )

    assert response.status_code == 200
    assert Task.query.get(task.id).scheduled_start == tomorrow_midnight()


def test_schedule_now_starts_on_the_grid(client, auth_headers, create_task_factory):
    task = create_task_factory("Quick call", duration=15)
    before = datetime.utcnow()

    response = client.post(f"/api/tasks/{task.id}/schedule-now", headers=auth_headers)

    assert response.status_code == 200
    stored = Task.query.get(task.id)
    assert stored.scheduled_start >= before
    assert stored.scheduled_start.minute % 15 == 0
    assert stored.scheduled_start.second == 0
    assert stored.scheduled_end - stored.scheduled_start == timedelta(minutes=15)


def test_schedule_missing_mode(client, auth_headers, create_task_factory):
    task = create_task_factory("Task")
    response = client.post(f"/api/tasks/{task.id}/schedule", json={}, headers=auth_headers)
    assert response.status_code == 400
    assert json.loads(response.data)["error"] == "Missing mode parameter"


def test_schedule_unknown_mode(client, auth_headers, create_task_factory):
    task = create_task_factory("Task")
    response = client.post(
        f"/api/tasks/{task.id}/schedule", json={"mode": "whenever"}, headers=auth_headers
    )
    assert response.status_code == 400
    assert "Unknown scheduling mode" in json.loads(response.data)["error"]


def test_schedule_task_not_found(client, auth_headers):
    response = client.post("/api/tasks/nonexistent/schedule-now", headers=auth_headers)
    assert response.status_code == 404


def test_schedule_completed_task(client, auth_headers, create_task_factory):
    task = create_task_factory("Done", status="completed")
    response = client.post(f"/api/tasks/{task.id}/schedule-now", headers=auth_headers)
    assert response.status_code == 422
    assert json.loads(response.data)["reason"] == "invalid_status"


def test_schedule_task_without_duration(client, auth_headers, create_task_factory):
    task = create_task_factory("Vague", duration=None)
    response = client.post(f"/api/tasks/{task.id}/schedule-now", headers=auth_headers)
    assert response.status_code == 422
    assert json.loads(response.data)["reason"] == "invalid_duration"


def test_schedule_blocked_by_unscheduled_dependency(
    client, auth_headers, test_db, create_task_factory
):
    first = create_task_factory("First")
    second = create_task_factory("Second")
    test_db.session.add(TaskDependency(task_id=second.id, depends_on_task_id=first.id))
    test_db.session.commit()

    response = client.post(f"/api/tasks/{second.id}/schedule-now", headers=auth_headers)

    assert response.status_code == 422
    data = json.loads(response.data)
    assert data["reason"] == "blocked"
    assert Task.query.get(second.id).scheduled_start is None


def test_locked_conflict_and_failed_displacement(client, auth_headers, create_task_factory):
    now = datetime.utcnow()
    create_task_factory(
        "Vacation",
        locked=True,
        scheduled_start=now - timedelta(hours=1),
        scheduled_end=now + timedelta(days=40),
    )
    task = create_task_factory("Errand")

    response = client.post(f"/api/tasks/{task.id}/schedule-now", headers=auth_headers)
    assert response.status_code == 422
    data = json.loads(response.data)
    assert data["reason"] == "locked_conflict"
    assert 'Try "asap"' in data["feedback"][-1]

    response = client.post(f"/api/tasks/{task.id}/schedule-asap", headers=auth_headers)
    assert response.status_code == 422
    assert json.loads(response.data)["reason"] == "displacement_failed"


def test_failure_body_matches_engine_result(client, auth_headers, create_task_factory):
    task = create_task_factory("Vague", duration=None)
    response = client.post(f"/api/tasks/{task.id}/schedule-now", headers=auth_headers)

    data = json.loads(response.data)
    assert data["success"] is False
    assert data["task_id"] == task.id
    assert data["placements"] == [] and data["relocations"] == []


def test_asap_reaches_past_a_week_long_block(client, auth_headers, create_task_factory):
    now = datetime.utcnow()
    create_task_factory(
        "Conference",
        locked=True,
        scheduled_start=now - timedelta(hours=1),
        scheduled_end=now + timedelta(days=10),
    )
    task = create_task_factory("Errand")

    response = client.post(f"/api/tasks/{task.id}/schedule-asap", headers=auth_headers)

    assert response.status_code == 200
    assert Task.query.get(task.id).scheduled_start >= now + timedelta(days=10)


def test_asap_displaces_lower_priority_task(client, auth_headers, create_task_factory):
    now = datetime.utcnow()
    low = create_task_factory(
        "Tidy desk",
        duration=180,
        priority=5,
        scheduled_start=now - timedelta(hours=1),
        scheduled_end=now + timedelta(hours=2),
    )
    urgent = create_task_factory("Fix outage", priority=1)

    response = client.post(f"/api/tasks/{urgent.id}/schedule-asap", headers=auth_headers)

    assert response.status_code == 200
    data = json.loads(response.data)
    assert len(data["shuffled_tasks"]) == 1
    assert data["shuffled_tasks"][0]["id"] == low.id

    urgent = Task.query.get(urgent.id)
    low = Task.query.get(low.id)
    assert urgent.scheduled_start < low.scheduled_start
    assert low.scheduled_start >= urgent.scheduled_end
    assert any(line.startswith('Moved "Tidy desk"') for line in data["feedback"])


def test_schedule_parent_schedules_subtasks(client, auth_headers, create_task_factory):
    parent = create_task_factory("Move house", duration=None)
    step1 = create_task_factory("Pack", duration=60, parent_task_id=parent.id, step_order=1)
    step2 = create_task_factory("Drive", duration=30, parent_task_id=parent.id, step_order=2)

    response = client.post(f"/api/tasks/{parent.id}/schedule-tomorrow", headers=auth_headers)

    assert response.status_code == 200
    start = tomorrow_midnight()
    assert Task.query.get(step1.id).scheduled_start == start
    assert Task.query.get(step2.id).scheduled_start == start + timedelta(hours=1)
    assert Task.query.get(parent.id).scheduled_start is None


def test_locked_parent_is_not_cleared(client, auth_headers, create_task_factory):
    start = tomorrow_midnight() + timedelta(hours=12)
    parent = create_task_factory(
        "Offsite",
        duration=None,
        locked=True,
        scheduled_start=start,
        scheduled_end=start + timedelta(hours=1),
    )
    step = create_task_factory("Book room", parent_task_id=parent.id, step_order=1)

    response = client.post(f"/api/tasks/{parent.id}/schedule-tomorrow", headers=auth_headers)

    assert response.status_code == 422
    assert json.loads(response.data)["reason"] == "locked_task"
    assert Task.query.get(parent.id).scheduled_start == start
    assert Task.query.get(step.id).scheduled_start is None


def test_schedule_unexpected_error(client, auth_headers, create_task_factory):
    task = create_task_factory("Task")
    with patch("planmyday.routes.schedule_task", side_effect=Exception("Scheduler exploded")):
        response = client.post(f"/api/tasks/{task.id}/schedule-now", headers=auth_headers)
    assert response.status_code == 500
    assert "Scheduler exploded" in json.loads(response.data)["error"]


# Tests for POST /api/tasks/<id>/unschedule
def test_unschedule_task(client, auth_headers, create_task_factory):
    start = datetime(2030, 1, 7, 9)
    task = create_task_factory(
        "Task", scheduled_start=start, scheduled_end=start + timedelta(hours=1)
    )

    response = client.post(f"/api/tasks/{task.id}/unschedule", headers=auth_headers)

    assert response.status_code == 200
    assert json.loads(response.data)["cleared_task_ids"] == [task.id]
    assert Task.query.get(task.id).scheduled_start is None


def test_unschedule_locked_task(client, auth_headers, create_task_factory):
    start = datetime(2030, 1, 7, 9)
    task = create_task_factory(
        "Task", locked=True, scheduled_start=start, scheduled_end=start + timedelta(hours=1)
    )
    response = client.post(f"/api/tasks/{task.id}/unschedule", headers=auth_headers)
    assert response.status_code == 400
    assert Task.query.get(task.id).scheduled_start == start


# Tests for /api/user settings
def test_get_awake_hours(client, auth_headers):
    response = client.get("/api/user/awake-hours", headers=auth_headers)
    assert response.status_code == 200
    data = json.loads(response.data)
    assert data["timezone"] == "UTC"
    assert data["awake_hours"]["monday"] == {"start": 0, "end": 23}


def test_update_awake_hours(client, auth_headers):
    response = client.put(
        "/api/user/awake-hours",
        json={"awake_hours": {"monday": {"start": 8, "end": 18}, "sunday": None}},
        headers=auth_headers,
    )
    assert response.status_code == 200
    hours = json.loads(response.data)["awake_hours"]
    assert hours["monday"] == {"start": 8, "end": 18}
    assert hours["tuesday"] is None
    assert hours["sunday"] is None


def test_update_awake_hours_null_clears(client, auth_headers):
    response = client.put(
        "/api/user/awake-hours", json={"awake_hours": None}, headers=auth_headers
    )
    assert response.status_code == 200
    assert json.loads(response.data)["awake_hours"] is None


def test_update_awake_hours_invalid(client, auth_headers):
    bad_hours = [
        {"monday": {"start": 17, "end": 9}},
        {"monday": {"start": 9, "end": 24}},
        {"monday": {"start": 9}},
        {"funday": {"start": 9, "end": 17}},
        "9 to 5",
    ]
    for hours in bad_hours:
        response = client.put(
            "/api/user/awake-hours", json={"awake_hours": hours}, headers=auth_headers
        )
        assert response.status_code == 400, hours

    response = client.put("/api/user/awake-hours", json={}, headers=auth_headers)
    assert response.status_code == 400


def test_update_timezone(client, auth_headers):
    response = client.put(
        "/api/user/timezone", json={"timezone": "Europe/Berlin"}, headers=auth_headers
    )
    assert response.status_code == 200
    assert json.loads(response.data)["timezone"] == "Europe/Berlin"

    response = client.put(
        "/api/user/timezone", json={"timezone": "Mars/Olympus"}, headers=auth_headers
    )
    assert response.status_code == 400


def test_persist_result_refuses_to_clear_locked_task(app, test_db, create_task_factory):
    start = datetime(2030, 1, 7, 9)
    task = create_task_factory(
        "Pinned", locked=True, scheduled_start=start, scheduled_end=start + timedelta(hours=1)
    )
    result = ScheduleResult(task_id=task.id, cleared_task_ids=[task.id])

    with pytest.raises(ValueError, match="locked"):
        persist_result(task.user_id, result)
    test_db.session.rollback()
    assert Task.query.get(task.id).scheduled_start == start


def test_user_without_timezone_uses_default(app, test_db):
    app.config["DEFAULT_TIMEZONE"] = "Europe/Berlin"
    unsaved = User(id="no-timezone", timezone=None)

    assert load_snapshot(unsaved).availability.timezone == "Europe/Berlin"
