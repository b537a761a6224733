def is_occupying(task):
    """A task blocks the calendar only while active and fully scheduled."""
    return task.is_active and task.is_scheduled


def overlapping(start, end, tasks, exclude_ids=()):
    """
    Return the occupying tasks whose [scheduled_start, scheduled_end) intersects [start, end).

    Results are ordered by start time, then id, so callers see a stable order.
    """
    excluded = set(exclude_ids)
    hits = [
        task
        for task in tasks
        if task.id not in excluded
        and is_occupying(task)
        and task.scheduled_start < end
        and start < task.scheduled_end
    ]
    hits.sort(key=lambda t: (t.scheduled_start, t.id))
    return hits


def is_free(start, end, tasks, exclude_task_id=None):
    exclude_ids = (exclude_task_id,) if exclude_task_id is not None else ()
    return not overlapping(start, end, tasks, exclude_ids=exclude_ids)
