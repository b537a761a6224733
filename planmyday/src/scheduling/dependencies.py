from collections import deque

from planmyday.extensions import create_logger
from planmyday.src.scheduling.errors import DependencyError
from planmyday.src.scheduling.types import TaskStatus

logger = create_logger(__name__, level="DEBUG")


class _Blocked:
    """Sentinel returned by the gate when a dependency has no end time."""

    def __repr__(self):
        return "BLOCKED"

    def __bool__(self):
        return False


BLOCKED = _Blocked()


def earliest_start(task, dependency_map, tasks_by_id):
    """
    Compute the earliest instant a task may start given its dependencies.

    Args:
        task: TaskSnapshot being scheduled
        dependency_map: task_id -> iterable of task ids it depends on
        tasks_by_id: task_id -> TaskSnapshot

    Returns:
        The latest scheduled_end among incomplete dependencies, None when no
        dependency constrains the task, or BLOCKED when an incomplete
        dependency has no scheduled_end.
    """
    earliest = None
    for dep_id in dependency_map.get(task.id, ()):
        dep = tasks_by_id.get(dep_id)
        if dep is None:
            # Not part of this snapshot
            continue
        if dep.status == TaskStatus.COMPLETED:
            continue
        if dep.scheduled_end is None:
            logger.debug(f"Task {task.id} blocked by unscheduled dependency {dep_id}")
            return BLOCKED
        if earliest is None or dep.scheduled_end > earliest:
            earliest = dep.scheduled_end
    return earliest


class DependencyGraph:
    """
    In-memory dependency graph built once per invocation.

    Nodes live in an arena (a list of ids plus an id -> index map) and edges in
    index-based adjacency lists, one for "depends on" and one for the reverse
    direction, so reachability checks never go back to storage.
    """

    def __init__(self, dependency_map=None):
        self._ids = []
        self._index = {}
        self._depends_on = []
        self._dependents = []
        for task_id in sorted(dependency_map or {}):
            for dep_id in dependency_map[task_id]:
                self.add_edge(task_id, dep_id)

    def _node(self, task_id):
        index = self._index.get(task_id)
        if index is None:
            index = len(self._ids)
            self._ids.append(task_id)
            self._index[task_id] = index
            self._depends_on.append([])
            self._dependents.append([])
        return index

    def __contains__(self, task_id):
        return task_id in self._index

    def copy(self):
        return DependencyGraph(self.to_map())

    def add_edge(self, task_id, depends_on_id):
        a = self._node(task_id)
        b = self._node(depends_on_id)
        if b not in self._depends_on[a]:
            self._depends_on[a].append(b)
            self._dependents[b].append(a)

    def remove_edge(self, task_id, depends_on_id):
        if not self.has_edge(task_id, depends_on_id):
            return
        a = self._index[task_id]
        b = self._index[depends_on_id]
        self._depends_on[a].remove(b)
        self._dependents[b].remove(a)

    def has_edge(self, task_id, depends_on_id):
        a = self._index.get(task_id)
        b = self._index.get(depends_on_id)
        if a is None or b is None:
            return False
        return b in self._depends_on[a]

    def dependencies_of(self, task_id):
        index = self._index.get(task_id)
        if index is None:
            return []
        return [self._ids[i] for i in self._depends_on[index]]

    def dependents_of(self, task_id):
        index = self._index.get(task_id)
        if index is None:
            return []
        return [self._ids[i] for i in self._dependents[index]]

    def depends_on(self, task_id, other_id):
        """True if task_id depends on other_id directly or transitively (BFS)."""
        start = self._index.get(task_id)
        target = self._index.get(other_id)
        if start is None or target is None:
            return False

        visited = {start}
        queue = deque([start])
        while queue:
            current = queue.popleft()
            for nxt in self._depends_on[current]:
                if nxt == target:
                    return True
                if nxt not in visited:
                    visited.add(nxt)
                    queue.append(nxt)
        return False

    def would_create_cycle(self, task_id, depends_on_id):
        """Adding task_id -> depends_on_id closes a cycle if depends_on_id already reaches task_id."""
        if task_id == depends_on_id:
            return True
        return self.depends_on(depends_on_id, task_id)

    def to_map(self):
        return {
            self._ids[i]: [self._ids[j] for j in deps]
            for i, deps in enumerate(self._depends_on)
            if deps
        }


def validate_dependencies(task_id, dependency_ids, graph, known_ids):
    """
    Check a replacement set of dependencies for task_id before it is stored.

    The task's current outgoing edges are ignored since they are being
    replaced. Raises DependencyError for self-dependencies, unknown tasks and
    cycles.
    """
    candidate = graph.copy()
    for existing in candidate.dependencies_of(task_id):
        candidate.remove_edge(task_id, existing)

    for dep_id in dependency_ids:
        if dep_id == task_id:
            raise DependencyError("Task cannot depend on itself")
        if dep_id not in known_ids:
            raise DependencyError(f"Dependency task not found: {dep_id}")
        if candidate.would_create_cycle(task_id, dep_id):
            raise DependencyError(
                f"Adding dependency {dep_id} would create a circular dependency"
            )
        candidate.add_edge(task_id, dep_id)
    return candidate


def plan_subtask_edges(task_subtask_ids, dep_subtask_ids, graph):
    """
    Plan the all-to-all edges implied by a parent-level edge A -> B.

    Every subtask of A depends on every subtask of B. Edges that already exist
    are skipped, as are edges that would close a cycle; cycle checks see the
    edges planned so far. The caller's graph is left untouched.

    Returns:
        list of (subtask_id, depends_on_subtask_id) tuples to create
    """
    if not task_subtask_ids or not dep_subtask_ids:
        return []

    working = graph.copy()
    planned = []
    for sub_id in task_subtask_ids:
        for dep_sub_id in dep_subtask_ids:
            if working.has_edge(sub_id, dep_sub_id):
                continue
            if working.would_create_cycle(sub_id, dep_sub_id):
                logger.debug(
                    f"Skipping subtask edge {sub_id} -> {dep_sub_id}: would create a cycle"
                )
                continue
            working.add_edge(sub_id, dep_sub_id)
            planned.append((sub_id, dep_sub_id))
    return planned


def plan_subtask_edge_removal(task_subtask_ids, dep_subtask_ids, graph):
    """Derived subtask edges to delete when the parent edge A -> B is removed."""
    return [
        (sub_id, dep_sub_id)
        for sub_id in task_subtask_ids
        for dep_sub_id in dep_subtask_ids
        if graph.has_edge(sub_id, dep_sub_id)
    ]
