from flask import Blueprint, jsonify, request
from flask_jwt_extended import current_user, jwt_required

from planmyday.extensions import create_logger, db
from planmyday.models import Task, TaskDependency
from planmyday.src.scheduling.dependencies import (
    DependencyGraph,
    plan_subtask_edge_removal,
    plan_subtask_edges,
    validate_dependencies,
)
from planmyday.src.scheduling.errors import DependencyError

logger = create_logger(__name__, level="DEBUG")

dependency_bp = Blueprint("dependency", __name__, url_prefix="/api/tasks")


def load_dependency_graph(user_id):
    """Build the in-memory graph of every dependency edge between a user's tasks."""
    edges = (
        TaskDependency.query.join(Task, TaskDependency.task_id == Task.id)
        .filter(Task.user_id == user_id)
        .all()
    )
    dependency_map = {}
    for edge in edges:
        dependency_map.setdefault(edge.task_id, []).append(edge.depends_on_task_id)
    return DependencyGraph(dependency_map)


def _subtask_ids(task_id):
    subtasks = (
        Task.query.filter_by(parent_task_id=task_id)
        .order_by(Task.step_order, Task.created_at)
        .all()
    )
    return [subtask.id for subtask in subtasks]


def add_dependency(task_id, depends_on_id, graph):
    """
    Store task_id -> depends_on_id and the subtask edges it implies.

    `graph` is updated in place to reflect everything added. The caller
    validates the parent edge and commits.
    """
    db.session.add(TaskDependency(task_id=task_id, depends_on_task_id=depends_on_id))
    graph.add_edge(task_id, depends_on_id)

    derived = plan_subtask_edges(_subtask_ids(task_id), _subtask_ids(depends_on_id), graph)
    for sub_id, dep_sub_id in derived:
        db.session.add(TaskDependency(task_id=sub_id, depends_on_task_id=dep_sub_id))
        graph.add_edge(sub_id, dep_sub_id)

    if derived:
        logger.debug(
            f"Propagated {len(derived)} subtask edge(s) for {task_id} -> {depends_on_id}"
        )
    return derived


def remove_dependency(task_id, depends_on_id, graph):
    """Delete task_id -> depends_on_id and the subtask edges derived from it."""
    derived = plan_subtask_edge_removal(
        _subtask_ids(task_id), _subtask_ids(depends_on_id), graph
    )
    for a, b in [(task_id, depends_on_id)] + derived:
        edge = TaskDependency.query.filter_by(task_id=a, depends_on_task_id=b).first()
        if edge is not None:
            db.session.delete(edge)
        graph.remove_edge(a, b)
    return derived


def _task_summary(task):
    data = task.to_dict()
    return {
        key: data[key]
        for key in ("id", "title", "status", "scheduled_start", "scheduled_end")
    }


@dependency_bp.route("/<task_id>/dependencies", methods=["GET"])
@jwt_required()
def get_dependencies(task_id):
    task = Task.query.filter_by(id=task_id, user_id=current_user.id).first_or_404()
    return jsonify(
        {
            "task_id": task.id,
            "dependencies": [
                _task_summary(assoc.depends_on) for assoc in task.dependencies_assoc
            ],
            "dependents": [_task_summary(assoc.task) for assoc in task.dependents_assoc],
        }
    )


@dependency_bp.route("/<task_id>/dependencies", methods=["PUT"])
@jwt_required()
def replace_dependencies(task_id):
    """Replace the full set of tasks this task depends on"""
    task = Task.query.filter_by(id=task_id, user_id=current_user.id).first_or_404()
    data = request.json
    if data is None or not isinstance(data.get("dependencies"), list):
        return jsonify({"error": "dependencies must be a list of task ids"}), 400

    requested = list(dict.fromkeys(data["dependencies"]))
    graph = load_dependency_graph(current_user.id)
    known_ids = {t.id for t in Task.query.filter_by(user_id=current_user.id).all()}

    try:
        validate_dependencies(task.id, requested, graph, known_ids)
    except DependencyError as e:
        return jsonify({"error": str(e)}), 400

    current = set(graph.dependencies_of(task.id))
    try:
        for dep_id in sorted(current - set(requested)):
            remove_dependency(task.id, dep_id, graph)
        for dep_id in requested:
            if dep_id not in current:
                add_dependency(task.id, dep_id, graph)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error replacing dependencies for task {task_id}: {str(e)}")
        return jsonify({"error": f"Failed to update dependencies: {str(e)}"}), 500

    return jsonify(
        {
            "message": "Dependencies updated successfully",
            "dependencies": graph.dependencies_of(task.id),
        }
    )


@dependency_bp.route("/<task_id>/dependencies", methods=["POST"])
@jwt_required()
def create_dependency(task_id):
    """Add a single dependency, propagating it to both tasks' subtasks"""
    task = Task.query.filter_by(id=task_id, user_id=current_user.id).first_or_404()
    data = request.json
    if not data or not data.get("depends_on_task_id"):
        return jsonify({"error": "Missing depends_on_task_id parameter"}), 400

    depends_on_id = data["depends_on_task_id"]
    graph = load_dependency_graph(current_user.id)
    if graph.has_edge(task.id, depends_on_id):
        return jsonify({"error": "Dependency already exists"}), 400

    known_ids = {t.id for t in Task.query.filter_by(user_id=current_user.id).all()}
    try:
        validate_dependencies(
            task.id,
            graph.dependencies_of(task.id) + [depends_on_id],
            graph,
            known_ids,
        )
    except DependencyError as e:
        return jsonify({"error": str(e)}), 400

    derived = add_dependency(task.id, depends_on_id, graph)
    db.session.commit()

    return (
        jsonify(
            {
                "message": "Dependency created successfully",
                "task_id": task.id,
                "depends_on_task_id": depends_on_id,
                "subtask_edges_created": len(derived),
            }
        ),
        201,
    )


@dependency_bp.route("/<task_id>/dependencies/<depends_on_id>", methods=["DELETE"])
@jwt_required()
def delete_dependency(task_id, depends_on_id):
    task = Task.query.filter_by(id=task_id, user_id=current_user.id).first_or_404()
    graph = load_dependency_graph(current_user.id)
    if not graph.has_edge(task.id, depends_on_id):
        return jsonify({"error": "Dependency not found"}), 404

    derived = remove_dependency(task.id, depends_on_id, graph)
    db.session.commit()

    return jsonify(
        {
            "message": "Dependency removed successfully",
            "subtask_edges_removed": len(derived),
        }
    )
