"""
Hierarchy Manager.

Parent/child (subtask) tree maintenance. The hierarchy is encoded by
Task.parent_task_id and is independent of dependency edges. Root tasks have
depth 0; a task at depth d has d ancestors.
"""

import logging
from typing import List, Optional, Set

import config
import models
import schemas
from errors import NotFoundError, ValidationError, ValidationTag
from stores import TaskStore
from dependency_graph.locks import DependencyWriteLock

logger = logging.getLogger(__name__)


def completion_percentage(children: List[models.Task]) -> float:
    """Share of children in a terminal status, rounded to one decimal. 0 for no children."""
    if not children:
        return 0.0
    completed = sum(1 for child in children if child.status in models.TERMINAL_STATUSES)
    return round(completed / len(children) * 100, 1)


class HierarchyManager:
    def __init__(self, task_store: TaskStore, max_depth: int = config.MAX_HIERARCHY_DEPTH,
                 lock: Optional[DependencyWriteLock] = None):
        self.tasks = task_store
        self.max_depth = max_depth
        self.lock = lock or DependencyWriteLock("hierarchy")

    # ============== Ancestry ==============

    def get_ancestor_ids(self, task_id: str) -> List[str]:
        """
        Walk parent links upwards from task_id.

        Returns:
            Ancestor ids ordered from the direct parent up to the root. The
            walk stops early if the stored hierarchy loops back on itself.
        """
        ancestors = []
        visited = {task_id}
        task = self.tasks.get_task_by_id(task_id)
        current_id = task.parent_task_id if task else None

        while current_id is not None:
            if current_id in visited:
                logger.warning(f"Hierarchy cycle detected above task {task_id} at {current_id}")
                break
            visited.add(current_id)
            ancestors.append(current_id)

            parent = self.tasks.get_task_by_id(current_id)
            current_id = parent.parent_task_id if parent else None

        return ancestors

    def get_depth(self, task_id: str) -> int:
        return len(self.get_ancestor_ids(task_id))

    def get_task_path(self, task_id: str) -> schemas.TaskPath:
        """Ancestor ids from the root down to task_id, plus the task's depth."""
        if self.tasks.get_task_by_id(task_id) is None:
            raise NotFoundError("Task not found")

        ancestors = self.get_ancestor_ids(task_id)
        path = list(reversed(ancestors)) + [task_id]
        return schemas.TaskPath(task_id=task_id, path=path, depth=len(ancestors))

    def is_ancestor(self, ancestor_id: str, task_id: str) -> bool:
        """
        Check if ancestor_id is task_id itself or appears above it.

        Used to prevent moving a task under one of its own descendants.
        """
        if ancestor_id == task_id:
            return True
        return ancestor_id in self.get_ancestor_ids(task_id)

    def get_subtree_height(self, task_id: str) -> int:
        """Number of levels below task_id (0 for a leaf)."""
        height = 0
        visited: Set[str] = {task_id}
        frontier = [task_id]

        while frontier:
            children_by_parent = self.tasks.list_children_for(frontier)
            next_frontier = []
            for children in children_by_parent.values():
                for child in children:
                    if child.id in visited:
                        logger.warning(f"Hierarchy cycle detected below task {task_id} at {child.id}")
                        continue
                    visited.add(child.id)
                    next_frontier.append(child.id)

            if not next_frontier:
                break
            height += 1
            if height > self.max_depth:
                # Already past any valid depth
                break
            frontier = next_frontier

        return height

    # ============== Moves ==============

    def _check_move(self, task_id: str, new_parent_id: Optional[str]) -> None:
        if self.tasks.get_task_by_id(task_id) is None:
            raise NotFoundError("Task not found")

        if new_parent_id is None:
            new_depth = 0
        else:
            if self.tasks.get_task_by_id(new_parent_id) is None:
                raise NotFoundError("Parent task not found")

            if self.is_ancestor(task_id, new_parent_id):
                logger.info(f"Move rejected: task {new_parent_id} is {task_id} or one of its descendants")
                raise ValidationError(
                    "Cannot move task: this would create a circular reference in the task hierarchy",
                    ValidationTag.CIRCULAR_REFERENCE,
                )
            new_depth = self.get_depth(new_parent_id) + 1

        deepest = new_depth + self.get_subtree_height(task_id)
        if deepest > self.max_depth:
            logger.info(f"Move rejected: task {task_id} subtree would reach depth {deepest} (max {self.max_depth})")
            raise ValidationError(
                f"Cannot move task: maximum hierarchy depth of {self.max_depth} would be exceeded",
                ValidationTag.MAX_DEPTH_EXCEEDED,
            )

    def validate_move(self, task_id: str, new_parent_id: Optional[str] = None) -> schemas.HierarchyValidationResult:
        try:
            self._check_move(task_id, new_parent_id)
        except ValidationError as e:
            return schemas.HierarchyValidationResult(
                is_valid=False,
                errors=[e.message],
                max_depth_exceeded=e.tag == ValidationTag.MAX_DEPTH_EXCEEDED,
                circular_reference=e.tag == ValidationTag.CIRCULAR_REFERENCE,
            )
        except NotFoundError as e:
            return schemas.HierarchyValidationResult(is_valid=False, errors=[e.message])

        warnings = []
        task = self.tasks.get_task_by_id(task_id)
        if new_parent_id is not None:
            parent = self.tasks.get_task_by_id(new_parent_id)
            if parent.project_id != task.project_id:
                warnings.append("Task will be placed under a parent in a different project")
        return schemas.HierarchyValidationResult(is_valid=True, warnings=warnings)

    def move_task(self, task_id: str, new_parent_id: Optional[str] = None,
                  position: Optional[int] = None) -> models.Task:
        """
        Reparent a task, or move it to root level when new_parent_id is None.

        Raises:
            NotFoundError: task or new parent does not exist
            ValidationError: circular-reference or max-depth-exceeded; nothing is changed
        """
        logger.debug(f"Moving task {task_id} under {new_parent_id} at position {position}")

        with self.lock.hold():
            self._check_move(task_id, new_parent_id)
            self.tasks.update_task_parent(task_id, new_parent_id, position)

        logger.info(f"Moved task {task_id} under parent {new_parent_id}")
        return self.tasks.get_task_by_id(task_id)

    # ============== Tree ==============

    def get_task_tree(self, task_id: str, max_depth: int = config.DEFAULT_TREE_DEPTH) -> schemas.TaskTreeNode:
        """
        Build the subtree rooted at task_id.

        Children are expanded while depth < max_depth. Nodes at the limit
        still report has_children so a client can expand them lazily.
        """
        root = self.tasks.get_task_by_id(task_id)
        if root is None:
            raise NotFoundError("Task not found")

        return self._build_node(root, 0, max_depth, frozenset())

    def _build_node(self, task: models.Task, depth: int, max_depth: int,
                    branch: frozenset) -> schemas.TaskTreeNode:
        branch = branch | {task.id}
        children = self.tasks.list_children(task.id)
        expand = depth < max_depth

        child_nodes = []
        if expand:
            for child in children:
                if child.id in branch:
                    logger.warning(f"Hierarchy cycle detected in tree at task {child.id}, skipping branch")
                    continue
                child_nodes.append(self._build_node(child, depth + 1, max_depth, branch))

        return schemas.TaskTreeNode(
            task=schemas.TaskTreeTask(
                id=task.id,
                key=task.key,
                title=task.title,
                status=task.status,
                type=task.task_type,
                priority=task.priority,
                assignee_id=task.assignee_id,
                estimated_hours=task.estimated_hours,
                completion_percentage=completion_percentage(children) if children else None,
            ),
            children=child_nodes,
            depth=depth,
            has_children=len(children) > 0,
            is_expanded=expand and len(children) > 0,
        )
