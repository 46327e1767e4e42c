"""
Dependency Graph Engine.

Maintains directed edges between tasks and answers "is task X blocked",
"what blocks X" and "what does X block". Edge direction follows the data
model: the dependent task waits on the blocking task. Only blocking-semantic
edges (BLOCKS, IS_BLOCKED_BY) must stay acyclic; RELATES_TO edges carry no
ordering and are never cycle-checked.
"""

import logging
from typing import Dict, Iterable, List, Optional

import models
import schemas
from errors import ConflictError, NotFoundError, ValidationError, ValidationTag
from stores import DependencyStore, TaskStore
from dependency_graph.locks import DependencyWriteLock
from dependency_graph.traversal import find_path

logger = logging.getLogger(__name__)


def linked_task(task: models.Task, dep_type: models.DependencyType) -> schemas.LinkedTask:
    return schemas.LinkedTask(
        task_id=task.id,
        task_key=task.key,
        title=task.title,
        status=task.status,
        type=dep_type,
    )


class DependencyGraphEngine:
    def __init__(self, task_store: TaskStore, dependency_store: DependencyStore,
                 lock: Optional[DependencyWriteLock] = None):
        self.tasks = task_store
        self.dependencies = dependency_store
        self.lock = lock or DependencyWriteLock()

    # ============== Validation ==============

    def blockers_of(self, task_id: str, ignore_dependency_id: Optional[str] = None) -> List[str]:
        """Ids of the tasks task_id waits on through blocking-semantic edges."""
        return [
            dep.blocking_task_id
            for dep in self.dependencies.list_for_dependent(task_id)
            if dep.is_blocking and dep.id != ignore_dependency_id
        ]

    def find_circular_path(self, dependent_task_id: str, blocking_task_id: str,
                           ignore_dependency_id: Optional[str] = None) -> Optional[List[str]]:
        """
        Check whether dependent -> blocking would close a cycle.

        Searches from blocking_task_id along existing "waits on" edges. If
        dependent_task_id is reachable, blocking already waits on dependent
        (directly or indirectly), so the new edge closes a loop.

        Returns:
            The cycle as [dependent, blocking, ..., dependent], or None
        """
        logger.debug(f"Checking circular dependency: dependent={dependent_task_id}, blocking={blocking_task_id}")

        path = find_path(
            blocking_task_id,
            dependent_task_id,
            lambda task_id: self.blockers_of(task_id, ignore_dependency_id),
        )
        if path is None:
            logger.debug(f"No circular dependency for dependent={dependent_task_id}, blocking={blocking_task_id}")
            return None

        cycle = [dependent_task_id] + path
        logger.info(f"Circular dependency detected: {' -> '.join(cycle)}")
        return cycle

    def validate_dependency(self, dependent_task_id: str, blocking_task_id: str,
                            dep_type: models.DependencyType = models.DependencyType.BLOCKS,
                            ignore_dependency_id: Optional[str] = None) -> schemas.DependencyValidationResult:
        """
        Run every creation check and report the outcome instead of raising.

        Args:
            dependent_task_id: Task that would wait
            blocking_task_id: Task that would have to resolve first
            dep_type: Edge type
            ignore_dependency_id: Existing edge to leave out of the checks (type replacement)
        """
        try:
            self._check_create(dependent_task_id, blocking_task_id, dep_type, ignore_dependency_id)
        except ValidationError as e:
            return schemas.DependencyValidationResult(is_valid=False, errors=[e.message], circular_path=e.path)
        except (NotFoundError, ConflictError) as e:
            return schemas.DependencyValidationResult(is_valid=False, errors=[e.message])

        warnings = []
        if dep_type == models.DependencyType.RELATES_TO:
            warnings.append("RELATES_TO dependencies are informational and do not block")
        return schemas.DependencyValidationResult(is_valid=True, warnings=warnings)

    def _check_create(self, dependent_task_id: str, blocking_task_id: str,
                      dep_type: models.DependencyType,
                      ignore_dependency_id: Optional[str] = None) -> None:
        # Prevent self-dependency
        if dependent_task_id == blocking_task_id:
            logger.info(f"Self-dependency rejected for task {dependent_task_id}")
            raise ValidationError("Task cannot depend on itself", ValidationTag.SELF_DEPENDENCY)

        if self.tasks.get_task_by_id(dependent_task_id) is None:
            logger.info(f"Dependent task {dependent_task_id} not found")
            raise NotFoundError(f"Dependent task {dependent_task_id} not found")
        if self.tasks.get_task_by_id(blocking_task_id) is None:
            logger.info(f"Blocking task {blocking_task_id} not found")
            raise NotFoundError(f"Blocking task {blocking_task_id} not found")

        existing = self.dependencies.find(dependent_task_id, blocking_task_id, dep_type)
        if existing is not None and existing.id != ignore_dependency_id:
            logger.info(f"Dependency already exists: {blocking_task_id} -> {dependent_task_id} ({dep_type.value})")
            raise ConflictError("Dependency already exists")

        if dep_type in models.BLOCKING_DEPENDENCY_TYPES:
            cycle = self.find_circular_path(dependent_task_id, blocking_task_id, ignore_dependency_id)
            if cycle is not None:
                raise ValidationError(
                    "Circular dependency detected: this dependency would create a circular dependency chain",
                    ValidationTag.CIRCULAR,
                    path=cycle,
                )

    # ============== Mutations ==============

    def create_dependency(self, dependent_task_id: str, blocking_task_id: str,
                          dep_type: models.DependencyType = models.DependencyType.BLOCKS) -> models.TaskDependency:
        """
        Create a dependency edge after validating it.

        Raises:
            ValidationError: self-dependency or circular dependency
            NotFoundError: either task does not exist
            ConflictError: the same (dependent, blocking, type) edge exists
        """
        logger.debug(f"Adding dependency: dependent={dependent_task_id}, blocking={blocking_task_id}, type={dep_type.value}")

        with self.lock.hold():
            self._check_create(dependent_task_id, blocking_task_id, dep_type)
            dependency = self.dependencies.add(dependent_task_id, blocking_task_id, dep_type)

        logger.info(f"Created dependency {dependency.id}: task {blocking_task_id} blocks task {dependent_task_id} ({dep_type.value})")
        return dependency

    def delete_dependency(self, dependency_id: str) -> bool:
        """
        Delete a dependency edge.

        Returns:
            True if removed, False if no such dependency exists
        """
        logger.debug(f"Removing dependency {dependency_id}")

        with self.lock.hold():
            dependency = self.dependencies.get(dependency_id)
            if dependency is None:
                logger.info(f"Dependency {dependency_id} not found")
                return False
            self.dependencies.delete(dependency)

        logger.info(f"Removed dependency {dependency_id}")
        return True

    def replace_dependency_type(self, dependency: models.TaskDependency,
                                new_type: models.DependencyType) -> models.TaskDependency:
        """
        Change an edge's type by deleting and recreating it in one commit.

        The new edge is validated as a fresh creation with the old edge left
        out of the graph, so turning RELATES_TO into BLOCKS is rejected when
        it would close a cycle.
        """
        if dependency.type == new_type:
            return dependency

        with self.lock.hold():
            self._check_create(dependency.dependent_task_id, dependency.blocking_task_id,
                               new_type, ignore_dependency_id=dependency.id)

            dependent_task_id = dependency.dependent_task_id
            blocking_task_id = dependency.blocking_task_id
            old_type = dependency.type

            self.dependencies.delete(dependency, commit=False)
            replacement = self.dependencies.add(dependent_task_id, blocking_task_id, new_type, commit=False)
            self.dependencies.commit("replace dependency", "Dependency already exists")
            self.dependencies.refresh(replacement)

        logger.info(f"Replaced dependency {blocking_task_id} -> {dependent_task_id}: {old_type.value} -> {new_type.value}")
        return replacement

    # ============== Queries ==============

    def get_task_dependencies(self, task_id: str) -> schemas.TaskDependencies:
        """Every edge, of any type, that touches task_id."""
        if self.tasks.get_task_by_id(task_id) is None:
            raise NotFoundError("Task not found")

        return schemas.TaskDependencies(
            task_id=task_id,
            blocking=[schemas.TaskDependencyDetail.model_validate(dep) for dep in self.dependencies.list_for_blocking(task_id)],
            blocked_by=[schemas.TaskDependencyDetail.model_validate(dep) for dep in self.dependencies.list_for_dependent(task_id)],
        )

    def get_dependencies(self, filters: schemas.DependencyFilters) -> List[models.TaskDependency]:
        """List edges matching a typed filter."""
        logger.debug(f"Listing dependencies with filters {filters.model_dump(exclude_none=True)}")
        query = self.dependencies.query()

        if filters.task_id:
            query = query.filter(
                (models.TaskDependency.dependent_task_id == filters.task_id) |
                (models.TaskDependency.blocking_task_id == filters.task_id)
            )

        if filters.project_id:
            query = query.filter(
                models.TaskDependency.dependent_task.has(models.Task.project_id == filters.project_id) |
                models.TaskDependency.blocking_task.has(models.Task.project_id == filters.project_id)
            )

        if filters.type:
            query = query.filter(models.TaskDependency.type == filters.type)

        terminal = list(models.TERMINAL_STATUSES)
        if filters.status == schemas.DependencyStatusFilter.ACTIVE:
            query = query.filter(models.TaskDependency.blocking_task.has(models.Task.status.notin_(terminal)))
        elif filters.status == schemas.DependencyStatusFilter.RESOLVED:
            query = query.filter(models.TaskDependency.blocking_task.has(models.Task.status.in_(terminal)))

        dependencies = query.order_by(models.TaskDependency.created_at).all()
        logger.debug(f"Found {len(dependencies)} dependencies")
        return dependencies

    def get_task_blocking_info(self, task_id: str) -> schemas.TaskBlockingInfo:
        """
        Report whether a task is blocked.

        A task is blocked iff at least one blocking-semantic predecessor is
        not in a terminal status. The tasks it blocks are listed for
        information only and never affect is_blocked.
        """
        logger.debug(f"Calculating blocking info for task {task_id}")

        if self.tasks.get_task_by_id(task_id) is None:
            logger.info(f"Task {task_id} not found")
            raise NotFoundError("Task not found")

        incoming = [dep for dep in self.dependencies.list_for_dependent(task_id) if dep.is_blocking]
        outgoing = [dep for dep in self.dependencies.list_for_blocking(task_id) if dep.is_blocking]

        related = self.tasks.get_tasks_by_ids(
            [dep.blocking_task_id for dep in incoming] + [dep.dependent_task_id for dep in outgoing]
        )

        blocked_by = [
            linked_task(related[dep.blocking_task_id], dep.type)
            for dep in incoming
            if dep.blocking_task_id in related
            and related[dep.blocking_task_id].status not in models.TERMINAL_STATUSES
        ]
        blocking = [
            linked_task(related[dep.dependent_task_id], dep.type)
            for dep in outgoing
            if dep.dependent_task_id in related
        ]

        is_blocked = len(blocked_by) > 0
        blocked_reason = None
        if is_blocked:
            blocked_reason = "Blocked by: " + ", ".join(t.title for t in blocked_by)

        logger.debug(f"Task {task_id} is_blocked={is_blocked} ({len(blocked_by)} incomplete blockers)")
        return schemas.TaskBlockingInfo(
            task_id=task_id,
            is_blocked=is_blocked,
            blocked_by=blocked_by,
            blocking=blocking,
            can_start=not is_blocked,
            blocked_reason=blocked_reason,
        )

    def calculate_is_blocked_map(self, task_ids: Iterable[str]) -> Dict[str, bool]:
        """
        Calculate is_blocked for many tasks at once to avoid N+1 queries.

        This function:
        1. Fetches all blocking edges for the given tasks in one query
        2. Fetches all blocker statuses in one query
        3. Computes is_blocked in memory
        """
        task_ids = list(task_ids)
        if not task_ids:
            return {}

        dependencies = self.dependencies.list_blocking_for_dependents(task_ids)
        if not dependencies:
            return {task_id: False for task_id in task_ids}

        blockers = self.tasks.get_tasks_by_ids(dep.blocking_task_id for dep in dependencies)

        result = {task_id: False for task_id in task_ids}
        for dep in dependencies:
            blocker = blockers.get(dep.blocking_task_id)
            if blocker is not None and blocker.status not in models.TERMINAL_STATUSES:
                result[dep.dependent_task_id] = True

        logger.debug(f"Bulk calculation complete: {sum(result.values())} of {len(task_ids)} tasks are blocked")
        return result
