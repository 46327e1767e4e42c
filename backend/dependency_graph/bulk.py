"""
Bulk Operation Coordinator.

Applies a batch of dependency CREATE / DELETE / UPDATE entries. Entries are
processed one by one, in input order, while the write lock is held for the
whole batch. Each accepted entry is committed before the next one is
checked, so later entries are validated against a graph that already
contains the earlier ones. A failing entry is recorded and processing moves
on; only a structurally invalid request fails as a whole.
"""

import logging
from typing import List, Optional, Tuple

import config
import models
import schemas
from errors import ConflictError, InternalError, NotFoundError, TrackerError, ValidationError, ValidationTag
from stores import DependencyStore
from dependency_graph.engine import DependencyGraphEngine

logger = logging.getLogger(__name__)


def error_code_for(error: TrackerError) -> str:
    """Stable per-item error code reported in BulkFailureItem.error_code."""
    if isinstance(error, NotFoundError):
        return "NOT_FOUND"
    if isinstance(error, ConflictError):
        return "DUPLICATE"
    if isinstance(error, ValidationError):
        if error.tag == ValidationTag.SELF_DEPENDENCY:
            return "SELF_DEPENDENCY"
        if error.tag == ValidationTag.CIRCULAR:
            return "CIRCULAR"
        return "VALIDATION_ERROR"
    if isinstance(error, InternalError):
        return "STORE_ERROR"
    return "ERROR"


class BulkOperationCoordinator:
    def __init__(self, engine: DependencyGraphEngine, dependency_store: DependencyStore,
                 max_operations: int = config.MAX_BULK_OPERATIONS):
        self.engine = engine
        self.dependencies = dependency_store
        self.max_operations = max_operations

    def bulk_dependency_operation(self, request: schemas.BulkDependencyOperation) -> schemas.BulkDependencyResult:
        """
        Run a batch of dependency operations.

        Raises:
            ValidationError: (invalid-request) the batch is empty or larger than max_operations
        """
        entries = request.dependencies
        logger.debug(f"Bulk {request.operation.value}: {[(e.blocking_task_id, e.dependent_task_id) for e in entries]}")

        if not entries:
            logger.info("No dependencies provided for bulk operation")
            raise ValidationError("At least one dependency is required", ValidationTag.INVALID_REQUEST)

        # Limit batch size
        if len(entries) > self.max_operations:
            logger.info(f"Batch size {len(entries)} exceeds limit of {self.max_operations}")
            raise ValidationError(
                f"Maximum {self.max_operations} dependencies per bulk operation",
                ValidationTag.INVALID_REQUEST,
            )

        result = schemas.BulkDependencyResult(operation=request.operation)
        seen: set = set()

        with self.engine.lock.hold():
            for index, entry in enumerate(entries):
                key = (entry.dependent_task_id, entry.blocking_task_id, entry.type)
                if key in seen:
                    result.warnings.append(
                        f"Entry {index}: duplicate of an earlier entry "
                        f"({entry.blocking_task_id} -> {entry.dependent_task_id}, {entry.type.value})"
                    )
                seen.add(key)

                try:
                    dependency_id = self._apply(request.operation, entry)
                except TrackerError as e:
                    code = error_code_for(e)
                    logger.debug(f"Entry {index} failed with {code}: {e.message}")
                    result.failed.append(schemas.BulkFailureItem(
                        dependent_task_id=entry.dependent_task_id,
                        blocking_task_id=entry.blocking_task_id,
                        error=e.message,
                        error_code=code,
                    ))
                    if request.validate_circular and isinstance(e, ValidationError) and e.path:
                        result.circular_dependencies.append(e.path)
                    continue

                result.successful.append(schemas.BulkSuccessItem(
                    dependent_task_id=entry.dependent_task_id,
                    blocking_task_id=entry.blocking_task_id,
                    dependency_id=dependency_id,
                ))

        if result.circular_dependencies:
            result.warnings.append(f"{len(result.circular_dependencies)} entries rejected as circular")

        result.message = f"{len(result.successful)} successful, {len(result.failed)} failed"
        logger.info(f"Bulk {request.operation.value} complete: {result.message}")
        return result

    def _apply(self, operation: schemas.BulkOperationType, entry: schemas.BulkDependencyItem) -> Optional[str]:
        if operation == schemas.BulkOperationType.CREATE:
            dependency = self.engine.create_dependency(entry.dependent_task_id, entry.blocking_task_id, entry.type)
            return dependency.id

        if operation == schemas.BulkOperationType.DELETE:
            dependency = self.dependencies.find(entry.dependent_task_id, entry.blocking_task_id, entry.type)
            if dependency is None:
                raise NotFoundError("Dependency not found")
            dependency_id = dependency.id
            if not self.engine.delete_dependency(dependency_id):
                raise NotFoundError("Dependency not found")
            return dependency_id

        # UPDATE: retype the existing edge between the pair
        existing = self.dependencies.find_between(entry.dependent_task_id, entry.blocking_task_id)
        if not existing:
            raise NotFoundError("Dependency not found")
        current, already = self._pick_update_target(existing, entry)
        if already:
            return current.id
        replacement = self.engine.replace_dependency_type(current, entry.type)
        return replacement.id

    @staticmethod
    def _pick_update_target(existing: List[models.TaskDependency],
                            entry: schemas.BulkDependencyItem) -> Tuple[models.TaskDependency, bool]:
        """Return the edge to retype, and whether it already has the requested type."""
        for dependency in existing:
            if dependency.type == entry.type:
                return dependency, True
        return existing[0], False
