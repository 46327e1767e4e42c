"""
TaskDependencyService: one object per database session that wires the
stores, the shared write locks and the four core components together.
"""

from typing import List, Optional

import config
import models
import schemas
from sqlalchemy.orm import Session

from stores import DependencyStore, TaskStore
from dependency_graph.aggregation import AggregationService
from dependency_graph.bulk import BulkOperationCoordinator
from dependency_graph.engine import DependencyGraphEngine
from dependency_graph.hierarchy import HierarchyManager
from dependency_graph.locks import DependencyWriteLock


class TaskDependencyService:
    def __init__(self, db: Session, lock: Optional[DependencyWriteLock] = None,
                 hierarchy_lock: Optional[DependencyWriteLock] = None):
        self.task_store = TaskStore(db)
        self.dependency_store = DependencyStore(db)
        self.engine = DependencyGraphEngine(self.task_store, self.dependency_store, lock)
        self.hierarchy = HierarchyManager(self.task_store, config.MAX_HIERARCHY_DEPTH, hierarchy_lock)
        self.aggregation = AggregationService(self.task_store, self.dependency_store, self.engine)
        self.bulk = BulkOperationCoordinator(self.engine, self.dependency_store)

    # Dependency graph engine
    def create_dependency(self, dependent_task_id: str, blocking_task_id: str,
                          dep_type: models.DependencyType = models.DependencyType.BLOCKS) -> models.TaskDependency:
        return self.engine.create_dependency(dependent_task_id, blocking_task_id, dep_type)

    def validate_dependency(self, dependent_task_id: str, blocking_task_id: str,
                            dep_type: models.DependencyType = models.DependencyType.BLOCKS) -> schemas.DependencyValidationResult:
        return self.engine.validate_dependency(dependent_task_id, blocking_task_id, dep_type)

    def delete_dependency(self, dependency_id: str) -> bool:
        return self.engine.delete_dependency(dependency_id)

    def get_dependencies(self, filters: schemas.DependencyFilters) -> List[models.TaskDependency]:
        return self.engine.get_dependencies(filters)

    def get_task_dependencies(self, task_id: str) -> schemas.TaskDependencies:
        return self.engine.get_task_dependencies(task_id)

    def get_task_blocking_info(self, task_id: str) -> schemas.TaskBlockingInfo:
        return self.engine.get_task_blocking_info(task_id)

    # Hierarchy manager
    def move_task(self, task_id: str, new_parent_id: Optional[str] = None,
                  position: Optional[int] = None) -> models.Task:
        return self.hierarchy.move_task(task_id, new_parent_id, position)

    def validate_move(self, task_id: str, new_parent_id: Optional[str] = None) -> schemas.HierarchyValidationResult:
        return self.hierarchy.validate_move(task_id, new_parent_id)

    def get_task_tree(self, task_id: str, max_depth: int = config.DEFAULT_TREE_DEPTH) -> schemas.TaskTreeNode:
        return self.hierarchy.get_task_tree(task_id, max_depth)

    def get_task_path(self, task_id: str) -> schemas.TaskPath:
        return self.hierarchy.get_task_path(task_id)

    # Aggregation service
    def get_subtask_summary(self, parent_task_id: str) -> schemas.SubtaskSummary:
        return self.aggregation.get_subtask_summary(parent_task_id)

    def generate_dependency_graph(self, project_id: str) -> schemas.DependencyGraph:
        return self.aggregation.generate_dependency_graph(project_id)

    def get_dependency_impact_analysis(self, task_id: str) -> schemas.DependencyImpactAnalysis:
        return self.aggregation.get_dependency_impact_analysis(task_id)

    # Bulk coordinator
    def bulk_dependency_operation(self, request: schemas.BulkDependencyOperation) -> schemas.BulkDependencyResult:
        return self.bulk.bulk_dependency_operation(request)
