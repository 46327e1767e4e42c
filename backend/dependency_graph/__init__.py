from dependency_graph.locks import DependencyWriteLock
from dependency_graph.engine import DependencyGraphEngine
from dependency_graph.hierarchy import HierarchyManager
from dependency_graph.aggregation import AggregationService
from dependency_graph.bulk import BulkOperationCoordinator
from dependency_graph.service import TaskDependencyService

__all__ = [
    "DependencyWriteLock",
    "DependencyGraphEngine",
    "HierarchyManager",
    "AggregationService",
    "BulkOperationCoordinator",
    "TaskDependencyService",
]
