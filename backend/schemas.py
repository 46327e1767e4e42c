from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List
from enum import Enum

from models import DependencyType, TaskStatus, TaskType, TaskPriority


class DependencyStatusFilter(str, Enum):
    """Filter dependencies by the state of their blocking task."""
    ACTIVE = "ACTIVE"      # Blocker not yet terminal
    RESOLVED = "RESOLVED"  # Blocker done or not needed
    ALL = "ALL"


class BulkOperationType(str, Enum):
    CREATE = "CREATE"
    DELETE = "DELETE"
    UPDATE = "UPDATE"


class ImpactType(str, Enum):
    DIRECT = "DIRECT"
    INDIRECT = "INDIRECT"


# Task reference schemas
class TaskBrief(BaseModel):
    id: str
    key: str
    title: str
    status: TaskStatus
    project_id: str

    class Config:
        from_attributes = True


class LinkedTask(BaseModel):
    """A task on the other end of a dependency edge."""
    task_id: str
    task_key: str
    title: str
    status: TaskStatus
    type: DependencyType


# Task Dependency schemas
class TaskDependencyBase(BaseModel):
    dependent_task_id: str = Field(..., min_length=1, description="The task that waits")
    blocking_task_id: str = Field(..., min_length=1, description="The task that must resolve first")
    type: DependencyType = DependencyType.BLOCKS


class TaskDependencyCreate(TaskDependencyBase):
    pass


class TaskDependency(TaskDependencyBase):
    id: str
    created_at: datetime

    class Config:
        from_attributes = True


class TaskDependencyDetail(TaskDependency):
    dependent_task: Optional[TaskBrief] = None
    blocking_task: Optional[TaskBrief] = None

    class Config:
        from_attributes = True


class TaskDependencies(BaseModel):
    task_id: str
    blocking: List[TaskDependencyDetail] = []    # Edges where this task is the blocker
    blocked_by: List[TaskDependencyDetail] = []  # Edges where this task waits


class DependencyFilters(BaseModel):
    task_id: Optional[str] = None
    project_id: Optional[str] = None
    type: Optional[DependencyType] = None
    status: DependencyStatusFilter = DependencyStatusFilter.ALL


class DependencyValidationResult(BaseModel):
    is_valid: bool
    errors: List[str] = []
    warnings: List[str] = []
    circular_path: Optional[List[str]] = None


class TaskBlockingInfo(BaseModel):
    task_id: str
    is_blocked: bool
    blocked_by: List[LinkedTask] = []
    blocking: List[LinkedTask] = []
    can_start: bool
    blocked_reason: Optional[str] = None


# Dependency graph schemas
class DependencyNode(BaseModel):
    task_id: str
    task_key: str
    title: str
    status: TaskStatus
    project_id: str
    level: int
    is_blocked: bool
    blocked_by: List[str] = []
    blocking: List[str] = []


class DependencyEdge(BaseModel):
    from_: str = Field(..., alias="from")
    to: str
    type: DependencyType
    weight: int

    class Config:
        populate_by_name = True


class DependencyGraph(BaseModel):
    project_id: str
    nodes: List[DependencyNode] = []
    edges: List[DependencyEdge] = []
    cycles: List[List[str]] = []


class ImpactedTask(BaseModel):
    task_id: str
    task_key: str
    title: str
    impact_type: ImpactType
    impact_level: int


class DependencyImpactAnalysis(BaseModel):
    task_id: str
    impacted_tasks: List[ImpactedTask] = []
    critical_path: List[str] = []
    total_impacted_tasks: int = 0
    max_impact_level: int = 0


# Hierarchy schemas
class SubtaskSummary(BaseModel):
    parent_task_id: str
    total_subtasks: int
    completed_subtasks: int
    in_progress_subtasks: int
    todo_subtasks: int
    completion_percentage: float
    estimated_hours: float
    logged_hours: float
    remaining_hours: float


class TaskTreeTask(BaseModel):
    id: str
    key: str
    title: str
    status: TaskStatus
    type: TaskType
    priority: Optional[TaskPriority] = None
    assignee_id: Optional[str] = None
    estimated_hours: Optional[float] = None
    completion_percentage: Optional[float] = None


class TaskTreeNode(BaseModel):
    task: TaskTreeTask
    children: List["TaskTreeNode"] = []
    depth: int
    has_children: bool
    is_expanded: bool = False


TaskTreeNode.model_rebuild()


class TaskPath(BaseModel):
    task_id: str
    path: List[str]  # Ancestor ids from the root down to task_id
    depth: int


class MoveTaskRequest(BaseModel):
    new_parent_id: Optional[str] = None
    position: Optional[int] = Field(None, ge=0, description="Position among new siblings (must be >= 0)")


class HierarchyValidationResult(BaseModel):
    is_valid: bool
    errors: List[str] = []
    warnings: List[str] = []
    max_depth_exceeded: bool = False
    circular_reference: bool = False


# Bulk operation schemas
class BulkDependencyItem(BaseModel):
    dependent_task_id: str
    blocking_task_id: str
    type: DependencyType = DependencyType.BLOCKS


class BulkDependencyOperation(BaseModel):
    operation: BulkOperationType
    dependencies: List[BulkDependencyItem] = []
    validate_circular: bool = False


class BulkSuccessItem(BaseModel):
    dependent_task_id: str
    blocking_task_id: str
    dependency_id: Optional[str] = None


class BulkFailureItem(BaseModel):
    dependent_task_id: str
    blocking_task_id: str
    error: str
    error_code: str  # NOT_FOUND, SELF_DEPENDENCY, CIRCULAR, DUPLICATE, etc.


class BulkDependencyResult(BaseModel):
    operation: BulkOperationType
    successful: List[BulkSuccessItem] = []
    failed: List[BulkFailureItem] = []
    warnings: List[str] = []
    circular_dependencies: List[List[str]] = []
    message: str = ""
