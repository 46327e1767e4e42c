from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime, Enum, Float, Boolean, UniqueConstraint
from sqlalchemy.orm import relationship
import enum
import uuid

from database import Base
from time_utils import utc_now


def generate_id() -> str:
    return str(uuid.uuid4())


class TaskStatus(str, enum.Enum):
    backlog = "backlog"
    todo = "todo"
    in_progress = "in_progress"
    blocked = "blocked"
    review = "review"
    done = "done"
    not_needed = "not_needed"


# A task in a terminal status no longer blocks its dependents
TERMINAL_STATUSES = frozenset({TaskStatus.done, TaskStatus.not_needed})
ACTIVE_STATUSES = frozenset({TaskStatus.in_progress, TaskStatus.review})
PENDING_STATUSES = frozenset({TaskStatus.backlog, TaskStatus.todo, TaskStatus.blocked})


class TaskType(str, enum.Enum):
    task = "task"
    bug = "bug"
    story = "story"
    epic = "epic"


class TaskPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"


class DependencyType(str, enum.Enum):
    BLOCKS = "BLOCKS"
    IS_BLOCKED_BY = "IS_BLOCKED_BY"
    RELATES_TO = "RELATES_TO"


# Edge types that carry blocking semantics and must stay acyclic.
# RELATES_TO is informational only.
BLOCKING_DEPENDENCY_TYPES = frozenset({DependencyType.BLOCKS, DependencyType.IS_BLOCKED_BY})


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    # Global role: admin bypasses project membership checks
    role = Column(String(20), nullable=False, default="editor")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    # Relationships
    memberships = relationship("ProjectMember", back_populates="user", cascade="all, delete-orphan")
    assigned_tasks = relationship("Task", back_populates="assignee")


class Project(Base):
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=generate_id)
    key = Column(String(20), unique=True, nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    # Relationships
    tasks = relationship("Task", back_populates="project", cascade="all, delete-orphan")
    members = relationship("ProjectMember", back_populates="project", cascade="all, delete-orphan")


class ProjectMember(Base):
    __tablename__ = "project_members"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_project_member"),)

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    # Project role: viewer < editor < owner
    role = Column(String(20), nullable=False, default="viewer")
    created_at = Column(DateTime(timezone=True), default=utc_now)

    project = relationship("Project", back_populates="members")
    user = relationship("User", back_populates="memberships")


class Task(Base):
    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True, default=generate_id)
    key = Column(String(50), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    status = Column(Enum(TaskStatus, name="task_status"), nullable=False, default=TaskStatus.backlog)
    task_type = Column(Enum(TaskType, name="task_type"), nullable=False, default=TaskType.task)
    priority = Column(Enum(TaskPriority, name="task_priority"), nullable=False, default=TaskPriority.medium)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_task_id = Column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), index=True)
    # Ordinal among siblings, best effort only
    position = Column(Integer, nullable=False, default=0)
    assignee_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    # Time tracking fields
    estimated_hours = Column(Float, nullable=True)
    logged_hours = Column(Float, nullable=True)

    # Relationships
    project = relationship("Project", back_populates="tasks")
    assignee = relationship("User", back_populates="assigned_tasks")

    # Subtask relationships (self-referential)
    parent_task = relationship("Task", remote_side=[id], back_populates="subtasks", foreign_keys=[parent_task_id])
    subtasks = relationship("Task", back_populates="parent_task", cascade="all, delete-orphan", foreign_keys=[parent_task_id])

    # Dependency relationships (many-to-many through task_dependencies)
    blocking_dependencies = relationship(
        "TaskDependency",
        foreign_keys="TaskDependency.blocking_task_id",
        back_populates="blocking_task",
        cascade="all, delete-orphan"
    )
    dependent_dependencies = relationship(
        "TaskDependency",
        foreign_keys="TaskDependency.dependent_task_id",
        back_populates="dependent_task",
        cascade="all, delete-orphan"
    )


class TaskDependency(Base):
    __tablename__ = "task_dependencies"
    __table_args__ = (
        UniqueConstraint("dependent_task_id", "blocking_task_id", "type", name="uq_task_dependency"),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    # The task that waits
    dependent_task_id = Column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    # The task that must resolve first
    blocking_task_id = Column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(Enum(DependencyType, name="dependency_type"), nullable=False, default=DependencyType.BLOCKS)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    # Relationships
    dependent_task = relationship("Task", foreign_keys=[dependent_task_id], back_populates="dependent_dependencies")
    blocking_task = relationship("Task", foreign_keys=[blocking_task_id], back_populates="blocking_dependencies")

    @property
    def is_blocking(self) -> bool:
        return self.type in BLOCKING_DEPENDENCY_TYPES
