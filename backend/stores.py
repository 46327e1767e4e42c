"""
SQLAlchemy-backed stores used by the dependency graph core.

The core never queries the ORM directly: it receives a TaskStore and a
DependencyStore bound to one database session. Store failures are rolled
back and surfaced as InternalError without retrying, except unique
constraint violations on edges, which surface as ConflictError.
"""

import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

import models
from errors import ConflictError, InternalError

logger = logging.getLogger(__name__)


def commit_or_raise(db: Session, action: str, conflict_message: Optional[str] = None) -> None:
    """
    Commit the session, rolling back on failure.

    Constraint violations raise ConflictError when conflict_message is given;
    every other store failure raises InternalError.
    """
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        if conflict_message is not None and isinstance(e, IntegrityError):
            logger.info(f"Constraint violated during {action}: {str(e)}")
            raise ConflictError(conflict_message) from e
        logger.error(f"Transaction failed during {action}: {str(e)}")
        raise InternalError(f"{action} failed: {str(e)}") from e


class TaskStore:
    """Read and update task records."""

    def __init__(self, db: Session):
        self.db = db

    def get_task_by_id(self, task_id: str) -> Optional[models.Task]:
        return self.db.query(models.Task).filter(models.Task.id == task_id).first()

    def get_task_status(self, task_id: str) -> Optional[models.TaskStatus]:
        row = self.db.query(models.Task.status).filter(models.Task.id == task_id).first()
        return row.status if row else None

    def get_tasks_by_ids(self, task_ids: Iterable[str]) -> Dict[str, models.Task]:
        task_ids = list(set(task_ids))
        if not task_ids:
            return {}
        tasks = self.db.query(models.Task).filter(models.Task.id.in_(task_ids)).all()
        return {task.id: task for task in tasks}

    def list_tasks_by_project(self, project_id: str) -> List[models.Task]:
        return self.db.query(models.Task)\
            .filter(models.Task.project_id == project_id)\
            .order_by(models.Task.created_at, models.Task.key)\
            .all()

    def list_children(self, task_id: str) -> List[models.Task]:
        return self.db.query(models.Task)\
            .filter(models.Task.parent_task_id == task_id)\
            .order_by(models.Task.position, models.Task.created_at)\
            .all()

    def list_children_for(self, task_ids: Iterable[str]) -> Dict[str, List[models.Task]]:
        """Fetch the direct children of several tasks in one query."""
        task_ids = list(set(task_ids))
        children: Dict[str, List[models.Task]] = {task_id: [] for task_id in task_ids}
        if not task_ids:
            return children
        rows = self.db.query(models.Task)\
            .filter(models.Task.parent_task_id.in_(task_ids))\
            .order_by(models.Task.position, models.Task.created_at)\
            .all()
        for row in rows:
            children[row.parent_task_id].append(row)
        return children

    def update_task_parent(self, task_id: str, parent_id: Optional[str], position: Optional[int] = None) -> None:
        """
        Reparent a task and renumber its new siblings.

        Args:
            task_id: Task to move
            parent_id: New parent, or None for root level
            position: Index among the new siblings; appended last when omitted
        """
        task = self.get_task_by_id(task_id)
        if task is None:
            return

        if parent_id is None:
            siblings = self.db.query(models.Task)\
                .filter(
                    models.Task.project_id == task.project_id,
                    models.Task.parent_task_id.is_(None),
                    models.Task.id != task_id
                )\
                .order_by(models.Task.position, models.Task.created_at)\
                .all()
        else:
            siblings = [s for s in self.list_children(parent_id) if s.id != task_id]

        if position is None or position > len(siblings):
            position = len(siblings)
        siblings.insert(position, task)

        task.parent_task_id = parent_id
        for index, sibling in enumerate(siblings):
            sibling.position = index

        commit_or_raise(self.db, "update task parent")
        logger.debug(f"Task {task_id} now under parent {parent_id} at position {position}")

    def get_project(self, project_id: str) -> Optional[models.Project]:
        return self.db.query(models.Project).filter(models.Project.id == project_id).first()


class DependencyStore:
    """Persist TaskDependency edges."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, dependency_id: str) -> Optional[models.TaskDependency]:
        return self.db.query(models.TaskDependency)\
            .filter(models.TaskDependency.id == dependency_id)\
            .first()

    def find(self, dependent_task_id: str, blocking_task_id: str,
             dep_type: models.DependencyType) -> Optional[models.TaskDependency]:
        return self.db.query(models.TaskDependency)\
            .filter(
                models.TaskDependency.dependent_task_id == dependent_task_id,
                models.TaskDependency.blocking_task_id == blocking_task_id,
                models.TaskDependency.type == dep_type
            )\
            .first()

    def find_between(self, dependent_task_id: str, blocking_task_id: str) -> List[models.TaskDependency]:
        return self.db.query(models.TaskDependency)\
            .filter(
                models.TaskDependency.dependent_task_id == dependent_task_id,
                models.TaskDependency.blocking_task_id == blocking_task_id
            )\
            .order_by(models.TaskDependency.created_at)\
            .all()

    def list_for_dependent(self, task_id: str) -> List[models.TaskDependency]:
        """Edges where task_id waits on another task."""
        return self.db.query(models.TaskDependency)\
            .filter(models.TaskDependency.dependent_task_id == task_id)\
            .order_by(models.TaskDependency.created_at)\
            .all()

    def list_for_blocking(self, task_id: str) -> List[models.TaskDependency]:
        """Edges where task_id blocks another task."""
        return self.db.query(models.TaskDependency)\
            .filter(models.TaskDependency.blocking_task_id == task_id)\
            .order_by(models.TaskDependency.created_at)\
            .all()

    def list_blocking_for_dependents(self, task_ids: Iterable[str]) -> List[models.TaskDependency]:
        """Blocking-semantic edges whose dependent is one of task_ids."""
        task_ids = list(set(task_ids))
        if not task_ids:
            return []
        return self.db.query(models.TaskDependency)\
            .filter(
                models.TaskDependency.dependent_task_id.in_(task_ids),
                models.TaskDependency.type.in_(list(models.BLOCKING_DEPENDENCY_TYPES))
            )\
            .all()

    def list_blocking_for_blockers(self, task_ids: Iterable[str]) -> List[models.TaskDependency]:
        """Blocking-semantic edges whose blocker is one of task_ids."""
        task_ids = list(set(task_ids))
        if not task_ids:
            return []
        return self.db.query(models.TaskDependency)\
            .filter(
                models.TaskDependency.blocking_task_id.in_(task_ids),
                models.TaskDependency.type.in_(list(models.BLOCKING_DEPENDENCY_TYPES))
            )\
            .all()

    def list_touching(self, task_ids: Iterable[str]) -> List[models.TaskDependency]:
        """All edges with at least one endpoint in task_ids."""
        task_ids = list(set(task_ids))
        if not task_ids:
            return []
        return self.db.query(models.TaskDependency)\
            .filter(
                or_(
                    models.TaskDependency.dependent_task_id.in_(task_ids),
                    models.TaskDependency.blocking_task_id.in_(task_ids)
                )
            )\
            .order_by(models.TaskDependency.created_at)\
            .all()

    def list_all_blocking(self) -> List[models.TaskDependency]:
        return self.db.query(models.TaskDependency)\
            .filter(models.TaskDependency.type.in_(list(models.BLOCKING_DEPENDENCY_TYPES)))\
            .all()

    def query(self):
        return self.db.query(models.TaskDependency)

    def add(self, dependent_task_id: str, blocking_task_id: str,
            dep_type: models.DependencyType, commit: bool = True) -> models.TaskDependency:
        dependency = models.TaskDependency(
            dependent_task_id=dependent_task_id,
            blocking_task_id=blocking_task_id,
            type=dep_type
        )
        self.db.add(dependency)
        if commit:
            commit_or_raise(self.db, "create dependency", "Dependency already exists")
            self.db.refresh(dependency)
        return dependency

    def delete(self, dependency: models.TaskDependency, commit: bool = True) -> None:
        self.db.delete(dependency)
        if commit:
            commit_or_raise(self.db, "delete dependency")

    def commit(self, action: str, conflict_message: Optional[str] = None) -> None:
        commit_or_raise(self.db, action, conflict_message)

    def refresh(self, dependency: models.TaskDependency) -> None:
        self.db.refresh(dependency)
