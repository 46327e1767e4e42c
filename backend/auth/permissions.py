"""
Project-level permission checking utilities.

This module provides functions for checking whether a user has permission to read
or modify dependencies of a project, based on the user's global role and project
membership. Failures raise the core error taxonomy (NotFoundError,
AuthorizationError), which main.py maps to HTTP responses.
"""

import logging
from typing import Iterable

from sqlalchemy.orm import Session

from errors import AuthorizationError, NotFoundError
from models import User, Project, ProjectMember, Task

logger = logging.getLogger(__name__)

# Role hierarchy for project permissions
ROLE_HIERARCHY = {"viewer": 0, "editor": 1, "owner": 2, "admin": 3}


def check_project_permission(
    user: User, project_id: str, required_role: str, db: Session
) -> bool:
    """
    Check if a user has the required role for a specific project.

    Permission sources (in order):
    1. Global admin role (bypasses all checks)
    2. Direct project membership

    Args:
        user: User object to check permissions for
        project_id: ID of the project to check access for
        required_role: Minimum role required ('viewer', 'editor', 'owner', 'admin')
        db: Database session

    Returns:
        True if user has permission, False otherwise
    """
    logger.debug(
        f"Checking project permission for user {user.id}, "
        f"project {project_id}, required_role: {required_role}"
    )

    # Admin users have access to all projects
    if getattr(user, "role", "editor") == "admin":
        logger.debug(f"User {user.id} is admin, granting access")
        return True

    required_level = ROLE_HIERARCHY.get(required_role, 0)

    membership = (
        db.query(ProjectMember)
        .filter(
            ProjectMember.project_id == project_id, ProjectMember.user_id == user.id
        )
        .first()
    )

    if membership is None:
        logger.info(f"User {user.id} has no membership in project {project_id}")
        return False

    has_permission = ROLE_HIERARCHY.get(membership.role, 0) >= required_level
    if has_permission:
        logger.debug(
            f"User {user.id} has role '{membership.role}' in project {project_id}, "
            f"permission granted for required role '{required_role}'"
        )
    else:
        logger.info(
            f"User {user.id} has role '{membership.role}' in project {project_id}, "
            f"but '{required_role}' is required"
        )
    return has_permission


def require_project_permission(
    user: User, project_id: str, required_role: str, db: Session
) -> None:
    """
    Require a user to have a specific role for a project, or raise.

    Raises:
        NotFoundError: project not found or user has no access at all
        AuthorizationError: user has access but an insufficient role
    """
    logger.debug(
        f"Requiring {required_role} permission for user {user.id} on project {project_id}"
    )

    project = db.query(Project).filter(Project.id == project_id).first()
    if project is None:
        logger.info(f"Project {project_id} not found")
        raise NotFoundError("Project not found")

    # Return 404 instead of 403 to avoid leaking project existence
    if not check_project_permission(user, project_id, "viewer", db):
        logger.info(f"User {user.id} has no access to project {project_id}, returning 404")
        raise NotFoundError("Project not found")

    if not check_project_permission(user, project_id, required_role, db):
        logger.info(f"User {user.id} has insufficient permissions for project {project_id}")
        raise AuthorizationError(f"Insufficient permissions. Required role: {required_role}")

    logger.debug(f"Permission check passed for user {user.id} on project {project_id}")


def require_task_permission(user: User, task_id: str, required_role: str, db: Session) -> Task:
    """Look up a task and require a role on its project. Returns the task."""
    task = db.query(Task).filter(Task.id == task_id).first()
    if task is None:
        logger.info(f"Task {task_id} not found")
        raise NotFoundError("Task not found")

    require_project_permission(user, task.project_id, required_role, db)
    return task


def require_tasks_permission(user: User, task_ids: Iterable[str], required_role: str, db: Session) -> None:
    """
    Require a role on every project touched by task_ids.

    Unknown task ids are skipped; the core reports them per item.
    """
    task_ids = list(set(task_ids))
    if not task_ids:
        return

    project_ids = {
        row.project_id
        for row in db.query(Task.project_id).filter(Task.id.in_(task_ids)).all()
    }
    logger.debug(f"Checking permissions for {len(project_ids)} projects")
    for project_id in project_ids:
        require_project_permission(user, project_id, required_role, db)
