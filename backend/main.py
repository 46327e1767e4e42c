from fastapi import FastAPI, Depends, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import Dict, List, Optional
import logging
import os

import config
from database import get_db, engine, Base
import models
import schemas
from errors import NotFoundError, TrackerError
from auth.dependencies import get_current_user
from auth.permissions import (
    check_project_permission,
    require_project_permission,
    require_task_permission,
    require_tasks_permission,
)
from dependency_graph import DependencyWriteLock, TaskDependencyService

# Configure logging
logging.basicConfig(level=getattr(logging, config.LOG_LEVEL))
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Task Dependency API",
    description="Task dependencies, subtask hierarchy and derived dependency views",
    version="1.0.0"
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# One lock for the whole dependency set: edges may cross projects
dependency_lock = DependencyWriteLock()
# Moves check ancestry before writing the new parent
hierarchy_lock = DependencyWriteLock("hierarchy")

ERROR_STATUS_CODES = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "validation": status.HTTP_400_BAD_REQUEST,
    "conflict": status.HTTP_409_CONFLICT,
    "authorization": status.HTTP_403_FORBIDDEN,
    "internal": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@app.on_event("startup")
async def create_tables():
    """Create tables on startup (development only)."""
    if config.AUTO_CREATE_TABLES:
        logger.info("Creating database tables")
        Base.metadata.create_all(bind=engine)


@app.exception_handler(TrackerError)
async def tracker_error_handler(request: Request, exc: TrackerError):
    status_code = ERROR_STATUS_CODES.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.kind}): {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def get_dependency_service(db: Session = Depends(get_db)) -> TaskDependencyService:
    return TaskDependencyService(db, dependency_lock, hierarchy_lock)


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy"}


# ============== Task Dependencies ==============

@app.post("/api/task-dependencies", response_model=schemas.TaskDependency, status_code=status.HTTP_201_CREATED)
def create_dependency(
    dependency: schemas.TaskDependencyCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: TaskDependencyService = Depends(get_dependency_service)
):
    """Create a dependency between two tasks (requires editor access to both projects)."""
    logger.info(
        f"User {current_user.id} adding dependency: {dependency.blocking_task_id} blocks "
        f"{dependency.dependent_task_id} ({dependency.type.value})"
    )
    require_tasks_permission(
        current_user, [dependency.dependent_task_id, dependency.blocking_task_id], "editor", db
    )
    return service.create_dependency(dependency.dependent_task_id, dependency.blocking_task_id, dependency.type)


@app.post("/api/task-dependencies/validate", response_model=schemas.DependencyValidationResult)
def validate_dependency(
    dependency: schemas.TaskDependencyCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: TaskDependencyService = Depends(get_dependency_service)
):
    """Dry-run the checks of dependency creation (requires viewer access)."""
    require_tasks_permission(
        current_user, [dependency.dependent_task_id, dependency.blocking_task_id], "viewer", db
    )
    return service.validate_dependency(dependency.dependent_task_id, dependency.blocking_task_id, dependency.type)


@app.get("/api/task-dependencies", response_model=List[schemas.TaskDependencyDetail])
def list_dependencies(
    task_id: Optional[str] = None,
    project_id: Optional[str] = None,
    type: Optional[models.DependencyType] = None,
    dependency_status: schemas.DependencyStatusFilter = Query(schemas.DependencyStatusFilter.ALL, alias="status"),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: TaskDependencyService = Depends(get_dependency_service)
):
    """List dependencies, optionally filtered (results limited to accessible projects)."""
    logger.debug(f"User {current_user.id} listing dependencies: task={task_id}, project={project_id}, type={type}, status={dependency_status}")

    if project_id:
        require_project_permission(current_user, project_id, "viewer", db)
    if task_id:
        require_task_permission(current_user, task_id, "viewer", db)

    filters = schemas.DependencyFilters(task_id=task_id, project_id=project_id, type=type, status=dependency_status)
    dependencies = service.get_dependencies(filters)

    if current_user.role == "admin":
        return dependencies

    # Drop edges whose dependent task lives in a project the user cannot see
    access: Dict[str, bool] = {}
    visible = []
    for dep in dependencies:
        pid = dep.dependent_task.project_id
        if pid not in access:
            access[pid] = check_project_permission(current_user, pid, "viewer", db)
        if access[pid]:
            visible.append(dep)
    return visible


@app.delete("/api/task-dependencies/{dependency_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_dependency(
    dependency_id: str,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: TaskDependencyService = Depends(get_dependency_service)
):
    """Delete a dependency (requires editor access to the dependent task's project)."""
    logger.info(f"User {current_user.id} removing dependency {dependency_id}")

    dependency = service.dependency_store.get(dependency_id)
    if dependency is not None:
        require_task_permission(current_user, dependency.dependent_task_id, "editor", db)

    if not service.delete_dependency(dependency_id):
        raise NotFoundError("Dependency not found")
    return None


@app.post("/api/task-dependencies/bulk", response_model=schemas.BulkDependencyResult)
def bulk_dependency_operation(
    operation: schemas.BulkDependencyOperation,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: TaskDependencyService = Depends(get_dependency_service)
):
    """
    Apply a batch of dependency operations (requires editor access to every affected project).

    Each entry succeeds or fails on its own; see BulkDependencyResult.
    """
    logger.info(f"User {current_user.id} bulk {operation.operation.value} of {len(operation.dependencies)} dependencies")

    task_ids = set()
    for entry in operation.dependencies[:config.MAX_BULK_OPERATIONS]:
        task_ids.add(entry.dependent_task_id)
        task_ids.add(entry.blocking_task_id)
    require_tasks_permission(current_user, task_ids, "editor", db)

    return service.bulk_dependency_operation(operation)


# ============== Per-task views ==============

@app.get("/api/task-dependencies/tasks/{task_id}", response_model=schemas.TaskDependencies)
def get_task_dependencies(
    task_id: str,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: TaskDependencyService = Depends(get_dependency_service)
):
    """Get all dependencies touching a task (requires viewer access)."""
    require_task_permission(current_user, task_id, "viewer", db)
    return service.get_task_dependencies(task_id)


@app.get("/api/task-dependencies/tasks/{task_id}/blocking-info", response_model=schemas.TaskBlockingInfo)
def get_task_blocking_info(
    task_id: str,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: TaskDependencyService = Depends(get_dependency_service)
):
    """Get whether a task is blocked and by what (requires viewer access)."""
    require_task_permission(current_user, task_id, "viewer", db)
    return service.get_task_blocking_info(task_id)


@app.get("/api/task-dependencies/tasks/{task_id}/subtask-summary", response_model=schemas.SubtaskSummary)
def get_subtask_summary(
    task_id: str,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: TaskDependencyService = Depends(get_dependency_service)
):
    """Get completion and hour roll-ups over direct subtasks (requires viewer access)."""
    require_task_permission(current_user, task_id, "viewer", db)
    return service.get_subtask_summary(task_id)


@app.get("/api/task-dependencies/tasks/{task_id}/tree", response_model=schemas.TaskTreeNode)
def get_task_tree(
    task_id: str,
    max_depth: int = Query(config.DEFAULT_TREE_DEPTH, ge=1, le=config.MAX_TREE_DEPTH),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: TaskDependencyService = Depends(get_dependency_service)
):
    """Get the subtask tree below a task (requires viewer access)."""
    require_task_permission(current_user, task_id, "viewer", db)
    return service.get_task_tree(task_id, max_depth)


@app.get("/api/task-dependencies/tasks/{task_id}/path", response_model=schemas.TaskPath)
def get_task_path(
    task_id: str,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: TaskDependencyService = Depends(get_dependency_service)
):
    """Get the ancestor path of a task (requires viewer access)."""
    require_task_permission(current_user, task_id, "viewer", db)
    return service.get_task_path(task_id)


@app.get("/api/task-dependencies/tasks/{task_id}/impact", response_model=schemas.DependencyImpactAnalysis)
def get_dependency_impact(
    task_id: str,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: TaskDependencyService = Depends(get_dependency_service)
):
    """Get every task transitively waiting on this one (requires viewer access)."""
    require_task_permission(current_user, task_id, "viewer", db)
    return service.get_dependency_impact_analysis(task_id)


@app.put("/api/task-dependencies/tasks/{task_id}/move", response_model=schemas.TaskBrief)
def move_task(
    task_id: str,
    move: schemas.MoveTaskRequest,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: TaskDependencyService = Depends(get_dependency_service)
):
    """Reparent a task (requires editor access to the task's and the new parent's projects)."""
    logger.info(f"User {current_user.id} moving task {task_id} under {move.new_parent_id}")

    require_task_permission(current_user, task_id, "editor", db)
    if move.new_parent_id is not None:
        require_task_permission(current_user, move.new_parent_id, "editor", db)

    return service.move_task(task_id, move.new_parent_id, move.position)


# ============== Project views ==============

@app.get("/api/task-dependencies/projects/{project_id}/dependency-graph", response_model=schemas.DependencyGraph)
def get_dependency_graph(
    project_id: str,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: TaskDependencyService = Depends(get_dependency_service)
):
    """Get the dependency graph of a project (requires viewer access)."""
    require_project_permission(current_user, project_id, "viewer", db)
    return service.generate_dependency_graph(project_id)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=os.environ.get("HOST", "0.0.0.0"), port=int(os.environ.get("PORT", "8000")))
