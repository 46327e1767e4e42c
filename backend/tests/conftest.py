"""
Test configuration and fixtures for task dependency tests.

Provides:
- Test database with SQLite in-memory for speed
- FastAPI test client with database dependency override
- Authentication helpers (JWT token generation)
- Common fixtures for users, projects and tasks
- A TaskDependencyService bound to the test session
"""

import os
import sys
import logging
from datetime import timedelta
from typing import Callable, Dict, Generator

# Keep the app's own engine away from disk and skip startup table creation
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("AUTO_CREATE_TABLES", "false")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

# Add backend directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
from main import app
import models
from auth.security import create_access_token
from dependency_graph import DependencyWriteLock, TaskDependencyService

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

# SQLite in-memory database for fast testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def test_db() -> Generator[Session, None, None]:
    """
    Create a fresh in-memory SQLite database for each test.

    This ensures test isolation and fast execution.
    """
    logger.debug("Creating test database")

    engine = create_engine(
        SQLALCHEMY_TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        logger.debug("Test database cleaned up")


@pytest.fixture(scope="function")
def file_sessions(tmp_path) -> Generator[sessionmaker, None, None]:
    """
    Session factory over a file-backed SQLite database.

    Unlike the in-memory StaticPool database, each session here gets its own
    connection, so threads can run separate transactions against shared state.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)

    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def client(test_db: Session) -> TestClient:
    """
    Create FastAPI test client with database dependency override.
    """
    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def service(test_db: Session) -> TaskDependencyService:
    """Core service with its own write lock, bound to the test session."""
    return TaskDependencyService(test_db, DependencyWriteLock("test"))


def _make_user(db: Session, name: str, email: str, role: str) -> models.User:
    user = models.User(name=name, email=email, role=role, is_active=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Created {role} user with ID: {user.id}")
    return user


@pytest.fixture(scope="function")
def admin_user(test_db: Session) -> models.User:
    return _make_user(test_db, "Admin User", "admin@test.com", "admin")


@pytest.fixture(scope="function")
def regular_user(test_db: Session) -> models.User:
    return _make_user(test_db, "Regular User", "user@test.com", "editor")


@pytest.fixture(scope="function")
def another_user(test_db: Session) -> models.User:
    return _make_user(test_db, "Another User", "another@test.com", "editor")


def create_auth_token(user: models.User, expires_delta: timedelta = None) -> str:
    """
    Helper to create JWT access token for a user.

    Args:
        user: User to create token for
        expires_delta: Optional expiration time override

    Returns:
        JWT access token string
    """
    logger.debug(f"Creating auth token for user {user.id}")
    token_data = {
        "sub": str(user.id),
        "role": user.role,
        "email": user.email
    }
    return create_access_token(token_data, expires_delta)


@pytest.fixture(scope="function")
def auth_headers(admin_user: models.User) -> Dict[str, str]:
    """
    Create authorization headers with admin token.
    """
    return {"Authorization": f"Bearer {create_auth_token(admin_user)}"}


@pytest.fixture(scope="function")
def user_auth_headers(regular_user: models.User) -> Dict[str, str]:
    """
    Create authorization headers for regular user.
    """
    return {"Authorization": f"Bearer {create_auth_token(regular_user)}"}


@pytest.fixture(scope="function")
def another_user_auth_headers(another_user: models.User) -> Dict[str, str]:
    """
    Create authorization headers for another user.
    """
    return {"Authorization": f"Bearer {create_auth_token(another_user)}"}


@pytest.fixture(scope="function")
def make_project(test_db: Session, admin_user: models.User) -> Callable[..., models.Project]:
    """
    Factory for projects. The admin user is added as owner of each one.
    """
    def _make_project(key: str, name: str = None) -> models.Project:
        project = models.Project(key=key, name=name or f"Project {key}", description=f"Project {key} for testing")
        test_db.add(project)
        test_db.commit()
        test_db.refresh(project)

        test_db.add(models.ProjectMember(project_id=project.id, user_id=admin_user.id, role="owner"))
        test_db.commit()
        logger.info(f"Created project {key} with ID: {project.id}")
        return project

    return _make_project


@pytest.fixture(scope="function")
def project(make_project) -> models.Project:
    return make_project("TEST")


@pytest.fixture(scope="function")
def make_task(test_db: Session, project: models.Project) -> Callable[..., models.Task]:
    """
    Factory for tasks. Defaults to the `project` fixture; keys are numbered per project.
    """
    def _make_task(title: str, status: models.TaskStatus = models.TaskStatus.todo,
                   project_id: str = None, **kwargs) -> models.Task:
        project_id = project_id or project.id
        owner = test_db.query(models.Project).filter(models.Project.id == project_id).first()
        number = test_db.query(models.Task).filter(models.Task.project_id == project_id).count() + 1

        task = models.Task(
            key=f"{owner.key}-{number}",
            title=title,
            status=status,
            project_id=project_id,
            **kwargs
        )
        test_db.add(task)
        test_db.commit()
        test_db.refresh(task)
        return task

    return _make_task
