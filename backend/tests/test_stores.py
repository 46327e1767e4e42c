"""
Tests for the SQLAlchemy-backed stores the core runs on.
"""

import pytest
from sqlalchemy.orm import Session

import models
from errors import ConflictError, InternalError
from stores import DependencyStore, TaskStore, commit_or_raise


def test_get_task_status(test_db: Session, make_task):
    task = make_task("Task", models.TaskStatus.review)
    store = TaskStore(test_db)

    assert store.get_task_status(task.id) == models.TaskStatus.review
    assert store.get_task_status("missing") is None


def test_get_tasks_by_ids_skips_unknown(test_db: Session, make_task):
    a = make_task("A")
    store = TaskStore(test_db)

    assert set(store.get_tasks_by_ids([a.id, "missing", a.id])) == {a.id}
    assert store.get_tasks_by_ids([]) == {}


def test_update_task_parent_appends_by_default(test_db: Session, make_task):
    parent = make_task("Parent")
    existing = make_task("Existing", parent_task_id=parent.id)
    mover = make_task("Mover")
    store = TaskStore(test_db)

    store.update_task_parent(mover.id, parent.id)

    children = store.list_children(parent.id)
    assert [c.id for c in children] == [existing.id, mover.id]
    assert [c.position for c in children] == [0, 1]


def test_list_children_for(test_db: Session, make_task):
    a = make_task("A")
    b = make_task("B")
    a1 = make_task("A1", parent_task_id=a.id)
    store = TaskStore(test_db)

    children = store.list_children_for([a.id, b.id])

    assert [c.id for c in children[a.id]] == [a1.id]
    assert children[b.id] == []


def test_duplicate_edge_past_the_engine_is_a_conflict(test_db: Session, make_task):
    a = make_task("A")
    b = make_task("B")
    store = DependencyStore(test_db)
    store.add(b.id, a.id, models.DependencyType.BLOCKS)

    # Bypass the engine's duplicate check to hit the unique constraint
    with pytest.raises(ConflictError):
        store.add(b.id, a.id, models.DependencyType.BLOCKS)

    # Session is usable again after the rollback
    assert len(store.find_between(b.id, a.id)) == 1


def test_store_failure_rolls_back_as_internal_error(test_db: Session, make_task):
    a = make_task("A")
    b = make_task("B")
    DependencyStore(test_db).add(b.id, a.id, models.DependencyType.BLOCKS)

    test_db.add(models.TaskDependency(dependent_task_id=b.id, blocking_task_id=a.id))
    with pytest.raises(InternalError):
        commit_or_raise(test_db, "create dependency")

    assert test_db.query(models.TaskDependency).count() == 1
