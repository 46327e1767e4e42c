"""
Tests for the dependency graph engine.

Covers:
- Creation checks (self-dependency, missing tasks, duplicates, cycles)
- Which dependency types take part in cycle checks
- Idempotent deletion
- Blocking info with terminal status transitions (done, not_needed)
- Filtered listing and bulk is_blocked calculation
- Acyclicity under random insertions
"""

import logging
import random

import pytest
from sqlalchemy.orm import Session

import models
import schemas
from errors import ConflictError, NotFoundError, ValidationError, ValidationTag
from dependency_graph.traversal import detect_cycles

logger = logging.getLogger(__name__)

BLOCKS = models.DependencyType.BLOCKS
IS_BLOCKED_BY = models.DependencyType.IS_BLOCKED_BY
RELATES_TO = models.DependencyType.RELATES_TO


# ============== Creation ==============


def test_create_dependency(service, make_task):
    blocker = make_task("Blocker")
    dependent = make_task("Dependent")

    dependency = service.create_dependency(dependent.id, blocker.id)

    assert dependency.id
    assert dependency.created_at is not None
    assert dependency.dependent_task_id == dependent.id
    assert dependency.blocking_task_id == blocker.id
    assert dependency.type == BLOCKS
    logger.info("✓ Dependency created with id and timestamp")


def test_self_dependency_rejected(service, make_task):
    task = make_task("Alone")

    with pytest.raises(ValidationError) as exc_info:
        service.create_dependency(task.id, task.id)

    assert exc_info.value.tag == ValidationTag.SELF_DEPENDENCY
    assert service.dependency_store.list_touching([task.id]) == []
    logger.info("✓ Self-dependency rejected")


def test_self_dependency_rejected_for_unknown_task(service):
    with pytest.raises(ValidationError) as exc_info:
        service.create_dependency("missing", "missing", RELATES_TO)

    assert exc_info.value.tag == ValidationTag.SELF_DEPENDENCY


def test_missing_tasks_not_found(service, make_task):
    task = make_task("Real")

    with pytest.raises(NotFoundError):
        service.create_dependency("missing", task.id)
    with pytest.raises(NotFoundError):
        service.create_dependency(task.id, "missing")
    logger.info("✓ Unknown tasks raise NotFoundError")


def test_duplicate_dependency_conflicts(service, make_task):
    blocker = make_task("Blocker")
    dependent = make_task("Dependent")
    service.create_dependency(dependent.id, blocker.id)

    with pytest.raises(ConflictError) as exc_info:
        service.create_dependency(dependent.id, blocker.id)

    assert exc_info.value.message == "Dependency already exists"
    assert exc_info.value.tag == ValidationTag.ALREADY_EXISTS
    assert len(service.dependency_store.find_between(dependent.id, blocker.id)) == 1
    logger.info("✓ Duplicate dependency raises ConflictError")


def test_same_pair_with_different_type_allowed(service, make_task):
    blocker = make_task("Blocker")
    dependent = make_task("Dependent")

    service.create_dependency(dependent.id, blocker.id, BLOCKS)
    service.create_dependency(dependent.id, blocker.id, RELATES_TO)

    assert len(service.dependency_store.find_between(dependent.id, blocker.id)) == 2


# ============== Cycle prevention ==============


def test_four_task_chain_rejects_closing_edge(service, make_task):
    """T1 blocks T2, T2 blocks T3, T3 blocks T4; T4 blocking T1 would close the loop."""
    t1, t2, t3, t4 = (make_task(f"T{i}") for i in range(1, 5))
    service.create_dependency(t2.id, t1.id)
    service.create_dependency(t3.id, t2.id)
    service.create_dependency(t4.id, t3.id)

    with pytest.raises(ValidationError) as exc_info:
        service.create_dependency(t1.id, t4.id)

    error = exc_info.value
    assert error.tag == ValidationTag.CIRCULAR
    assert error.path == [t1.id, t4.id, t3.id, t2.id, t1.id]
    assert service.dependency_store.find_between(t1.id, t4.id) == []
    logger.info("✓ Closing edge of a four-task chain rejected with cycle path")


def test_direct_back_edge_rejected(service, make_task):
    a = make_task("A")
    b = make_task("B")
    service.create_dependency(b.id, a.id)

    with pytest.raises(ValidationError) as exc_info:
        service.create_dependency(a.id, b.id)

    assert exc_info.value.path == [a.id, b.id, a.id]


def test_is_blocked_by_participates_in_cycle_check(service, make_task):
    a = make_task("A")
    b = make_task("B")
    service.create_dependency(b.id, a.id, IS_BLOCKED_BY)

    with pytest.raises(ValidationError) as exc_info:
        service.create_dependency(a.id, b.id, BLOCKS)

    assert exc_info.value.tag == ValidationTag.CIRCULAR


def test_relates_to_never_cycle_checked(service, make_task):
    a = make_task("A")
    b = make_task("B")
    service.create_dependency(b.id, a.id, BLOCKS)

    # Informational back edge is allowed
    service.create_dependency(a.id, b.id, RELATES_TO)

    # And an informational edge never closes a blocking cycle later
    c = make_task("C")
    service.create_dependency(c.id, b.id, RELATES_TO)
    service.create_dependency(b.id, c.id, BLOCKS)
    logger.info("✓ RELATES_TO edges ignored by cycle checks")


def test_cross_project_cycle_rejected(service, make_task, make_project):
    other = make_project("OTHER")
    a = make_task("A")
    b = make_task("B", project_id=other.id)
    service.create_dependency(b.id, a.id)

    with pytest.raises(ValidationError) as exc_info:
        service.create_dependency(a.id, b.id)

    assert exc_info.value.tag == ValidationTag.CIRCULAR


def test_validate_dependency_reports_instead_of_raising(service, make_task):
    a = make_task("A")
    b = make_task("B")
    service.create_dependency(b.id, a.id)

    result = service.validate_dependency(a.id, b.id)
    assert result.is_valid is False
    assert result.circular_path == [a.id, b.id, a.id]

    result = service.validate_dependency(b.id, a.id)
    assert result.is_valid is False
    assert result.errors == ["Dependency already exists"]

    result = service.validate_dependency(a.id, b.id, RELATES_TO)
    assert result.is_valid is True
    assert result.warnings


def test_random_insertions_stay_acyclic(service, make_task):
    """Whatever order edges arrive in, the blocking graph never contains a cycle."""
    rng = random.Random(1337)
    tasks = [make_task(f"R{i}") for i in range(8)]
    ids = [t.id for t in tasks]
    accepted = 0

    for _ in range(120):
        dependent, blocking = rng.sample(ids, 2)
        dep_type = rng.choice([BLOCKS, IS_BLOCKED_BY, RELATES_TO])
        try:
            service.create_dependency(dependent, blocking, dep_type)
            accepted += 1
        except (ValidationError, ConflictError):
            pass

    edges = service.dependency_store.list_all_blocking()
    waits_on = {task_id: [] for task_id in ids}
    for dep in edges:
        waits_on[dep.dependent_task_id].append(dep.blocking_task_id)

    assert accepted > 0
    assert detect_cycles(ids, lambda task_id: waits_on[task_id]) == []
    logger.info(f"✓ {accepted} random insertions accepted, graph still acyclic")


# ============== Deletion ==============


def test_delete_dependency_is_idempotent(service, make_task):
    blocker = make_task("Blocker")
    dependent = make_task("Dependent")
    dependency = service.create_dependency(dependent.id, blocker.id)
    dependency_id = dependency.id

    assert service.delete_dependency(dependency_id) is True
    assert service.delete_dependency(dependency_id) is False
    assert service.delete_dependency("never-existed") is False
    logger.info("✓ Delete returns True once, then False")


def test_deleted_edge_no_longer_blocks_cycle(service, make_task):
    a = make_task("A")
    b = make_task("B")
    dependency = service.create_dependency(b.id, a.id)
    service.delete_dependency(dependency.id)

    reverse = service.create_dependency(a.id, b.id)
    assert reverse.id


# ============== Blocking info ==============


def test_blocking_info_follows_blocker_status(service, make_task, test_db: Session):
    blocker = make_task("Write schema")
    dependent = make_task("Build API")
    service.create_dependency(dependent.id, blocker.id)

    info = service.get_task_blocking_info(dependent.id)
    assert info.is_blocked is True
    assert info.can_start is False
    assert [t.task_id for t in info.blocked_by] == [blocker.id]
    assert info.blocked_reason == "Blocked by: Write schema"

    blocker.status = models.TaskStatus.done
    test_db.commit()

    info = service.get_task_blocking_info(dependent.id)
    assert info.is_blocked is False
    assert info.can_start is True
    assert info.blocked_by == []
    assert info.blocked_reason is None
    logger.info("✓ Blocker transition to done unblocks dependent")


def test_not_needed_blocker_does_not_block(service, make_task):
    blocker = make_task("Blocker", models.TaskStatus.not_needed)
    dependent = make_task("Dependent")
    service.create_dependency(dependent.id, blocker.id)

    assert service.get_task_blocking_info(dependent.id).is_blocked is False


def test_relates_to_does_not_block(service, make_task):
    other = make_task("Other", models.TaskStatus.in_progress)
    task = make_task("Task")
    service.create_dependency(task.id, other.id, RELATES_TO)

    info = service.get_task_blocking_info(task.id)
    assert info.is_blocked is False
    assert info.blocked_by == []


def test_blocked_reason_lists_only_unresolved_blockers(service, make_task):
    done = make_task("Done blocker", models.TaskStatus.done)
    open_a = make_task("Open A")
    open_b = make_task("Open B", models.TaskStatus.review)
    dependent = make_task("Dependent")
    for blocker in (done, open_a, open_b):
        service.create_dependency(dependent.id, blocker.id)

    info = service.get_task_blocking_info(dependent.id)
    assert info.blocked_reason == "Blocked by: Open A, Open B"
    assert len(info.blocked_by) == 2


def test_blocking_list_is_informational(service, make_task):
    blocker = make_task("Blocker")
    dependent = make_task("Dependent")
    service.create_dependency(dependent.id, blocker.id)

    info = service.get_task_blocking_info(blocker.id)
    assert info.is_blocked is False
    assert [t.task_id for t in info.blocking] == [dependent.id]


def test_blocking_info_unknown_task(service):
    with pytest.raises(NotFoundError):
        service.get_task_blocking_info("missing")


def test_calculate_is_blocked_map(service, make_task):
    blocker = make_task("Blocker")
    done = make_task("Done", models.TaskStatus.done)
    blocked = make_task("Blocked")
    free = make_task("Free")
    service.create_dependency(blocked.id, blocker.id)
    service.create_dependency(free.id, done.id)

    result = service.engine.calculate_is_blocked_map([blocked.id, free.id, blocker.id])
    assert result == {blocked.id: True, free.id: False, blocker.id: False}
    assert service.engine.calculate_is_blocked_map([]) == {}


# ============== Listing ==============


def test_get_task_dependencies(service, make_task):
    a = make_task("A")
    b = make_task("B")
    c = make_task("C")
    service.create_dependency(b.id, a.id)
    service.create_dependency(c.id, b.id, RELATES_TO)

    result = service.get_task_dependencies(b.id)
    assert [d.dependent_task_id for d in result.blocking] == [c.id]
    assert [d.blocking_task_id for d in result.blocked_by] == [a.id]
    assert result.blocked_by[0].blocking_task.key == a.key


def test_get_dependencies_filters(service, make_task, make_project):
    other = make_project("OTHER")
    done = make_task("Done", models.TaskStatus.done)
    open_task = make_task("Open")
    dependent = make_task("Dependent")
    outside = make_task("Outside", project_id=other.id)

    service.create_dependency(dependent.id, done.id)
    service.create_dependency(dependent.id, open_task.id)
    service.create_dependency(outside.id, dependent.id, RELATES_TO)

    active = service.get_dependencies(schemas.DependencyFilters(status=schemas.DependencyStatusFilter.ACTIVE))
    assert {d.blocking_task_id for d in active} == {open_task.id, dependent.id}

    resolved = service.get_dependencies(schemas.DependencyFilters(status=schemas.DependencyStatusFilter.RESOLVED))
    assert [d.blocking_task_id for d in resolved] == [done.id]

    by_type = service.get_dependencies(schemas.DependencyFilters(type=RELATES_TO))
    assert [d.dependent_task_id for d in by_type] == [outside.id]

    by_project = service.get_dependencies(schemas.DependencyFilters(project_id=other.id))
    assert [d.dependent_task_id for d in by_project] == [outside.id]

    by_task = service.get_dependencies(schemas.DependencyFilters(task_id=open_task.id))
    assert len(by_task) == 1
    logger.info("✓ Dependency listing filters by status, type, project and task")


# ============== Type replacement ==============


def test_replace_type_revalidates_as_create(service, make_task):
    a = make_task("A")
    b = make_task("B")
    service.create_dependency(b.id, a.id, BLOCKS)
    relates = service.create_dependency(a.id, b.id, RELATES_TO)

    with pytest.raises(ValidationError) as exc_info:
        service.engine.replace_dependency_type(relates, BLOCKS)

    assert exc_info.value.tag == ValidationTag.CIRCULAR
    assert service.dependency_store.find(a.id, b.id, RELATES_TO) is not None


def test_replace_type_swaps_edge(service, make_task):
    a = make_task("A")
    b = make_task("B")
    relates = service.create_dependency(b.id, a.id, RELATES_TO)

    replacement = service.engine.replace_dependency_type(relates, BLOCKS)

    assert replacement.type == BLOCKS
    edges = service.dependency_store.find_between(b.id, a.id)
    assert [e.type for e in edges] == [BLOCKS]
    assert service.get_task_blocking_info(b.id).is_blocked is True
