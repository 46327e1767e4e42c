"""
Aggregation Service.

Read-only derived views over tasks and dependencies: subtask roll-ups,
project dependency graphs and impact analysis. Nothing here takes the write
lock; results may be a slightly stale snapshot under concurrent writes.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Set

import config
import models
import schemas
from errors import NotFoundError
from stores import DependencyStore, TaskStore
from dependency_graph.engine import DependencyGraphEngine
from dependency_graph.traversal import detect_cycles, topological_levels

logger = logging.getLogger(__name__)


class AggregationService:
    def __init__(self, task_store: TaskStore, dependency_store: DependencyStore,
                 engine: DependencyGraphEngine, max_impact_depth: int = config.MAX_IMPACT_DEPTH):
        self.tasks = task_store
        self.dependencies = dependency_store
        self.engine = engine
        self.max_impact_depth = max_impact_depth

    def get_subtask_summary(self, parent_task_id: str) -> schemas.SubtaskSummary:
        """
        Roll up the direct children of a task.

        Subtasks are bucketed by status category (terminal, active, pending).
        Hours are summed over children; remaining hours are clamped at zero
        per child.
        """
        if self.tasks.get_task_by_id(parent_task_id) is None:
            raise NotFoundError("Task not found")

        subtasks = self.tasks.list_children(parent_task_id)

        total_subtasks = len(subtasks)
        completed_subtasks = sum(1 for s in subtasks if s.status in models.TERMINAL_STATUSES)
        in_progress_subtasks = sum(1 for s in subtasks if s.status in models.ACTIVE_STATUSES)
        todo_subtasks = sum(1 for s in subtasks if s.status in models.PENDING_STATUSES)

        completion_percentage = (completed_subtasks / total_subtasks * 100) if total_subtasks > 0 else 0.0

        estimated_hours = 0.0
        logged_hours = 0.0
        remaining_hours = 0.0
        for subtask in subtasks:
            estimated = subtask.estimated_hours or 0.0
            logged = subtask.logged_hours or 0.0
            estimated_hours += estimated
            logged_hours += logged
            remaining_hours += max(estimated - logged, 0.0)

        logger.debug(f"Task {parent_task_id} progress: {completed_subtasks}/{total_subtasks} subtasks completed ({completion_percentage}%)")

        return schemas.SubtaskSummary(
            parent_task_id=parent_task_id,
            total_subtasks=total_subtasks,
            completed_subtasks=completed_subtasks,
            in_progress_subtasks=in_progress_subtasks,
            todo_subtasks=todo_subtasks,
            completion_percentage=round(completion_percentage, 1),
            estimated_hours=estimated_hours,
            logged_hours=logged_hours,
            remaining_hours=remaining_hours,
        )

    def generate_dependency_graph(self, project_id: str) -> schemas.DependencyGraph:
        """
        Snapshot of a project's dependency graph.

        Edges point from the blocking task to the dependent task. Edges with
        an endpoint outside the project are left out. Levels are longest-path
        distances from tasks with no incoming blocking edge. Cycles should
        never exist, but are detected and reported if the stored data
        contains any.
        """
        if self.tasks.get_project(project_id) is None:
            raise NotFoundError("Project not found")

        tasks = self.tasks.list_tasks_by_project(project_id)
        task_ids = [task.id for task in tasks]
        in_project = set(task_ids)

        dependencies = [
            dep for dep in self.dependencies.list_touching(task_ids)
            if dep.dependent_task_id in in_project and dep.blocking_task_id in in_project
        ]

        successors: Dict[str, List[str]] = defaultdict(list)
        predecessors: Dict[str, List[str]] = defaultdict(list)
        edges = []
        for dep in dependencies:
            edges.append(schemas.DependencyEdge(
                from_=dep.blocking_task_id,
                to=dep.dependent_task_id,
                type=dep.type,
                weight=1 if dep.is_blocking else 0,
            ))
            if dep.is_blocking:
                successors[dep.blocking_task_id].append(dep.dependent_task_id)
                predecessors[dep.dependent_task_id].append(dep.blocking_task_id)

        def neighbours(task_id):
            return successors.get(task_id, [])

        levels = topological_levels(task_ids, neighbours)
        cycles = detect_cycles(task_ids, neighbours)
        if cycles:
            logger.warning(f"Project {project_id} dependency graph contains {len(cycles)} cycle(s)")

        blocked = self.engine.calculate_is_blocked_map(task_ids)

        nodes = [
            schemas.DependencyNode(
                task_id=task.id,
                task_key=task.key,
                title=task.title,
                status=task.status,
                project_id=task.project_id,
                level=levels.get(task.id, 0),
                is_blocked=blocked.get(task.id, False),
                blocked_by=predecessors.get(task.id, []),
                blocking=successors.get(task.id, []),
            )
            for task in tasks
        ]

        logger.debug(f"Project {project_id} graph: {len(nodes)} nodes, {len(edges)} edges")
        return schemas.DependencyGraph(project_id=project_id, nodes=nodes, edges=edges, cycles=cycles)

    def get_dependency_impact_analysis(self, task_id: str) -> schemas.DependencyImpactAnalysis:
        """
        Find every task transitively waiting on task_id.

        Dependents are discovered breadth first, one query per level, so
        impact_level is the shortest hop count. The critical path is the
        longest chain of dependents starting at task_id. Traversal stops at
        max_impact_depth hops.
        """
        if self.tasks.get_task_by_id(task_id) is None:
            raise NotFoundError("Task not found")

        levels: Dict[str, int] = {task_id: 0}
        dependents: Dict[str, List[str]] = defaultdict(list)
        frontier = [task_id]
        level = 0

        while frontier and level < self.max_impact_depth:
            level += 1
            next_frontier = []
            for dep in self.dependencies.list_blocking_for_blockers(frontier):
                dependents[dep.blocking_task_id].append(dep.dependent_task_id)
                if dep.dependent_task_id not in levels:
                    levels[dep.dependent_task_id] = level
                    next_frontier.append(dep.dependent_task_id)
            frontier = next_frontier

        if frontier:
            logger.warning(f"Impact analysis for task {task_id} stopped at depth {self.max_impact_depth}")

        impacted_ids = [tid for tid in levels if tid != task_id]
        impacted_tasks_by_id = self.tasks.get_tasks_by_ids(impacted_ids)

        impacted = []
        for tid in impacted_ids:
            task = impacted_tasks_by_id.get(tid)
            if task is None:
                continue
            impacted.append(schemas.ImpactedTask(
                task_id=tid,
                task_key=task.key,
                title=task.title,
                impact_type=schemas.ImpactType.DIRECT if levels[tid] == 1 else schemas.ImpactType.INDIRECT,
                impact_level=levels[tid],
            ))
        impacted.sort(key=lambda t: (t.impact_level, t.task_key))

        critical_path = self._longest_chain(task_id, dependents)

        logger.debug(f"Task {task_id} impacts {len(impacted)} tasks, critical path length {len(critical_path)}")
        return schemas.DependencyImpactAnalysis(
            task_id=task_id,
            impacted_tasks=impacted,
            critical_path=critical_path,
            total_impacted_tasks=len(impacted),
            max_impact_level=max((t.impact_level for t in impacted), default=0),
        )

    def _longest_chain(self, root: str, dependents: Dict[str, List[str]]) -> List[str]:
        """
        Longest simple chain from root through dependents, bounded by max_impact_depth.

        Depth first with an explicit stack; each finished node memoizes its
        best chain.
        """
        memo: Dict[str, List[str]] = {}
        best: Dict[str, List[str]] = {root: []}
        on_stack: Set[str] = {root}
        stack = [(root, iter(dependents.get(root, [])))]

        while stack:
            node, children = stack[-1]
            # Depth of node is len(stack) - 1
            child = next(children, None) if len(stack) <= self.max_impact_depth else None

            if child is None:
                stack.pop()
                on_stack.discard(node)
                memo[node] = [node] + best.pop(node)
                if stack:
                    parent = stack[-1][0]
                    if len(memo[node]) > len(best[parent]):
                        best[parent] = memo[node]
                continue

            if child in on_stack:
                continue
            if child in memo:
                if len(memo[child]) > len(best[node]):
                    best[node] = memo[child]
                continue

            on_stack.add(child)
            best[child] = []
            stack.append((child, iter(dependents.get(child, []))))

        chain = memo[root]
        return chain if len(chain) > 1 else []
