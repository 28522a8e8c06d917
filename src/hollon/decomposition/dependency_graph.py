"""Task dependency graph with cycle-safe inserts and parallel grouping."""

import logging
from collections import defaultdict
from graphlib import TopologicalSorter, CycleError
from typing import Dict, Iterable, List, Optional, Set, Union

from ..errors import CycleDetectedError
from ..models.decomposition_models import DependencyValidation, FileConflict
from ..models.task_models import Task, TaskStatus


logger = logging.getLogger(__name__)

TaskRef = Union[Task, str]


def _task_id(ref: TaskRef) -> str:
    return ref.id if isinstance(ref, Task) else ref


class DependencyGraph:
    """
    Tracks task dependencies as a DAG and computes executable batches.

    PATTERN: Adjacency maps in both directions, graphlib for ordering
    CRITICAL: Every insert is cycle-checked before any state changes
    GOTCHA: Tasks registered here are the same objects callers persist,
    status changes made by unblock_dependents must be saved by the caller
    """

    def __init__(self, tasks: Optional[Iterable[Task]] = None):
        """
        Initialize dependency graph.

        Args:
            tasks: Tasks to load, existing dependency edges included
        """
        self.graph: Dict[str, Set[str]] = {}  # task_id -> dependencies
        self.reverse_graph: Dict[str, Set[str]] = {}  # task_id -> dependents
        self.tasks: Dict[str, Task] = {}
        self.logger = logging.getLogger(__name__)

        if tasks:
            self.load_tasks(tasks)

    def _ensure_node(self, task_id: str) -> None:
        if task_id not in self.graph:
            self.graph[task_id] = set()
            self.reverse_graph[task_id] = set()

    def add_task(self, task: Task) -> None:
        """
        Register a task and its declared dependency edges.

        Edges already present on the task are trusted; use validate() to
        check a graph loaded from storage.
        """
        self.tasks[task.id] = task
        self._ensure_node(task.id)
        for dependency_id in task.dependencies:
            self._ensure_node(dependency_id)
            self.graph[task.id].add(dependency_id)
            self.reverse_graph[dependency_id].add(task.id)

    def load_tasks(self, tasks: Iterable[Task]) -> None:
        count = 0
        for task in tasks:
            self.add_task(task)
            count += 1

        self.logger.debug(
            f"Loaded {count} tasks with "
            f"{sum(len(deps) for deps in self.graph.values())} dependencies"
        )

    def get_task(self, task_id: str) -> Optional[Task]:
        return self.tasks.get(task_id)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_dependency(self, task: TaskRef, depends_on: TaskRef) -> None:
        """
        Add a dependency: task waits for depends_on.

        CRITICAL: A directed search from depends_on must not reach task

        Args:
            task: Task (or ID) that has the dependency
            depends_on: Task (or ID) that must complete first

        Raises:
            CycleDetectedError: On self-dependency or if the edge closes a cycle
        """
        task_id = _task_id(task)
        depends_on_id = _task_id(depends_on)

        if task_id == depends_on_id:
            raise CycleDetectedError(task_id, depends_on_id)

        path = self._find_path(depends_on_id, task_id)
        if path is not None:
            raise CycleDetectedError(task_id, depends_on_id, path=[task_id] + path)

        if isinstance(task, Task):
            self.tasks.setdefault(task_id, task)
        if isinstance(depends_on, Task):
            self.tasks.setdefault(depends_on_id, depends_on)

        self._ensure_node(task_id)
        self._ensure_node(depends_on_id)
        self.graph[task_id].add(depends_on_id)
        self.reverse_graph[depends_on_id].add(task_id)

        known = self.tasks.get(task_id)
        if known is not None:
            known.dependencies.add(depends_on_id)
        if isinstance(task, Task) and task is not known:
            task.dependencies.add(depends_on_id)

        self.logger.debug(f"Added dependency: {task_id} depends on {depends_on_id}")

    def remove_dependency(self, task: TaskRef, depends_on: TaskRef) -> None:
        """Remove a dependency edge. Missing edges are ignored."""
        task_id = _task_id(task)
        depends_on_id = _task_id(depends_on)

        if task_id in self.graph:
            self.graph[task_id].discard(depends_on_id)
        if depends_on_id in self.reverse_graph:
            self.reverse_graph[depends_on_id].discard(task_id)

        known = self.tasks.get(task_id)
        if known is not None:
            known.dependencies.discard(depends_on_id)
        if isinstance(task, Task):
            task.dependencies.discard(depends_on_id)

    def _find_path(self, start: str, target: str) -> Optional[List[str]]:
        """
        Iterative DFS along dependency edges.

        Returns:
            Node path from start to target, or None if unreachable
        """
        stack = [(start, [start])]
        visited: Set[str] = set()

        while stack:
            node, path = stack.pop()
            if node == target:
                return path
            if node in visited:
                continue
            visited.add(node)
            for neighbor in self.graph.get(node, ()):
                if neighbor not in visited:
                    stack.append((neighbor, path + [neighbor]))

        return None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_dependencies(self, task_id: str) -> Set[str]:
        return self.graph.get(task_id, set()).copy()

    def get_dependents(self, task_id: str) -> Set[str]:
        return self.reverse_graph.get(task_id, set()).copy()

    def find_all_dependencies(self, task_id: str) -> Set[str]:
        """Transitive dependencies of a task."""
        result: Set[str] = set()
        stack = list(self.graph.get(task_id, ()))
        while stack:
            node = stack.pop()
            if node in result:
                continue
            result.add(node)
            stack.extend(self.graph.get(node, ()))
        return result

    def _is_completed(self, task_id: str, completed_ids: Set[str]) -> bool:
        if task_id in completed_ids:
            return True
        task = self.tasks.get(task_id)
        return task is not None and task.status == TaskStatus.COMPLETED

    def compute_ready_set(
        self,
        candidate_tasks: Iterable[Task],
        completed_ids: Optional[Set[str]] = None,
    ) -> List[Task]:
        """
        Return candidates whose dependencies are all COMPLETED.

        Args:
            candidate_tasks: Tasks to check
            completed_ids: Extra IDs to treat as completed

        Returns:
            Ready tasks in input order
        """
        completed_ids = completed_ids or set()
        ready = []

        for task in candidate_tasks:
            dependencies = task.dependencies | self.graph.get(task.id, set())
            if all(self._is_completed(dep, completed_ids) for dep in dependencies):
                ready.append(task)

        return ready

    def group_for_parallel_execution(
        self, executable_tasks: Iterable[Task]
    ) -> List[List[Task]]:
        """
        Split tasks into groups that can run concurrently.

        PATTERN: Stable sort by priority, then greedy first-fit
        CRITICAL: No two tasks in a group share an affected file

        Args:
            executable_tasks: Tasks that are ready to run

        Returns:
            Groups of tasks, most urgent first
        """
        ordered = sorted(executable_tasks, key=lambda t: t.priority.rank)

        groups: List[List[Task]] = []
        group_files: List[Set[str]] = []

        for task in ordered:
            for index, files in enumerate(group_files):
                if files.isdisjoint(task.affected_files):
                    groups[index].append(task)
                    files.update(task.affected_files)
                    break
            else:
                groups.append([task])
                group_files.append(set(task.affected_files))

        self.logger.debug(
            f"Grouped {len(ordered)} tasks into {len(groups)} parallel groups"
        )

        return groups

    def detect_file_conflicts(self, tasks: Iterable[Task]) -> List[FileConflict]:
        """
        Report every file touched by two or more tasks.

        Returns:
            FileConflict entries sorted by file path
        """
        by_file: Dict[str, List[str]] = defaultdict(list)
        for task in tasks:
            for file in task.affected_files:
                by_file[file].append(task.id)

        conflicts = [
            FileConflict(file=file, task_ids=task_ids)
            for file, task_ids in sorted(by_file.items())
            if len(task_ids) > 1
        ]

        if conflicts:
            self.logger.info(f"Detected {len(conflicts)} file conflicts")

        return conflicts

    def unblock_dependents(self, completed_id: str) -> List[Task]:
        """
        Move BLOCKED dependents to READY once all their dependencies completed.

        Args:
            completed_id: Task that just completed

        Returns:
            Tasks whose status changed to READY
        """
        unblocked = []

        for dependent_id in sorted(self.reverse_graph.get(completed_id, ())):
            dependent = self.tasks.get(dependent_id)
            if dependent is None or dependent.status != TaskStatus.BLOCKED:
                continue

            if all(
                self._is_completed(dep, {completed_id})
                for dep in self.graph.get(dependent_id, ())
            ):
                dependent.status = TaskStatus.READY
                unblocked.append(dependent)
                self.logger.info(
                    f"Task {dependent_id} unblocked by completion of {completed_id}"
                )

        return unblocked

    # ------------------------------------------------------------------
    # Ordering and validation
    # ------------------------------------------------------------------

    def validate(self) -> DependencyValidation:
        """
        Validate the graph and detect cycles.

        Returns:
            DependencyValidation with cycles, missing IDs and execution order
        """
        missing = sorted(node for node in self.graph if node not in self.tasks)
        if not self.tasks:
            missing = []

        try:
            execution_order = list(TopologicalSorter(self.graph).static_order())
        except CycleError as e:
            self.logger.error(f"Circular dependencies detected: {e}")
            return DependencyValidation(
                is_valid=False,
                has_cycles=True,
                cycles=self._find_all_cycles(),
                missing_dependencies=missing,
                execution_order=[],
            )

        return DependencyValidation(
            is_valid=not missing,
            has_cycles=False,
            cycles=[],
            missing_dependencies=missing,
            execution_order=execution_order,
        )

    def _find_all_cycles(self) -> List[List[str]]:
        """
        Find circular chains using DFS with a recursion stack.

        GOTCHA: Reports one cycle per back edge, not every elementary cycle
        """
        cycles = []
        visited: Set[str] = set()
        on_stack: Set[str] = set()

        for root in self.graph:
            if root in visited:
                continue

            stack = [(root, iter(sorted(self.graph[root])))]
            path = [root]
            visited.add(root)
            on_stack.add(root)

            while stack:
                node, neighbors = stack[-1]
                advanced = False
                for neighbor in neighbors:
                    if neighbor in on_stack:
                        start = path.index(neighbor)
                        cycles.append(path[start:] + [neighbor])
                    elif neighbor not in visited:
                        visited.add(neighbor)
                        on_stack.add(neighbor)
                        path.append(neighbor)
                        stack.append(
                            (neighbor, iter(sorted(self.graph.get(neighbor, ()))))
                        )
                        advanced = True
                        break
                if not advanced:
                    stack.pop()
                    on_stack.discard(path.pop())

        return cycles

    def topological_order(self) -> List[str]:
        """
        Dependencies first.

        Raises:
            CycleError: If the graph contains a cycle
        """
        return list(TopologicalSorter(self.graph).static_order())

    def execution_batches(self) -> List[List[str]]:
        """
        Batches of task IDs with no dependencies on each other.

        Raises:
            CycleError: If the graph contains a cycle
        """
        sorter = TopologicalSorter(self.graph)
        sorter.prepare()

        batches = []
        while sorter.is_active():
            ready = sorted(sorter.get_ready())
            if ready:
                batches.append(ready)
                for task_id in ready:
                    sorter.done(task_id)

        return batches

    def critical_path(self) -> List[str]:
        """
        Longest dependency chain, weighted by story points (default 1).

        Returns:
            Task IDs from the first task to the last on the chain
        """
        order = self.topological_order()
        weight: Dict[str, int] = {}
        best: Dict[str, int] = {}
        previous: Dict[str, Optional[str]] = {}

        for task_id in order:
            task = self.tasks.get(task_id)
            weight[task_id] = (task.story_points or 1) if task else 1

            best[task_id] = weight[task_id]
            previous[task_id] = None
            for dependency_id in self.graph.get(task_id, ()):
                candidate = best[dependency_id] + weight[task_id]
                if candidate > best[task_id]:
                    best[task_id] = candidate
                    previous[task_id] = dependency_id

        if not best:
            return []

        node: Optional[str] = max(best, key=lambda k: (best[k], k))
        path = []
        while node is not None:
            path.append(node)
            node = previous[node]

        return list(reversed(path))
