from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from .models import Task

logger = logging.getLogger(__name__)

EPSILON = 1e-9


class CyclicDependencyError(ValueError):
    def __init__(self, task_ids: Sequence[str]) -> None:
        ids = sorted(task_ids)
        super().__init__(f"task dependencies contain a cycle through: {', '.join(ids)}")
        self.task_ids = ids


@dataclass
class TaskSchedule:
    id: str
    name: str
    duration: float
    dependencies: Tuple[str, ...]
    early_start: float = 0.0
    early_finish: float = 0.0
    late_start: float = 0.0
    late_finish: float = 0.0
    slack: float = 0.0
    is_critical: bool = False

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "duration": self.duration,
            "dependencies": list(self.dependencies),
            "earlyStart": self.early_start,
            "earlyFinish": self.early_finish,
            "lateStart": self.late_start,
            "lateFinish": self.late_finish,
            "slack": self.slack,
            "isCritical": self.is_critical,
        }


@dataclass
class CriticalPathResult:
    critical_path: List[str] = field(default_factory=list)
    task_data: Dict[str, TaskSchedule] = field(default_factory=dict)
    project_completion_time: Optional[float] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "criticalPath": list(self.critical_path),
            "taskData": {task_id: item.to_dict() for task_id, item in self.task_data.items()},
            "projectCompletionTime": self.project_completion_time,
        }


def build_graph(
    tasks: Sequence[Task],
) -> Tuple[List[str], Dict[str, List[str]], Dict[str, List[str]]]:
    """
    Adjacency maps keyed by task id:

    nodes:       task ids in input order
    successors:  {task: [dependent, ...]}
    predecessors: {task: [dependency, ...]}

    Dependencies on tasks outside ``tasks`` are dropped.
    """
    nodes: List[str] = []
    known = set()
    for task in tasks:
        if task.id in known:
            continue
        known.add(task.id)
        nodes.append(task.id)

    successors: Dict[str, List[str]] = defaultdict(list)
    predecessors: Dict[str, List[str]] = defaultdict(list)
    for task in tasks:
        for dep_id in task.dependency_ids():
            if dep_id not in known:
                logger.debug("task %s depends on unknown task %s; skipped", task.id, dep_id)
                continue
            if dep_id in predecessors[task.id]:
                continue
            predecessors[task.id].append(dep_id)
            successors[dep_id].append(task.id)
    return nodes, successors, predecessors


def topological_order(
    nodes: Sequence[str],
    successors: Dict[str, List[str]],
    predecessors: Dict[str, List[str]],
) -> List[str]:
    indeg = {n: len(predecessors.get(n, [])) for n in nodes}
    queue = deque([n for n in nodes if indeg[n] == 0])
    order: List[str] = []
    while queue:
        n = queue.popleft()
        order.append(n)
        for succ in successors.get(n, []):
            indeg[succ] -= 1
            if indeg[succ] == 0:
                queue.append(succ)
    if len(order) != len(nodes):
        ordered = set(order)
        raise CyclicDependencyError([n for n in nodes if n not in ordered])
    return order


def compute_critical_path(tasks: Sequence[Task]) -> CriticalPathResult:
    """
    Critical Path Method over finish-to-start dependencies of one project.

    Raises CyclicDependencyError when the tasks cannot be ordered.
    """
    if not tasks:
        return CriticalPathResult()

    nodes, successors, predecessors = build_graph(tasks)
    order = topological_order(nodes, successors, predecessors)

    schedules: Dict[str, TaskSchedule] = {}
    for task in tasks:
        if task.id in schedules:
            continue
        schedules[task.id] = TaskSchedule(
            id=task.id,
            name=task.name,
            duration=float(task.duration),
            dependencies=tuple(task.dependency_ids()),
        )

    # Forward pass
    for n in order:
        item = schedules[n]
        item.early_start = max((schedules[p].early_finish for p in predecessors.get(n, [])), default=0.0)
        item.early_finish = item.early_start + item.duration

    completion = max(item.early_finish for item in schedules.values())

    # Backward pass
    for n in reversed(order):
        item = schedules[n]
        dependents = successors.get(n, [])
        if dependents:
            item.late_finish = min(schedules[s].late_start for s in dependents)
        else:
            item.late_finish = completion
        item.late_start = item.late_finish - item.duration
        item.slack = item.late_start - item.early_start
        item.is_critical = abs(item.slack) < EPSILON

    position = {n: idx for idx, n in enumerate(nodes)}
    critical = sorted(
        (item for item in schedules.values() if item.is_critical),
        key=lambda item: (item.early_start, position[item.id]),
    )
    return CriticalPathResult(
        critical_path=[item.id for item in critical],
        task_data=schedules,
        project_completion_time=completion,
    )


def critical_path_frame(result: CriticalPathResult, project_id: Optional[str] = None) -> pd.DataFrame:
    columns = [
        "project_id",
        "task_id",
        "name",
        "duration",
        "early_start",
        "early_finish",
        "late_start",
        "late_finish",
        "slack",
        "is_critical",
    ]
    rows = [
        {
            "project_id": project_id,
            "task_id": item.id,
            "name": item.name,
            "duration": item.duration,
            "early_start": item.early_start,
            "early_finish": item.early_finish,
            "late_start": item.late_start,
            "late_finish": item.late_finish,
            "slack": item.slack,
            "is_critical": item.is_critical,
        }
        for item in result.task_data.values()
    ]
    return pd.DataFrame(rows, columns=columns)
