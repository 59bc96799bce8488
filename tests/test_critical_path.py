import pytest

from conftest import make_task
from portfolio_tracker.critical_path import (
    CyclicDependencyError,
    compute_critical_path,
    critical_path_frame,
)


# ----------------------------------------------------------------
# 1. GRAPH SHAPES
# ----------------------------------------------------------------
def test_empty_task_list():
    result = compute_critical_path([])
    assert result.critical_path == []
    assert result.task_data == {}
    assert result.project_completion_time is None


def test_independent_tasks_are_all_critical():
    tasks = [make_task("a", 4), make_task("b", 4), make_task("c", 4)]
    result = compute_critical_path(tasks)

    assert result.project_completion_time == 4
    assert all(item.slack == 0 for item in result.task_data.values())
    assert result.critical_path == ["a", "b", "c"]


def test_independent_tasks_of_different_length():
    """
    Without dependencies every task ends at the project end; only the
    longest one has no room to move.
    """
    tasks = [make_task("short", 2), make_task("long", 7)]
    result = compute_critical_path(tasks)

    assert result.project_completion_time == 7
    assert result.task_data["short"].slack == 5
    assert result.critical_path == ["long"]


def test_linear_chain():
    """
    A (5) -> B (3) -> C (2)
      A: ES=0  EF=5
      B: ES=5  EF=8
      C: ES=8  EF=10
    """
    tasks = [make_task("c", 2, ["b"]), make_task("a", 5), make_task("b", 3, ["a"])]
    result = compute_critical_path(tasks)

    assert result.critical_path == ["a", "b", "c"]
    assert result.project_completion_time == 10
    b = result.task_data["b"]
    assert (b.early_start, b.early_finish, b.late_start, b.late_finish) == (5, 8, 5, 8)


def test_zero_duration_parallel_branch_has_slack():
    tasks = [make_task("a", 5), make_task("b", 3, ["a"]), make_task("side", 0)]
    result = compute_critical_path(tasks)

    side = result.task_data["side"]
    assert side.slack == 8
    assert not side.is_critical
    assert "side" not in result.critical_path
    assert result.critical_path == ["a", "b"]


def test_diamond_picks_longer_branch():
    """
    start (1) -> fast (2) -> end (1)
    start (1) -> slow (6) -> end (1)
    """
    tasks = [
        make_task("start", 1),
        make_task("fast", 2, ["start"]),
        make_task("slow", 6, ["start"]),
        make_task("end", 1, ["fast", "slow"]),
    ]
    result = compute_critical_path(tasks)

    assert result.project_completion_time == 8
    assert result.critical_path == ["start", "slow", "end"]
    assert result.task_data["fast"].slack == 4
    assert result.task_data["end"].early_start == 7


# ----------------------------------------------------------------
# 2. EDGE CASES
# ----------------------------------------------------------------
def test_unknown_dependency_is_ignored():
    tasks = [make_task("a", 2, ["ghost"]), make_task("b", 3, ["a"])]
    result = compute_critical_path(tasks)

    assert result.task_data["a"].early_start == 0
    assert result.project_completion_time == 5
    assert result.critical_path == ["a", "b"]


def test_cycle_is_reported():
    tasks = [make_task("a", 1, ["c"]), make_task("b", 1, ["a"]), make_task("c", 1, ["b"]), make_task("d", 1)]
    with pytest.raises(CyclicDependencyError) as excinfo:
        compute_critical_path(tasks)
    assert excinfo.value.task_ids == ["a", "b", "c"]


def test_self_dependency_is_a_cycle():
    with pytest.raises(CyclicDependencyError):
        compute_critical_path([make_task("a", 1, ["a"])])


def test_result_serialises_with_camel_case_keys():
    result = compute_critical_path([make_task("a", 2)])
    payload = result.to_dict()

    assert payload["criticalPath"] == ["a"]
    assert payload["projectCompletionTime"] == 2
    assert payload["taskData"]["a"]["isCritical"] is True


def test_frame_has_one_row_per_task():
    result = compute_critical_path([make_task("a", 2), make_task("b", 1, ["a"])])
    df = critical_path_frame(result, "p1")

    assert list(df["task_id"]) == ["a", "b"]
    assert df["is_critical"].all()
    assert set(df["project_id"]) == {"p1"}
