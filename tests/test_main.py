import json

import pandas as pd
import pytest

from portfolio_tracker.main import main

DOCUMENT = {
    "projects": [
        {
            "id": "p1",
            "name": "Portal relaunch",
            "startDate": "2026-09-01",
            "endDate": "2026-12-31",
            "budget": {"internal": 1000, "total": 1000},
            "projectStatus": "active",
        }
    ],
    "members": [{"id": "anna", "name": "Anna", "availableCapacity": 50, "hourlyRateInternal": 10}],
    "projectTeamMembers": [{"id": "t1", "projectId": "p1", "memberId": "anna"}],
    "resourceBookings": [
        {
            "id": "b1",
            "projectId": "p1",
            "memberId": "anna",
            "startDate": "2026-10-19",
            "endDate": "2026-10-25",
            "capacityPercent": 120,
        }
    ],
    "tasks": [
        {"id": "a", "projectId": "p1", "name": "Design", "duration": 3},
        {"id": "b", "projectId": "p1", "name": "Build", "duration": 5, "dependencies": ["a"]},
    ],
}


@pytest.fixture
def state_path(tmp_path):
    path = tmp_path / "state.json"
    path.write_text(json.dumps(DOCUMENT))
    return path


def test_writes_every_report(tmp_path, state_path):
    outdir = tmp_path / "out"
    main(["--state", str(state_path), "--outdir", str(outdir), "--today", "2026-10-21"])

    names = sorted(path.name for path in outdir.iterdir())
    assert names == [
        "competency_groups.csv",
        "critical_path.csv",
        "fte_timeline.csv",
        "project_health.csv",
        "resource_utilization.csv",
    ]
    schedule = pd.read_csv(outdir / "critical_path.csv")
    assert list(schedule["task_id"]) == ["a", "b"]
    health = pd.read_csv(outdir / "project_health.csv")
    assert health.loc[0, "critical_path"] == "a;b"
    assert health.loc[0, "completion_days"] == 8
    utilization = pd.read_csv(outdir / "resource_utilization.csv")
    assert bool(utilization.loc[0, "is_overbooked"]) is True


def test_dry_run_prints_summary(tmp_path, state_path, capsys):
    outdir = tmp_path / "out"
    main(["--state", str(state_path), "--outdir", str(outdir), "--today", "2026-10-21", "--dry-run"])

    out = capsys.readouterr().out
    assert "p1 Portal relaunch" in out
    assert "Anna: 120% of 50%" in out
    assert "Overloaded weeks: 2026-10-19" in out
    assert not outdir.exists()


def test_missing_state_file_exits_with_usage_error(tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        main(["--state", str(tmp_path / "missing.json")])
    assert excinfo.value.code == 2


def test_bad_today_exits_with_usage_error(state_path):
    with pytest.raises(SystemExit) as excinfo:
        main(["--state", str(state_path), "--today", "tomorrow"])
    assert excinfo.value.code == 2


def test_cyclic_tasks_exit_with_failure(tmp_path, capsys):
    document = dict(DOCUMENT)
    document["tasks"] = [
        {"id": "a", "projectId": "p1", "duration": 1, "dependencies": ["b"]},
        {"id": "b", "projectId": "p1", "duration": 1, "dependencies": ["a"]},
    ]
    path = tmp_path / "state.json"
    path.write_text(json.dumps(document))

    with pytest.raises(SystemExit) as excinfo:
        main(["--state", str(path), "--outdir", str(tmp_path / "out")])
    assert excinfo.value.code == 1
    assert "a" in capsys.readouterr().err


def test_unreadable_state_file_exits_with_usage_error(state_path, monkeypatch, capsys):
    def deny(*args, **kwargs):
        raise PermissionError(13, "Permission denied", str(state_path))

    monkeypatch.setattr("portfolio_tracker.main.load_state", deny)
    with pytest.raises(SystemExit) as excinfo:
        main(["--state", str(state_path)])
    assert excinfo.value.code == 2
    assert "Permission denied" in capsys.readouterr().err
