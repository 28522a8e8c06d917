"""Tests for the command line interface over JSON snapshots."""

import json

import pytest
from click.testing import CliRunner

from hollon.cli import load_snapshot, main, save_snapshot
from hollon.models.task_models import TaskStatus


def write_snapshot(path, **collections):
    path.write_text(json.dumps(collections))
    return str(path)


def read_snapshot(path):
    with open(path) as f:
        return json.load(f)


CHAIN = [
    {"id": "task-a", "title": "Schema"},
    {"id": "task-b", "title": "API", "dependencies": ["task-a"], "story_points": 3},
    {"id": "task-c", "title": "Docs", "dependencies": ["task-a"]},
]

ALICE = {
    "id": "worker-1",
    "name": "Alice Smith",
    "role": {"name": "Developer", "capabilities": ["python"]},
}


class TestCli:
    def setup_method(self):
        self.runner = CliRunner()

    def test_plan(self, tmp_path):
        snapshot = write_snapshot(tmp_path / "s.json", tasks=CHAIN)

        result = self.runner.invoke(main, ["plan", snapshot])

        assert result.exit_code == 0, result.output
        assert "Batch 1:\n  - Schema [task-a]" in result.output
        assert "Batch 2:\n  - API [task-b]\n  - Docs [task-c]" in result.output
        assert "Critical path: Schema [task-a] -> API [task-b]" in result.output

    def test_plan_with_cycle(self, tmp_path):
        tasks = [
            {"id": "task-a", "title": "A", "dependencies": ["task-b"]},
            {"id": "task-b", "title": "B", "dependencies": ["task-a"]},
        ]
        snapshot = write_snapshot(tmp_path / "s.json", tasks=tasks)

        result = self.runner.invoke(main, ["plan", snapshot])

        assert result.exit_code == 1
        assert "Cycle:" in result.output
        assert "Error: Dependency graph contains cycles" in result.output

    def test_assign_and_save(self, tmp_path):
        tasks = [{"id": "task-a", "title": "Add parser", "required_skills": ["python"]}]
        snapshot = write_snapshot(tmp_path / "s.json", tasks=tasks, workers=[ALICE])

        result = self.runner.invoke(main, ["assign", snapshot, "--save"])

        assert result.exit_code == 0, result.output
        assert "Add parser -> Alice Smith" in result.output

        saved = read_snapshot(snapshot)
        assert saved["tasks"][0]["assigned_worker_id"] == "worker-1"
        assert saved["tasks"][0]["status"] == "ready"
        assert saved["workers"][0]["name"] == "Alice Smith"

    def test_uncertainty(self, tmp_path):
        tasks = [
            {
                "id": "task-a",
                "title": "Improve various things",
                "description": "Research and prototype a new caching approach, details TBD",
            }
        ]
        snapshot = write_snapshot(tmp_path / "s.json", tasks=tasks)

        result = self.runner.invoke(main, ["uncertainty", snapshot, "--spikes", "--save"])

        assert result.exit_code == 0, result.output
        assert "[critical] Improve various things" in result.output
        assert "Spike: [SPIKE] Technical Research for: Improve various things (10h)" in (
            result.output
        )
        assert len(read_snapshot(snapshot)["tasks"]) == 2

    def test_pivot_dry_run_leaves_snapshot_alone(self, tmp_path):
        tasks = [{"id": "task-a", "title": "Mobile app push notifications"}]
        snapshot = write_snapshot(tmp_path / "s.json", tasks=tasks)

        result = self.runner.invoke(
            main, ["pivot", snapshot, "--from", "mobile app", "--to", "backend API", "--save"]
        )

        assert result.exit_code == 0, result.output
        assert "Mobile app push notifications: alignment 30" in result.output
        assert "-> cancel" in result.output
        assert read_snapshot(snapshot)["tasks"][0]["status"] == "pending"

    def test_pivot_apply(self, tmp_path):
        tasks = [{"id": "task-a", "title": "Mobile app push notifications", "priority": "P1"}]
        snapshot = write_snapshot(tmp_path / "s.json", tasks=tasks)

        result = self.runner.invoke(
            main,
            [
                "pivot",
                snapshot,
                "--from",
                "mobile app",
                "--to",
                "backend API",
                "--apply",
                "--save",
            ],
        )

        assert result.exit_code == 0, result.output
        assert "Cancelled 1, created 1" in result.output

        saved = read_snapshot(snapshot)["tasks"]
        assert saved[0]["status"] == "cancelled"
        assert saved[1]["metadata"] == {"replaces_task_id": "task-a"}

    def test_complete_unblocks_sibling(self, tmp_path):
        tasks = [
            {"id": "root", "title": "Epic", "type": "aggregate", "status": "blocked"},
            {"id": "task-a", "title": "Schema", "parent_task_id": "root", "depth": 1,
             "status": "ready_for_review"},
            {"id": "task-b", "title": "API", "parent_task_id": "root", "depth": 1,
             "status": "blocked", "dependencies": ["task-a"]},
        ]
        snapshot = write_snapshot(tmp_path / "s.json", tasks=tasks)

        result = self.runner.invoke(main, ["complete", snapshot, "task-a"])

        assert result.exit_code == 0, result.output
        statuses = {t["id"]: t["status"] for t in read_snapshot(snapshot)["tasks"]}
        assert statuses["task-a"] == "completed"
        assert statuses["task-b"] == "ready"

    def test_missing_task(self, tmp_path):
        snapshot = write_snapshot(tmp_path / "s.json", tasks=CHAIN)

        result = self.runner.invoke(main, ["complete", snapshot, "nope"])

        assert result.exit_code == 1
        assert "Error:" in result.output


@pytest.mark.asyncio
async def test_snapshot_round_trip_keeps_entities(tmp_path):
    path = write_snapshot(tmp_path / "s.json", tasks=CHAIN, workers=[ALICE])

    repositories = await load_snapshot(path)
    task = await repositories.tasks.get("task-a")
    task.status = TaskStatus.COMPLETED
    await repositories.tasks.save(task)
    await save_snapshot(repositories, path)

    reloaded = await load_snapshot(path)
    assert (await reloaded.tasks.get("task-a")).status == TaskStatus.COMPLETED
    assert (await reloaded.tasks.get("task-b")).dependencies == {"task-a"}
    assert await reloaded.workers.count() == 1
    assert await reloaded.teams.count() == 0
