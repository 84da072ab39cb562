from __future__ import annotations

import json
import shutil
from pathlib import Path

import pytest
from typer.testing import CliRunner

from tbd import cli
from tbd.context import load_context
from tbd.ids import generate_internal_id
from tbd.issue import DependencyEdge, Issue, create_issue, find_issue, issue_path, serialize_issue
from tbd.mapping import load_mapping
from tbd.paths import backups_root, config_path, worktree_path
from tbd.worktree import HealthStatus, check_health

runner = CliRunner()


@pytest.fixture
def project(in_git_repo: Path) -> Path:
    result = runner.invoke(cli.app, ["init", "--prefix", "proj"])
    assert result.exit_code == 0, result.output
    return in_git_repo


def checks_by_name(output: str) -> dict[str, dict]:
    return {c["name"]: c for c in json.loads(output)["checks"]}


class TestDoctor:
    def test_clean_project(self, project: Path) -> None:
        runner.invoke(cli.app, ["create", "Fine"])
        result = runner.invoke(cli.app, ["doctor"])

        assert result.exit_code == 0, result.output
        assert "✓ worktree" in result.output
        assert "✗" not in result.output

    def test_json(self, project: Path) -> None:
        result = runner.invoke(cli.app, ["doctor", "--json"])
        assert result.exit_code == 0, result.output
        checks = checks_by_name(result.output)
        assert checks["git"]["state"] == "ok"
        assert checks["config"]["state"] == "ok"
        assert checks["worktree"]["state"] == "ok"

    def test_invalid_config(self, project: Path) -> None:
        config_path(project).write_text("display:\n  id_prefix: Bad-Prefix\n")
        result = runner.invoke(cli.app, ["doctor", "--json"])
        assert result.exit_code == 1
        assert checks_by_name(result.output)["config"]["state"] == "fail"

    def test_missing_worktree_recreated_with_fix(self, project: Path) -> None:
        shutil.rmtree(worktree_path(project))

        result = runner.invoke(cli.app, ["doctor", "--json"])
        assert result.exit_code == 1
        assert checks_by_name(result.output)["worktree"]["state"] == "fail"

        fixed = runner.invoke(cli.app, ["doctor", "--fix", "--json"])
        assert checks_by_name(fixed.output)["worktree"]["fixed"] is True
        assert runner.invoke(cli.app, ["doctor"]).exit_code == 0

    def test_corrupt_worktree_reported_without_fix(self, project: Path) -> None:
        shutil.rmtree(worktree_path(project))
        worktree_path(project).mkdir()

        result = runner.invoke(cli.app, ["doctor", "--json"])

        assert result.exit_code == 1
        check = checks_by_name(result.output)["worktree"]
        assert check["state"] == "fail"
        assert check["message"].startswith("corrupt")
        assert list(worktree_path(project).iterdir()) == []

    def test_corrupt_worktree_backed_up_and_rebuilt_with_fix(self, project: Path) -> None:
        # A bootstrap killed after mkdir leaves a directory that is not a checkout.
        shutil.rmtree(worktree_path(project))
        worktree_path(project).mkdir()
        (worktree_path(project) / "notes.md").write_text("keep me")

        fixed = runner.invoke(cli.app, ["doctor", "--fix", "--json"])

        check = checks_by_name(fixed.output)["worktree"]
        assert check["fixed"] is True
        assert "backed up" in check["message"]
        assert check_health(project).status is HealthStatus.HEALTHY
        backups = list(backups_root(project).iterdir())
        assert len(backups) == 1
        assert (backups[0] / "notes.md").read_text() == "keep me"
        assert runner.invoke(cli.app, ["doctor"]).exit_code == 0

    def test_unmapped_and_dangling_ids(self, project: Path) -> None:
        gone = runner.invoke(cli.app, ["create", "Will vanish"]).output.split()[1].rstrip(":")
        ctx = load_context(project)
        gone_id = ctx.resolve(gone)
        issue_path(ctx.sync_dir, gone_id).unlink()
        stray = Issue(id=generate_internal_id(), title="No mapping")
        create_issue(ctx.sync_dir, stray)

        result = runner.invoke(cli.app, ["doctor", "--json"])
        checks = checks_by_name(result.output)
        assert result.exit_code == 1
        assert checks["unmapped issues"]["state"] == "fail"
        assert checks["dangling ids"]["state"] == "fail"

        fixed = runner.invoke(cli.app, ["doctor", "--fix"])
        assert fixed.exit_code == 0, fixed.output

        mapping = load_mapping(ctx.sync_dir)
        assert mapping.entry_for(stray.id) is not None
        assert mapping.entry_for(gone_id).active is False
        shown = runner.invoke(cli.app, ["show", gone])
        assert "Issue not found" in shown.output

    def test_orphaned_dependency_removed(self, project: Path) -> None:
        display = runner.invoke(cli.app, ["create", "Has orphan"]).output.split()[1].rstrip(":")
        ctx = load_context(project)
        issue = find_issue(ctx.sync_dir, ctx.resolve(display))
        assert issue is not None
        issue.dependencies.append(DependencyEdge("blocks", generate_internal_id()))
        issue_path(ctx.sync_dir, issue.id).write_text(serialize_issue(issue))

        result = runner.invoke(cli.app, ["doctor", "--json"])
        assert checks_by_name(result.output)["orphaned deps"]["state"] == "fail"

        runner.invoke(cli.app, ["doctor", "--fix"])
        fixed = find_issue(ctx.sync_dir, issue.id)
        assert fixed is not None
        assert fixed.dependencies == []

    def test_temp_files_cleaned(self, project: Path) -> None:
        ctx = load_context(project)
        leftover = ctx.sync_dir / "issues" / ".x.md.123.tmp"
        leftover.write_text("partial")

        result = runner.invoke(cli.app, ["doctor", "--json"])
        assert checks_by_name(result.output)["temp files"]["state"] == "fail"

        runner.invoke(cli.app, ["doctor", "--fix"])
        assert not leftover.exists()

    def test_not_initialized(self, in_git_repo: Path) -> None:
        result = runner.invoke(cli.app, ["doctor"])
        assert result.exit_code == 1
        assert "not initialized" in result.output
