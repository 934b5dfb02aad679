from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

pytest.importorskip("mcp")

from gbm_mcp import server
from gbm_mcp.runtime import RuntimeSettings


@pytest.fixture(autouse=True)
def _reset_engines(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(server, "_engines", {})
    monkeypatch.setattr(
        server,
        "runtime_settings",
        RuntimeSettings(repo_path=str(tmp_path), cache_ttl_seconds=0.0, sync_reflog=False),
    )


def test_server_tool_flow(git_repo: Path) -> None:
    directory = str(git_repo)

    created = server.gbm_create_branch(directory=directory, name="feature/api")
    assert created["status"] == "success"
    assert created["metadata"]["checkout_count"] == 1

    starred = server.gbm_toggle_star(directory=directory, branch="feature/api")
    assert starred["metadata"]["starred"] is True

    described = server.gbm_update_description(directory=directory, branch="feature/api", description="API work")
    assert described["metadata"]["description"] == "API work"

    listed = server.gbm_list_branches(directory=directory)
    assert listed["status"] == "success"
    assert listed["current_branch"] == "feature/api"
    assert [branch["name"] for branch in listed["branches"]] == ["feature/api", "main"]

    only_starred = server.gbm_list_branches(directory=directory, view="starred")
    assert [branch["name"] for branch in only_starred["branches"]] == ["feature/api"]

    tree = server.gbm_tree(directory=directory)
    assert tree["tree"]["roots"][0]["kind"] == "dir"
    assert tree["tree"]["roots"][0]["has_current_branch"] is True

    checkout = server.gbm_checkout(directory=directory, branch="main")
    assert checkout["status"] == "success"

    stats = server.gbm_stats(directory=directory)
    assert stats["starred_branches"] == 1
    assert stats["current_branch"] == "main"

    deleted = server.gbm_delete_branch(directory=directory, branch="feature/api")
    assert deleted["status"] == "success"
    assert server.gbm_get_branch(directory=directory, branch="feature/api")["error_code"] == "BRANCH_NOT_FOUND"


def test_server_tool_payloads_carry_correlation_id(git_repo: Path) -> None:
    first = server.gbm_current_branch(directory=str(git_repo))
    second = server.gbm_current_branch(directory=str(git_repo))

    assert first["status"] == "success"
    assert first["branch"]["name"] == "main"
    assert len(first["correlation_id"]) == 12
    assert first["correlation_id"] != second["correlation_id"]


def test_server_reuses_engine_per_directory(git_repo: Path) -> None:
    response = server.gbm_set_target_branch(directory=str(git_repo), name="develop")
    assert response["target_branch"] == "develop"

    info = server.gbm_repository_info(directory=str(git_repo))
    assert info["target_branch"] == "develop"
    assert info["valid"] is True
    assert len(server._engines) == 1


def test_server_reports_structured_errors(git_repo: Path, tmp_path: Path) -> None:
    invalid = server.gbm_checkout(directory=str(git_repo), branch="bad name")
    assert invalid["status"] == "error"
    assert invalid["error_code"] == "INVALID_BRANCH_NAME"
    assert invalid["correlation_id"]

    not_repo = tmp_path / "plain"
    not_repo.mkdir()
    listed = server.gbm_list_branches(directory=str(not_repo))
    assert listed["status"] == "success"
    assert listed["repository_valid"] is False

    diff = server.gbm_commit_diff(directory=str(not_repo), commit_hash="abcdef")
    assert diff["error_code"] == "NOT_A_REPOSITORY"


def test_server_converts_unexpected_exceptions(monkeypatch, git_repo: Path) -> None:
    def _boom(directory: str):
        raise RuntimeError("engine exploded")

    monkeypatch.setattr(server, "_engine_for", _boom)

    response = server.gbm_stats(directory=str(git_repo))

    assert response["status"] == "error"
    assert response["error_code"] == "INTERNAL_ERROR"
    assert response["message"] == "engine exploded"


def test_server_logs_tool_phases(git_repo: Path, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.INFO, logger="gbm_mcp.server"):
        response = server.gbm_checkout_history(directory=str(git_repo))

    records = [
        json.loads(record.getMessage().split(" ", 1)[1])
        for record in caplog.records
        if record.getMessage().startswith("mcp_tool_phase ")
    ]
    assert [record["phase"] for record in records] == ["engine_resolution", "operation_execution", "total"]
    assert all(record["tool_name"] == "gbm_checkout_history" for record in records)
    assert all(record["correlation_id"] == response["correlation_id"] for record in records)


def test_server_merged_and_patch_tools(git_repo: Path, git, commit_file) -> None:
    git(git_repo, "checkout", "-q", "-b", "topic")
    commit_file(git_repo, "topic.txt", "topic\n", "topic work")
    git(git_repo, "checkout", "-q", "main")
    git(git_repo, "merge", "-q", "--squash", "topic")
    git(git_repo, "commit", "-q", "-m", "topic squashed")

    merged = server.gbm_merged_branches(directory=str(git_repo))
    assert merged["status"] == "success"
    assert merged["squashed"] == ["topic"]

    commits = server.gbm_recent_commits(directory=str(git_repo), limit=2)
    assert [commit["message"] for commit in commits["commits"]] == ["topic squashed", "initial commit"]

    patch = server.gbm_branch_patch(directory=str(git_repo), branch="topic")
    assert "topic.txt" in patch["patch"]

    auto_prune = server.gbm_auto_prune(directory=str(git_repo), enable=True)
    assert auto_prune["enabled"] is True
