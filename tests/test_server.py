from __future__ import annotations

from pathlib import Path

import pytest

from gbm_mcp.errors import ErrorCode, GBMError
from gbm_mcp.runtime import (
    RuntimeSettings,
    get_runtime_settings,
    load_repo_settings,
    repo_config_path,
    save_repo_settings,
    validate_remote_name,
)


def test_runtime_settings_defaults(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)

    settings = get_runtime_settings(env={})

    assert settings.repo_path == str(tmp_path)
    assert settings.target_branch == "main"
    assert settings.remote == "origin"
    assert settings.git_timeout_seconds == 15.0
    assert settings.cache_ttl_seconds == 5.0
    assert settings.prune_check_interval_seconds == 3600
    assert settings.sync_reflog is True
    assert settings.log_level == "WARNING"


def test_runtime_settings_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("GBM_REPO_PATH", "/srv/repo")
    monkeypatch.setenv("GBM_TARGET_BRANCH", "develop")
    monkeypatch.setenv("GBM_REMOTE", "upstream")
    monkeypatch.setenv("GBM_GIT_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("GBM_METADATA_CACHE_TTL_SECONDS", "0")
    monkeypatch.setenv("GBM_PRUNE_CHECK_INTERVAL_SECONDS", "60")
    monkeypatch.setenv("GBM_SYNC_REFLOG", "off")
    monkeypatch.setenv("GBM_LOG_LEVEL", "debug")

    settings = get_runtime_settings()

    assert settings == RuntimeSettings(
        repo_path="/srv/repo",
        target_branch="develop",
        remote="upstream",
        git_timeout_seconds=2.5,
        cache_ttl_seconds=0.0,
        prune_check_interval_seconds=60,
        sync_reflog=False,
        log_level="DEBUG",
    )


def test_runtime_settings_explicit_empty_env_mapping(monkeypatch) -> None:
    monkeypatch.setenv("GBM_TARGET_BRANCH", "develop")

    settings = get_runtime_settings(env={})
    assert settings.target_branch == "main"


@pytest.mark.parametrize(
    "env",
    [
        {"GBM_GIT_TIMEOUT_SECONDS": "soon"},
        {"GBM_GIT_TIMEOUT_SECONDS": "0"},
        {"GBM_GIT_TIMEOUT_SECONDS": "inf"},
        {"GBM_METADATA_CACHE_TTL_SECONDS": "-1"},
        {"GBM_PRUNE_CHECK_INTERVAL_SECONDS": "1.5"},
        {"GBM_PRUNE_CHECK_INTERVAL_SECONDS": "-5"},
        {"GBM_SYNC_REFLOG": "sometimes"},
        {"GBM_LOG_LEVEL": "LOUD"},
        {"GBM_REMOTE": "origin; rm -rf /"},
        {"GBM_REMOTE": "-upload-pack"},
    ],
)
def test_runtime_settings_invalid_values(env: dict[str, str]) -> None:
    with pytest.raises(ValueError):
        get_runtime_settings(env=env)


@pytest.mark.parametrize("remote", ["origin", "upstream", "my-fork", "team.remote_2"])
def test_validate_remote_name_accepts_plain_names(remote: str) -> None:
    validate_remote_name(remote, "remote")


def test_load_repo_settings_overlays_file_values(tmp_path: Path) -> None:
    (tmp_path / ".git").mkdir()
    repo_config_path(tmp_path).write_text("target_branch: trunk\nremote: upstream\nunknown: 1\n", encoding="utf-8")

    settings = load_repo_settings(RuntimeSettings(repo_path=str(tmp_path)))

    assert settings.target_branch == "trunk"
    assert settings.remote == "upstream"


def test_load_repo_settings_without_file_keeps_settings(tmp_path: Path) -> None:
    base = RuntimeSettings(repo_path=str(tmp_path), target_branch="develop")
    assert load_repo_settings(base) is base


def test_load_repo_settings_ignores_blank_and_non_string_values(tmp_path: Path) -> None:
    (tmp_path / ".git").mkdir()
    repo_config_path(tmp_path).write_text("target_branch: ''\nremote: 42\n", encoding="utf-8")

    settings = load_repo_settings(RuntimeSettings(repo_path=str(tmp_path)))

    assert settings.target_branch == "main"
    assert settings.remote == "origin"


def test_load_repo_settings_rejects_unsafe_remote(tmp_path: Path) -> None:
    (tmp_path / ".git").mkdir()
    repo_config_path(tmp_path).write_text("remote: '--exec=evil'\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_repo_settings(RuntimeSettings(repo_path=str(tmp_path)))


def test_load_repo_settings_reports_broken_yaml(tmp_path: Path) -> None:
    (tmp_path / ".git").mkdir()
    repo_config_path(tmp_path).write_text("target_branch: [unclosed\n", encoding="utf-8")

    with pytest.raises(GBMError) as exc_info:
        load_repo_settings(RuntimeSettings(repo_path=str(tmp_path)))
    assert exc_info.value.code == ErrorCode.STORAGE_FAILURE


def test_save_repo_settings_merges_values(tmp_path: Path) -> None:
    (tmp_path / ".git").mkdir()
    save_repo_settings(tmp_path, {"remote": "upstream"})

    payload = save_repo_settings(tmp_path, {"target_branch": "develop"})

    assert payload == {"remote": "upstream", "target_branch": "develop"}
    settings = load_repo_settings(RuntimeSettings(repo_path=str(tmp_path)))
    assert (settings.target_branch, settings.remote) == ("develop", "upstream")

    with pytest.raises(ValueError):
        save_repo_settings(tmp_path, {"colour": "blue"})
