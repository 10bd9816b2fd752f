from __future__ import annotations

import asyncio

import pytest

from src.github_client import GitHubAPIError
from src.repo_config import (
    RepositoryConfig,
    load_default_config,
    load_repository_config,
    merge_config,
    parse_config_document,
)


def test_parse_config_document_tolerates_bad_input() -> None:
    assert parse_config_document(None) == {}
    assert parse_config_document("") == {}
    assert parse_config_document("- just\n- a list\n") == {}
    assert parse_config_document("key: [unterminated") == {}
    assert parse_config_document("project-board:\n  name: QA\n") == {"project-board": {"name": "QA"}}


def test_merge_replaces_whole_sections() -> None:
    defaults = {"project-board": {"name": "Default", "test-column-name": "TO TEST"}, "other": 1}
    overrides = {"project-board": {"name": "Custom"}}

    assert merge_config(defaults, overrides) == {"project-board": {"name": "Custom"}, "other": 1}


def test_sections_require_all_keys() -> None:
    config = RepositoryConfig(
        raw={
            "project-board": {"name": "Pipeline for QA"},
            "automated-tests": {"repo-full-name": "o/r", "job-full-name": "e2e"},
        }
    )

    assert config.project_board() is None
    automated = config.automated_tests()
    assert automated.repo_full_name == "o/r"
    assert automated.job_full_name == "e2e"


def test_load_repository_config_merges_over_defaults(repository, github) -> None:
    config = asyncio.run(
        load_repository_config(repository, defaults={"extra-section": {"enabled": True}})
    )

    assert config.project_board().test_column_name == "TO TEST"
    assert config.raw["extra-section"] == {"enabled": True}


def test_load_repository_config_missing_file_uses_defaults(repository, github) -> None:
    github.files.clear()
    defaults = {"project-board": {"name": "QA", "test-column-name": "TO TEST"}}

    config = asyncio.run(load_repository_config(repository, defaults=defaults))

    assert config.raw == defaults
    assert config.automated_tests() is None


def test_load_repository_config_propagates_api_errors(repository, github) -> None:
    github.fail.add("get_file_contents")

    with pytest.raises(GitHubAPIError):
        asyncio.run(load_repository_config(repository))


def test_load_default_config_reads_yaml_file(tmp_path) -> None:
    path = tmp_path / "github-bot.yml"
    path.write_text("project-board:\n  name: QA\n  test-column-name: TO TEST\n", encoding="utf-8")

    assert load_default_config(str(path)) == {"project-board": {"name": "QA", "test-column-name": "TO TEST"}}
    assert load_default_config(None) == {}
    assert load_default_config(str(tmp_path / "missing.yml")) == {}
