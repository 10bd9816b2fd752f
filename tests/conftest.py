from __future__ import annotations

import os

os.environ.setdefault("BOT_LOG_TO_FILE", "0")

from typing import Any, Dict, List

import pytest

from src.github_client import GitHubAPIError
from src.models.trigger import ApprovalState, PullRequestKey, RepositoryHandle

WATCHED_REPO = "status-im/status-react"
BOT_CONFIG = """
project-board:
  name: Pipeline for QA
  test-column-name: TO TEST
automated-tests:
  repo-full-name: status-im/status-react
  job-full-name: end-to-end-tests/status-app-end-to-end-tests
"""


class FakeGitHub:
    """In-memory stand-in for GitHubInstallationClient."""

    base_url = "https://api.github.com"

    def __init__(self) -> None:
        self.repositories: Dict[str, Dict[str, Any]] = {
            WATCHED_REPO: {"name": "status-react", "owner": {"login": "status-im"}},
        }
        self.files: Dict[str, str] = {f"{WATCHED_REPO}:.github/github-bot.yml": BOT_CONFIG}
        self.columns: Dict[int, Dict[str, Any]] = {
            7: {"id": 7, "name": "TO TEST", "project_url": "https://api.github.com/projects/3"},
            8: {"id": 8, "name": "IN PROGRESS", "project_url": "https://api.github.com/projects/3"},
            9: {"id": 9, "name": "TO TEST", "project_url": "https://api.github.com/projects/4"},
        }
        self.projects: Dict[str, Dict[str, Any]] = {
            "3": {"id": 3, "name": "Pipeline for QA"},
            "4": {"id": 4, "name": "Some other board"},
        }
        self.fail: set[str] = set()
        self.calls: List[str] = []

    def _maybe_fail(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail:
            raise GitHubAPIError(f"{operation} failed", 502, None)

    async def get_repository(self, *, installation_id: int, owner: str, repo: str) -> Dict[str, Any]:
        self._maybe_fail("get_repository")
        try:
            return self.repositories[f"{owner}/{repo}"]
        except KeyError:
            raise GitHubAPIError("Not Found", 404, None) from None

    async def get_file_contents(self, *, installation_id: int, owner: str, repo: str, path: str, ref: str | None = None) -> str | None:
        self._maybe_fail("get_file_contents")
        return self.files.get(f"{owner}/{repo}:{path}")

    async def get_project_column(self, *, installation_id: int, column_id: int) -> Dict[str, Any]:
        self._maybe_fail("get_project_column")
        try:
            return self.columns[column_id]
        except KeyError:
            raise GitHubAPIError("Not Found", 404, None) from None

    async def get_project(self, *, installation_id: int, project_id: int | str) -> Dict[str, Any]:
        self._maybe_fail("get_project")
        try:
            return self.projects[str(project_id)]
        except KeyError:
            raise GitHubAPIError("Not Found", 404, None) from None


class ScriptedOracle:
    """Returns the configured state per PR number; exceptions are raised."""

    def __init__(self, states: Dict[int, Any] | None = None) -> None:
        self.states: Dict[int, Any] = dict(states or {})
        self.calls: List[int] = []

    async def __call__(self, repository: RepositoryHandle, key: PullRequestKey) -> ApprovalState | str:
        self.calls.append(key.number)
        state = self.states[key.number]
        if isinstance(state, Exception):
            raise state
        return state


class FakeJobRunner:
    def __init__(self) -> None:
        self.builds: List[tuple[str, Dict[str, Any]]] = []
        self.attempts = 0
        self.error: Exception | None = None

    async def build_job(self, job_full_name: str, parameters: Dict[str, Any]) -> int:
        self.attempts += 1
        if self.error is not None:
            raise self.error
        self.builds.append((job_full_name, dict(parameters)))
        return len(self.builds)


@pytest.fixture
def github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def oracle() -> ScriptedOracle:
    return ScriptedOracle()


@pytest.fixture
def job_runner() -> FakeJobRunner:
    return FakeJobRunner()


@pytest.fixture
def repository(github: FakeGitHub) -> RepositoryHandle:
    return RepositoryHandle(client=github, installation_id=1, owner="status-im", name="status-react")
