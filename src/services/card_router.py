"""Resolve project card events to pull requests awaiting an automation test build."""

from __future__ import annotations

from typing import Any, Dict, Tuple

from src.config import DEFAULT_REPO_CONFIG_PATH
from src.github_client import GitHubAPIError, GitHubInstallationClient
from src.logger import get_logger, log_timing, log_with_context
from src.models.trigger import ProcessOutcome, PullRequestKey, RepositoryHandle
from src.queue.models import CardEvent
from src.repo_config import load_repository_config
from src.services.trigger_scheduler import TriggerScheduler, log_outcome

logger = get_logger()

SUBSCRIBED_ACTIONS = frozenset({"created", "moved"})


def repository_from_content_url(content_url: str | None, api_base_url: str) -> Tuple[str, str] | None:
    """Return ``(owner, repo)`` for ``<api>/repos/<owner>/<repo>/...`` URLs."""

    if not content_url:
        return None
    prefix = f"{api_base_url.rstrip('/')}/repos/"
    if not content_url.startswith(prefix):
        return None
    components = content_url[len(prefix):].split("/")
    if len(components) < 2 or not components[0] or not components[1]:
        return None
    return components[0], components[1]


def last_path_segment(url: str) -> str:
    return url.rstrip("/").rsplit("/", 1)[-1]


class CardEventRouter:
    """Filters card events down to the watched repository, board and column."""

    def __init__(
        self,
        *,
        github: GitHubInstallationClient,
        scheduler: TriggerScheduler,
        config_path: str = DEFAULT_REPO_CONFIG_PATH,
        default_config: Dict[str, Any] | None = None,
    ) -> None:
        self._github = github
        self._scheduler = scheduler
        self._config_path = config_path
        self._default_config = default_config or {}

    async def handle(self, event: CardEvent) -> ProcessOutcome:
        repository: str | None = None
        job: str | None = None
        try:
            outcome, repository, job = await self._route(event)
        except Exception as exc:  # pragma: no cover - every external call is guarded in _route
            outcome = ProcessOutcome.failed(f"Unexpected error while routing card {event.card_id}: {exc}")
        log_outcome(outcome, repository=repository, job=job)
        return outcome

    async def _route(self, event: CardEvent) -> Tuple[ProcessOutcome, str | None, str | None]:
        if event.action not in SUBSCRIBED_ACTIONS:
            return ProcessOutcome.ignored(f"Card action '{event.action}' is not handled"), None, None

        coordinates = repository_from_content_url(event.content_url, self._github.base_url)
        if coordinates is None:
            reason = "Card is a note" if event.is_note else f"Card content '{event.content_url}' is not a repository resource"
            return ProcessOutcome.ignored(reason), None, None
        owner, repo = coordinates
        ctx_logger = log_with_context(logger, repository=f"{owner}/{repo}", card_id=event.card_id)

        try:
            with log_timing(ctx_logger, "fetch_repository"):
                repo_data = await self._github.get_repository(
                    installation_id=event.installation_id, owner=owner, repo=repo
                )
        except GitHubAPIError as exc:
            return _fetch_failed("repo", f"{owner}/{repo}", exc), f"{owner}/{repo}", None

        repository = RepositoryHandle(
            client=self._github,
            installation_id=event.installation_id,
            owner=(repo_data.get("owner") or {}).get("login") or owner,
            name=repo_data.get("name") or repo,
        )
        full_name = repository.full_name

        try:
            config = await load_repository_config(
                repository, path=self._config_path, defaults=self._default_config
            )
        except GitHubAPIError as exc:
            return _fetch_failed("bot configuration", full_name, exc), full_name, None

        project_board = config.project_board()
        automated_tests = config.automated_tests()
        if project_board is None or automated_tests is None:
            return ProcessOutcome.ignored("Repository is not configured for automated tests"), full_name, None

        if event.is_note:
            return ProcessOutcome.ignored("Card is a note, ignoring"), full_name, None

        if full_name.casefold() != automated_tests.repo_full_name.casefold():
            return (
                ProcessOutcome.ignored(
                    f"Pull request project doesn't match watched repo ({full_name} != {automated_tests.repo_full_name})"
                ),
                full_name,
                None,
            )

        try:
            with log_timing(ctx_logger, "fetch_project_column"):
                column = await self._github.get_project_column(
                    installation_id=event.installation_id, column_id=event.column_id
                )
        except GitHubAPIError as exc:
            return _fetch_failed("project column", str(event.column_id), exc), full_name, None

        if column.get("name") != project_board.test_column_name:
            return (
                ProcessOutcome.ignored(
                    f"Card column name doesn't match watched column name "
                    f"({column.get('name')!r} != {project_board.test_column_name!r})"
                ),
                full_name,
                None,
            )

        project_url = column.get("project_url") or ""
        project_id = last_path_segment(project_url)
        if not project_id:
            return ProcessOutcome.failed(f"Column {event.column_id} has no project URL", log_level="WARNING"), full_name, None
        try:
            with log_timing(ctx_logger, "fetch_project"):
                project = await self._github.get_project(
                    installation_id=event.installation_id, project_id=project_id
                )
        except GitHubAPIError as exc:
            return _fetch_failed("project", project_id, exc), full_name, None

        if project.get("name") != project_board.name:
            return (
                ProcessOutcome.ignored(
                    f"Card project name doesn't match watched project name "
                    f"({project.get('name')!r} != {project_board.name!r})"
                ),
                full_name,
                None,
            )

        try:
            key = PullRequestKey.parse(last_path_segment(event.content_url or ""))
        except ValueError as exc:
            return ProcessOutcome.ignored(str(exc), log_level="WARNING"), full_name, None

        job = automated_tests.job_full_name
        outcome = await self._scheduler.process(repository, key, job)
        return outcome, full_name, job


def _fetch_failed(what: str, identifier: str, exc: GitHubAPIError) -> ProcessOutcome:
    return ProcessOutcome.failed(
        f"Error while fetching {what} {identifier} (status={exc.status_code}): {exc}",
        log_level="WARNING",
    )
