"""Per-repository bot configuration (``.github/github-bot.yml``)."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.config import DEFAULT_REPO_CONFIG_PATH
from src.logger import get_logger, log_with_context
from src.models.trigger import RepositoryHandle

logger = get_logger()

PROJECT_BOARD_SECTION = "project-board"
AUTOMATED_TESTS_SECTION = "automated-tests"


class ProjectBoardConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    test_column_name: str = Field(alias="test-column-name")


class AutomatedTestsConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    repo_full_name: str = Field(alias="repo-full-name")
    job_full_name: str = Field(alias="job-full-name")


class RepositoryConfig(BaseModel):
    """Merged configuration document for one repository."""

    raw: Dict[str, Any] = Field(default_factory=dict)

    def project_board(self) -> ProjectBoardConfig | None:
        return _section(self.raw, PROJECT_BOARD_SECTION, ProjectBoardConfig)

    def automated_tests(self) -> AutomatedTestsConfig | None:
        return _section(self.raw, AUTOMATED_TESTS_SECTION, AutomatedTestsConfig)


def _section(raw: Dict[str, Any], name: str, model: type[BaseModel]) -> Any:
    value = raw.get(name)
    if not isinstance(value, dict):
        return None
    try:
        return model.model_validate(value)
    except ValidationError as exc:
        logger.warning(f"Ignoring incomplete '{name}' configuration section: {exc.error_count()} error(s)")
        return None


def parse_config_document(text: str | None) -> Dict[str, Any]:
    """Parse a YAML config document; anything but a mapping becomes ``{}``."""

    if not text:
        return {}
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        logger.warning(f"Unable to parse bot configuration: {exc}")
        return {}
    if not isinstance(document, dict):
        return {}
    return document


def merge_config(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Shallow merge: repository sections replace default sections wholesale."""

    merged = dict(defaults)
    merged.update(overrides)
    return merged


@lru_cache(maxsize=8)
def load_default_config(path: str | None) -> Dict[str, Any]:
    """Load the bot-level defaults file, or ``{}`` when none is configured."""

    if not path:
        return {}
    config_path = Path(path).expanduser()
    if not config_path.is_file():
        logger.warning(f"Default bot configuration '{config_path}' not found; using no defaults")
        return {}
    return parse_config_document(config_path.read_text(encoding="utf-8"))


async def load_repository_config(
    repository: RepositoryHandle,
    *,
    path: str = DEFAULT_REPO_CONFIG_PATH,
    defaults: Dict[str, Any] | None = None,
) -> RepositoryConfig:
    """Fetch ``path`` from the repository and merge it over ``defaults``.

    A missing file yields the defaults. API errors propagate as ``GitHubAPIError``.
    """

    text = await repository.client.get_file_contents(
        installation_id=repository.installation_id,
        owner=repository.owner,
        repo=repository.name,
        path=path,
    )
    if text is None:
        log_with_context(logger, repository=repository.full_name).trace(
            f"No '{path}' in repository; using default configuration"
        )
    return RepositoryConfig(raw=merge_config(defaults or {}, parse_config_document(text)))
