"""Application configuration helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Final

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, BaseModel, ValidationError

# Load environment variables from .env file
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DEFAULT_SWEEP_INTERVAL_SECONDS: Final[int] = 5 * 60
DEFAULT_REPO_CONFIG_PATH: Final[str] = ".github/github-bot.yml"


class SettingsError(RuntimeError):
    """Raised when application configuration is invalid or incomplete."""


@dataclass(frozen=True)
class GitHubAppCredentials:
    github_app_id: int
    github_private_key_pem: str


class Settings(BaseModel):
    """Runtime settings loaded from environment variables."""

    jenkins_url: AnyHttpUrl | None = None
    jenkins_user: str | None = None
    jenkins_api_token: str | None = None
    dry_run: bool = False
    github_api_base_url: AnyHttpUrl = "https://api.github.com"
    github_app_id: int | None = None
    github_private_key_pem: str | None = None
    github_webhook_secret: str | None = None
    sweep_interval_seconds: int = DEFAULT_SWEEP_INTERVAL_SECONDS
    bot_config_path: str | None = None
    repo_config_path: str = DEFAULT_REPO_CONFIG_PATH
    required_approvals: int = 1

    @property
    def trigger_enabled(self) -> bool:
        """The bot only runs when a Jenkins endpoint is configured."""
        return self.jenkins_url is not None

    @property
    def normalized_jenkins_url(self) -> str | None:
        if self.jenkins_url is None:
            return None
        return str(self.jenkins_url).rstrip("/")

    @property
    def normalized_github_api_base_url(self) -> str:
        """Return the GitHub API base URL without a trailing slash."""
        return str(self.github_api_base_url).rstrip("/")

    def require_github_credentials(self) -> GitHubAppCredentials:
        """Ensure GitHub App secrets are configured and return them."""

        missing = []
        if self.github_app_id is None:
            missing.append("GITHUB_APP_ID")
        if not self.github_private_key_pem:
            missing.append("GITHUB_PRIVATE_KEY")

        if missing:
            missing_vars = ", ".join(missing)
            raise SettingsError(
                "GitHub App is not configured. Missing environment variables: "
                f"{missing_vars}."
            )

        return GitHubAppCredentials(
            github_app_id=int(self.github_app_id),
            github_private_key_pem=self.github_private_key_pem,
        )


_FALSE_VALUES: Final[set[str]] = {"0", "false", "no", "off"}


def _parse_flag_env(raw_value: str | None) -> bool:
    """Treat any non-empty value as set, except explicit false values."""

    if raw_value is None or not raw_value.strip():
        return False
    return raw_value.strip().lower() not in _FALSE_VALUES


def _parse_int_env(name: str, raw_value: str | None, *, default: int | None) -> int | None:
    if raw_value is None or not raw_value.strip():
        return default
    try:
        return int(raw_value)
    except ValueError as exc:
        raise SettingsError(f"Invalid value for {name}. It must be an integer.") from exc


def build_settings(env: dict[str, str] | None = None) -> Settings:
    """Build settings from ``env`` (defaults to the process environment)."""

    source = os.environ if env is None else env

    sweep_interval = _parse_int_env(
        "SWEEP_INTERVAL_SECONDS",
        source.get("SWEEP_INTERVAL_SECONDS"),
        default=DEFAULT_SWEEP_INTERVAL_SECONDS,
    )
    if sweep_interval is not None and sweep_interval <= 0:
        raise SettingsError("SWEEP_INTERVAL_SECONDS must be greater than zero.")

    required_approvals = _parse_int_env(
        "REQUIRED_APPROVALS", source.get("REQUIRED_APPROVALS"), default=1
    )

    try:
        return Settings(
            jenkins_url=source.get("JENKINS_URL") or None,
            jenkins_user=source.get("JENKINS_USER") or None,
            jenkins_api_token=source.get("JENKINS_API_TOKEN") or None,
            dry_run=_parse_flag_env(source.get("DRY_RUN")),
            github_api_base_url=source.get("GITHUB_API_BASE_URL") or "https://api.github.com",
            github_app_id=_parse_int_env("GITHUB_APP_ID", source.get("GITHUB_APP_ID"), default=None),
            github_private_key_pem=source.get("GITHUB_PRIVATE_KEY") or None,
            github_webhook_secret=source.get("GITHUB_WEBHOOK_SECRET") or None,
            sweep_interval_seconds=sweep_interval,
            bot_config_path=source.get("BOT_CONFIG_PATH") or None,
            repo_config_path=source.get("REPO_CONFIG_PATH") or DEFAULT_REPO_CONFIG_PATH,
            required_approvals=required_approvals,
        )
    except ValidationError as exc:
        raise SettingsError("Invalid application configuration.") from exc


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return build_settings()


def get_settings() -> Settings:
    """Retrieve cached application settings."""
    return _cached_settings()


def reset_settings_cache() -> None:
    """Clear the cached settings (primarily for tests)."""
    _cached_settings.cache_clear()
