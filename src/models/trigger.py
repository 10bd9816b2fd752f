"""Shared data structures for build trigger scheduling."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict

if TYPE_CHECKING:
    from src.github_client import GitHubInstallationClient


@dataclass(frozen=True, slots=True)
class PullRequestKey:
    """Pull request number within the single watched repository."""

    number: int

    def __post_init__(self) -> None:
        if isinstance(self.number, bool) or not isinstance(self.number, int) or self.number <= 0:
            raise ValueError(f"Pull request number must be a positive integer, got {self.number!r}.")

    @classmethod
    def parse(cls, raw: str | int) -> "PullRequestKey":
        if isinstance(raw, int):
            return cls(raw)
        text = raw.strip()
        if not text.isdigit():
            raise ValueError(f"'{raw}' is not a pull request number.")
        return cls(int(text))

    def __str__(self) -> str:
        return f"#{self.number}"


@dataclass(frozen=True, slots=True)
class RepositoryHandle:
    """Installation-scoped client plus the coordinates of one repository."""

    client: "GitHubInstallationClient"
    installation_id: int
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True, slots=True)
class BacklogEntry:
    key: PullRequestKey
    repository: RepositoryHandle
    job_full_name: str


class ApprovalState(str, Enum):
    APPROVED = "approved"
    AWAITING_REVIEWERS = "awaiting_reviewers"
    CHANGES_REQUESTED = "changes_requested"
    UNSTABLE = "unstable"
    FAILED = "failed"

    @classmethod
    def parse(cls, raw: Any) -> "ApprovalState | None":
        """Return the matching state, or None for anything unrecognized."""

        if isinstance(raw, cls):
            return raw
        try:
            return cls(raw)
        except ValueError:
            return None


DEFER_STATES = frozenset(
    {
        ApprovalState.AWAITING_REVIEWERS,
        ApprovalState.CHANGES_REQUESTED,
        ApprovalState.UNSTABLE,
    }
)


class OutcomeKind(str, Enum):
    TRIGGERED = "triggered"
    DEFERRED = "deferred"
    ABANDONED = "abandoned"
    IGNORED = "ignored"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ProcessOutcome:
    kind: OutcomeKind
    key: PullRequestKey | None = None
    state: str | None = None
    reason: str | None = None
    build_id: Any | None = None
    parameters: Dict[str, Any] | None = None
    dry_run: bool = False
    # Overrides the default log level for this kind of outcome.
    log_level: str | None = None

    @classmethod
    def ignored(
        cls,
        reason: str,
        key: PullRequestKey | None = None,
        *,
        state: str | None = None,
        log_level: str | None = None,
    ) -> "ProcessOutcome":
        return cls(OutcomeKind.IGNORED, key=key, state=state, reason=reason, log_level=log_level)

    @classmethod
    def failed(cls, reason: str, key: PullRequestKey | None = None, *, log_level: str | None = None) -> "ProcessOutcome":
        return cls(OutcomeKind.FAILED, key=key, reason=reason, log_level=log_level)


def build_parameters(key: PullRequestKey) -> Dict[str, Any]:
    """Jenkins parameters for the automation test job."""
    return {"pr_id": key.number, "apk": f"--apk={key.number}.apk"}
