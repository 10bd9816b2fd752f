"""Reduce a pull request's reviews and commit statuses to one approval state."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Iterable, List

from src.logger import get_logger, log_with_context
from src.models.trigger import ApprovalState, PullRequestKey, RepositoryHandle

logger = get_logger()

ApprovalStateOracle = Callable[[RepositoryHandle, PullRequestKey], Awaitable[ApprovalState | str]]

_DECISIVE_REVIEW_STATES = {"APPROVED", "CHANGES_REQUESTED", "DISMISSED"}


def latest_review_states(reviews: Iterable[Dict[str, Any]]) -> Dict[str, str]:
    """Map each reviewer to their most recent decisive review state.

    Plain comments do not override an earlier approval or change request.
    Reviews are returned by GitHub in chronological order.
    """

    latest: Dict[str, str] = {}
    for review in reviews:
        state = (review.get("state") or "").upper()
        login = (review.get("user") or {}).get("login")
        if not login or state not in _DECISIVE_REVIEW_STATES:
            continue
        latest[login] = state
    return latest


def classify_reviews(reviews: List[Dict[str, Any]], *, required_approvals: int = 1) -> ApprovalState | None:
    """Return a blocking review state, or None when reviews allow the build."""

    states = latest_review_states(reviews).values()
    if any(state == "CHANGES_REQUESTED" for state in states):
        return ApprovalState.CHANGES_REQUESTED
    approvals = sum(1 for state in states if state == "APPROVED")
    if approvals < required_approvals:
        return ApprovalState.AWAITING_REVIEWERS
    return None


def classify_status(
    combined_state: str | None,
    mergeable_state: str | None = None,
    *,
    total_count: int | None = None,
) -> ApprovalState | str:
    # A commit without any statuses reports "pending" forever.
    if total_count == 0 and mergeable_state != "unstable":
        return ApprovalState.APPROVED
    if combined_state in ("failure", "error"):
        return ApprovalState.FAILED
    if combined_state == "pending" or mergeable_state == "unstable":
        return ApprovalState.UNSTABLE
    if combined_state == "success":
        return ApprovalState.APPROVED
    return combined_state or "unknown"


class ReviewApprovalOracle:
    """Approval-state oracle backed by the GitHub pulls, reviews and status APIs."""

    def __init__(self, *, required_approvals: int = 1) -> None:
        self._required_approvals = required_approvals

    async def __call__(self, repository: RepositoryHandle, key: PullRequestKey) -> ApprovalState | str:
        client = repository.client
        coordinates = {
            "installation_id": repository.installation_id,
            "owner": repository.owner,
            "repo": repository.name,
        }
        ctx_logger = log_with_context(logger, repository=repository.full_name, pr_number=key.number)

        pull_request = await client.get_pull_request(pull_number=key.number, **coordinates)
        if pull_request.get("state") != "open" or pull_request.get("merged"):
            ctx_logger.debug("Pull request is no longer open")
            return ApprovalState.FAILED

        reviews = await client.list_pull_request_reviews(pull_number=key.number, **coordinates)
        review_state = classify_reviews(reviews, required_approvals=self._required_approvals)
        if review_state is not None:
            return review_state

        head_sha = (pull_request.get("head") or {}).get("sha")
        if not head_sha:
            raise ValueError(f"Pull request {key} has no head commit.")
        status = await client.get_combined_status(ref=head_sha, **coordinates)
        return classify_status(
            status.get("state"),
            pull_request.get("mergeable_state"),
            total_count=status.get("total_count"),
        )
