from __future__ import annotations

import asyncio
from typing import Any, Dict, List

import pytest

from src.models.trigger import ApprovalState, PullRequestKey, RepositoryHandle
from src.services.approval_state import (
    ReviewApprovalOracle,
    classify_reviews,
    classify_status,
    latest_review_states,
)


def _review(login: str, state: str) -> Dict[str, Any]:
    return {"user": {"login": login}, "state": state}


class PullRequestGitHub:
    def __init__(self, pull: Dict[str, Any], reviews: List[Dict[str, Any]], status: Dict[str, Any]) -> None:
        self.pull = pull
        self.reviews = reviews
        self.status = status
        self.status_refs: List[str] = []

    async def get_pull_request(self, *, installation_id, owner, repo, pull_number):
        return self.pull

    async def list_pull_request_reviews(self, *, installation_id, owner, repo, pull_number):
        return self.reviews

    async def get_combined_status(self, *, installation_id, owner, repo, ref):
        self.status_refs.append(ref)
        return self.status


def _oracle_state(github: PullRequestGitHub, **kwargs: Any) -> ApprovalState | str:
    repository = RepositoryHandle(client=github, installation_id=1, owner="status-im", name="status-react")
    return asyncio.run(ReviewApprovalOracle(**kwargs)(repository, PullRequestKey(42)))


OPEN_PR = {"state": "open", "merged": False, "head": {"sha": "abc123"}, "mergeable_state": "clean"}


def test_latest_review_wins_and_comments_are_ignored() -> None:
    reviews = [
        _review("alice", "CHANGES_REQUESTED"),
        _review("alice", "COMMENTED"),
        _review("bob", "APPROVED"),
        _review("alice", "APPROVED"),
    ]
    assert latest_review_states(reviews) == {"alice": "APPROVED", "bob": "APPROVED"}


def test_classify_reviews() -> None:
    assert classify_reviews([]) is ApprovalState.AWAITING_REVIEWERS
    assert classify_reviews([_review("a", "APPROVED"), _review("b", "CHANGES_REQUESTED")]) is ApprovalState.CHANGES_REQUESTED
    assert classify_reviews([_review("a", "APPROVED")]) is None
    assert classify_reviews([_review("a", "APPROVED")], required_approvals=2) is ApprovalState.AWAITING_REVIEWERS


@pytest.mark.parametrize(
    ("combined", "mergeable", "total", "expected"),
    [
        ("success", "clean", 3, ApprovalState.APPROVED),
        ("failure", "clean", 3, ApprovalState.FAILED),
        ("error", "clean", 1, ApprovalState.FAILED),
        ("pending", "clean", 2, ApprovalState.UNSTABLE),
        ("success", "unstable", 2, ApprovalState.UNSTABLE),
        ("pending", "clean", 0, ApprovalState.APPROVED),
        ("neutral", "clean", 1, "neutral"),
    ],
)
def test_classify_status(combined, mergeable, total, expected) -> None:
    assert classify_status(combined, mergeable, total_count=total) == expected


def test_oracle_approves_reviewed_green_pull_request() -> None:
    github = PullRequestGitHub(OPEN_PR, [_review("alice", "APPROVED")], {"state": "success", "total_count": 2})

    assert _oracle_state(github) is ApprovalState.APPROVED
    assert github.status_refs == ["abc123"]


def test_oracle_reports_missing_reviews_before_checking_status() -> None:
    github = PullRequestGitHub(OPEN_PR, [], {"state": "failure", "total_count": 1})

    assert _oracle_state(github) is ApprovalState.AWAITING_REVIEWERS
    assert github.status_refs == []


def test_closed_pull_request_is_failed() -> None:
    github = PullRequestGitHub({**OPEN_PR, "state": "closed"}, [], {})

    assert _oracle_state(github) is ApprovalState.FAILED
