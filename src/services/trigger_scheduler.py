"""Approval gating and retry backlog for automation test builds."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Protocol

from src.config import DEFAULT_SWEEP_INTERVAL_SECONDS
from src.logger import get_logger, log_failure, log_with_context
from src.models.trigger import (
    DEFER_STATES,
    ApprovalState,
    BacklogEntry,
    OutcomeKind,
    ProcessOutcome,
    PullRequestKey,
    RepositoryHandle,
    build_parameters,
)
from src.services.approval_state import ApprovalStateOracle

logger = get_logger()


class JobRunner(Protocol):
    async def build_job(self, job_full_name: str, parameters: Dict[str, Any]) -> Any: ...


_DEFAULT_LEVELS = {
    OutcomeKind.TRIGGERED: "INFO",
    OutcomeKind.DEFERRED: "DEBUG",
    OutcomeKind.ABANDONED: "DEBUG",
    OutcomeKind.IGNORED: "TRACE",
    OutcomeKind.FAILED: "ERROR",
}


def log_outcome(outcome: ProcessOutcome, *, repository: str | None = None, job: str | None = None) -> None:
    """Log a routing or scheduling outcome at the level its kind calls for."""

    ctx_logger = log_with_context(
        logger,
        repository=repository,
        pr_number=outcome.key.number if outcome.key else None,
        job=job,
    )
    level = outcome.log_level or _DEFAULT_LEVELS[outcome.kind]

    if outcome.kind is OutcomeKind.TRIGGERED:
        verb = "Would start" if outcome.dry_run else "Started"
        ctx_logger.log(level, f"{verb} Jenkins job for {outcome.key} {outcome.parameters} (build={outcome.build_id})")
    elif outcome.kind is OutcomeKind.DEFERRED:
        ctx_logger.log(level, f"{outcome.key} added to backlog: {outcome.reason}")
    else:
        ctx_logger.log(level, f"{outcome.kind.value.capitalize()}: {outcome.reason}")


class TriggerScheduler:
    """Owns the retry backlog and decides, per pull request, whether to build.

    The backlog maps each ``PullRequestKey`` to at most one ``BacklogEntry``.
    ``process`` evicts the key before asking the oracle, so an entry only
    survives a call when the new decision is to retry later. Backlog mutations
    happen between awaits on a single event loop and need no lock.
    """

    def __init__(
        self,
        *,
        oracle: ApprovalStateOracle,
        job_runner: JobRunner,
        dry_run: bool = False,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self._oracle = oracle
        self._job_runner = job_runner
        self._dry_run = dry_run
        self._sweep_interval = sweep_interval
        self._backlog: Dict[PullRequestKey, BacklogEntry] = {}
        self._sweep_task: asyncio.Task[None] | None = None

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    def pending(self) -> int:
        return len(self._backlog)

    def pending_keys(self) -> List[PullRequestKey]:
        return sorted(self._backlog, key=lambda key: key.number)

    def backlog_entry(self, key: PullRequestKey) -> BacklogEntry | None:
        return self._backlog.get(key)

    async def process(
        self,
        repository: RepositoryHandle,
        key: PullRequestKey,
        job_full_name: str,
    ) -> ProcessOutcome:
        """Decide whether ``key`` builds now, waits in the backlog, or is dropped."""

        self._backlog.pop(key, None)
        entry = BacklogEntry(key=key, repository=repository, job_full_name=job_full_name)

        try:
            raw_state = await self._oracle(repository, key)
        except Exception as exc:  # noqa: BLE001 - oracle failures must not reach the caller
            return ProcessOutcome.failed(f"Couldn't calculate the PR approval state: {exc}", key)

        state = ApprovalState.parse(raw_state)
        state_text = state.value if state is not None else str(raw_state)

        if state in DEFER_STATES:
            self._backlog[key] = entry
            return ProcessOutcome(
                OutcomeKind.DEFERRED,
                key=key,
                state=state_text,
                reason=f"state is '{state_text}', checking again periodically",
            )
        if state is ApprovalState.FAILED:
            return ProcessOutcome(OutcomeKind.ABANDONED, key=key, state=state_text, reason=f"state is '{state_text}'")
        if state is None:
            return ProcessOutcome.ignored(
                f"state is '{state_text}', ignoring", key, state=state_text, log_level="WARNING"
            )

        return await self._trigger(entry, state_text)

    async def _trigger(self, entry: BacklogEntry, state_text: str) -> ProcessOutcome:
        parameters = build_parameters(entry.key)

        if self._dry_run:
            return ProcessOutcome(
                OutcomeKind.TRIGGERED,
                key=entry.key,
                state=state_text,
                parameters=parameters,
                dry_run=True,
            )

        log_with_context(logger, repository=entry.repository.full_name, pr_number=entry.key.number).info(
            f"Starting {entry.job_full_name} job in Jenkins {parameters}"
        )
        try:
            build_id = await self._job_runner.build_job(entry.job_full_name, parameters)
        except Exception as exc:  # noqa: BLE001 - a failed submission is retried by the next sweep
            self._backlog[entry.key] = entry
            return ProcessOutcome(
                OutcomeKind.DEFERRED,
                key=entry.key,
                state=state_text,
                parameters=parameters,
                reason=f"error while triggering Jenkins build, will retry later: {exc}",
                log_level="ERROR",
            )

        return ProcessOutcome(
            OutcomeKind.TRIGGERED,
            key=entry.key,
            state=state_text,
            parameters=parameters,
            build_id=build_id,
        )

    async def sweep(self) -> List[ProcessOutcome]:
        """Re-process every backlogged pull request once."""

        snapshot = list(self._backlog.values())
        logger.trace(f"Processing {len(snapshot)} pending PRs")

        outcomes: List[ProcessOutcome] = []
        for entry in snapshot:
            try:
                outcome = await self.process(entry.repository, entry.key, entry.job_full_name)
            except Exception as exc:  # pragma: no cover - process already guards its external calls
                outcome = ProcessOutcome.failed(f"Unexpected error while re-processing: {exc}", entry.key)
            log_outcome(outcome, repository=entry.repository.full_name, job=entry.job_full_name)
            outcomes.append(outcome)

        logger.trace(f"Finished processing {len(snapshot)} pending PRs")
        return outcomes

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                await self.sweep()
            except Exception as exc:  # pragma: no cover - defensive logging
                log_failure(logger, "Backlog sweep failed", exc)

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""

        if self._sweep_task is None or self._sweep_task.done():
            loop = asyncio.get_running_loop()
            self._sweep_task = loop.create_task(self._sweep_loop())
            logger.info(f"Backlog sweep scheduled every {self._sweep_interval:g}s")

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def shutdown(self) -> None:
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:  # pragma: no cover - expected during shutdown
            pass
        finally:
            self._sweep_task = None
