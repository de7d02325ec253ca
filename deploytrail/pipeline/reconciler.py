"""Reconcile deployment observations into per-environment commit sets.

A deployment of commit ``c`` to an environment carries every older commit on
the branch with it, so the environment stage is rebuilt by walking the
pipeline's Commit-stage history from newest to oldest:

- a commit with a recorded deployment is accepted at its earliest deployment
  time, which becomes the watermark;
- a commit older than the newest recorded deployment is accepted at the
  current watermark;
- commits newer than every recorded deployment are excluded.

The walk is pure (:func:`reconcile_environment_stage`); :class:`PipelineReconciler`
wraps it in a load, reconcile, save cycle serialized per pipeline key.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import typing as typ

import msgspec

from .errors import (
    MissingCommitStageError,
    PipelineVersionConflictError,
    ReservedStageError,
)
from .models import COMMIT_STAGE, EnvironmentStage, Pipeline, PipelineCommit

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from .models import DeploymentObservation

logger = logging.getLogger(__name__)


class PipelineStore(typ.Protocol):
    """Persistence for pipeline records."""

    async def load_pipeline(self, pipeline_key: str) -> Pipeline | None:
        """Return the stored pipeline, or None when it has never been saved."""
        ...

    async def save_pipeline(self, pipeline: Pipeline) -> Pipeline:
        """Store ``pipeline`` if its version is current and return the new record.

        Raises
        ------
        PipelineVersionConflictError
            If another writer saved the pipeline after it was loaded.

        """
        ...


def _is_well_formed(observation: DeploymentObservation) -> bool:
    revision_id = observation.revision_id
    observed_at = observation.observed_at
    return (
        isinstance(revision_id, str)
        and bool(revision_id.strip())
        and isinstance(observed_at, int)
        and not isinstance(observed_at, bool)
    )


def merge_deployed_revisions(
    stage: EnvironmentStage,
    observations: cabc.Iterable[DeploymentObservation],
) -> dict[str, int]:
    """Return revision -> earliest deployment time for a stage plus observations.

    Existing stage entries and new observations are merged by revision id. On
    collision the earlier timestamp is kept, so re-deploying a revision never
    moves its first deployment forward. Malformed observations and
    observations for another environment are dropped with a warning.
    """
    deployed: dict[str, int] = {}

    def _offer(revision_id: str, timestamp: int) -> None:
        current = deployed.get(revision_id)
        if current is None or timestamp < current:
            deployed[revision_id] = timestamp

    for entry in stage.commits:
        _offer(entry.revision_id, entry.timestamp)

    for observation in observations:
        if not _is_well_formed(observation):
            logger.warning(
                "Dropping malformed deployment observation from build %s: "
                "revision=%r observed_at=%r",
                observation.build_id,
                observation.revision_id,
                observation.observed_at,
            )
            continue
        if observation.environment_name != stage.environment_name:
            logger.warning(
                "Dropping observation for environment %s from build %s while "
                "reconciling %s",
                observation.environment_name,
                observation.build_id,
                stage.environment_name,
            )
            continue
        _offer(observation.revision_id, observation.observed_at)

    return deployed


def walk_commit_history(
    history: cabc.Iterable[PipelineCommit],
    deployed: cabc.Mapping[str, int],
) -> list[PipelineCommit]:
    """Select the commits of ``history`` considered live given ``deployed``.

    Returns the accepted entries ordered by stage timestamp, newest first.
    """
    ordered = sorted(history, key=lambda commit: commit.history_timestamp, reverse=True)
    accepted: list[PipelineCommit] = []
    seen: set[str] = set()
    watermark: int | None = None

    for commit in ordered:
        if commit.revision_id in seen:
            continue
        deployed_at = deployed.get(commit.revision_id)
        if deployed_at is not None:
            watermark = deployed_at
            accepted.append(commit.at(deployed_at))
        elif watermark is None:
            # No deployment seen at or above this point in history yet.
            continue
        else:
            accepted.append(commit.at(watermark))
        seen.add(commit.revision_id)

    accepted.sort(key=lambda commit: commit.timestamp, reverse=True)
    return accepted


def reconcile_environment_stage(
    pipeline: Pipeline,
    environment_name: str,
    observations: cabc.Sequence[DeploymentObservation],
) -> EnvironmentStage:
    """Return the reconciled stage for ``environment_name`` without mutating.

    An empty observation sequence returns the existing stage unchanged.

    Raises
    ------
    MissingCommitStageError
        If the pipeline has no Commit-stage history.
    ReservedStageError
        If ``environment_name`` is the reserved Commit stage.

    """
    if environment_name == COMMIT_STAGE:
        raise ReservedStageError.for_environment(
            pipeline.pipeline_key, environment_name
        )

    current = pipeline.stage(environment_name)
    if not observations:
        return current

    commit_stage = pipeline.commit_stage
    if commit_stage is None or not commit_stage.commits:
        raise MissingCommitStageError.for_pipeline(pipeline.pipeline_key)

    deployed = merge_deployed_revisions(current, observations)
    accepted = walk_commit_history(commit_stage.commits, deployed)
    logger.info(
        "Reconciled %d pipeline commits into environment stage %s of %s",
        len(accepted),
        environment_name,
        pipeline.pipeline_key,
    )
    return EnvironmentStage(environment_name=environment_name, commits=tuple(accepted))


@dataclasses.dataclass(frozen=True, slots=True)
class ReconciliationResult:
    """Outcome of reconciling one pipeline."""

    pipeline_key: str
    stages: dict[str, EnvironmentStage]
    saved: bool
    attempts: int


class _KeyedLocks:
    """Lazily created ``asyncio.Lock`` per pipeline key."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def for_key(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


class PipelineReconciler:
    """Load, reconcile and save pipelines, one writer per pipeline key."""

    def __init__(self, store: PipelineStore, *, max_conflict_retries: int = 3) -> None:
        """Bind the reconciler to a pipeline store."""
        if max_conflict_retries < 0:
            msg = "max_conflict_retries must not be negative"
            raise ValueError(msg)
        self._store = store
        self._max_attempts = max_conflict_retries + 1
        self._locks = _KeyedLocks()

    async def reconcile(
        self,
        pipeline_key: str,
        environment_name: str,
        observations: cabc.Sequence[DeploymentObservation],
    ) -> EnvironmentStage:
        """Reconcile one environment of a pipeline and return its new stage."""
        result = await self.reconcile_environments(
            pipeline_key, {environment_name: observations}
        )
        return result.stages[environment_name]

    async def reconcile_environments(
        self,
        pipeline_key: str,
        observations_by_environment: cabc.Mapping[
            str, cabc.Sequence[DeploymentObservation]
        ],
    ) -> ReconciliationResult:
        """Reconcile several environments of one pipeline and save it once.

        The pipeline is only written when a stage changed. A version conflict
        reloads the pipeline and repeats the reconciliation.

        Raises
        ------
        MissingCommitStageError
            If the pipeline has no Commit-stage history; nothing is written.
        ReservedStageError
            If an environment is named like the Commit stage; nothing is
            written.
        PipelineVersionConflictError
            If every attempt lost a race with another writer.

        """
        async with self._locks.for_key(pipeline_key):
            attempt = 0
            while True:
                attempt += 1
                try:
                    return await self._reconcile_once(
                        pipeline_key, observations_by_environment, attempt
                    )
                except PipelineVersionConflictError:
                    if attempt >= self._max_attempts:
                        raise
                    logger.warning(
                        "Pipeline %s changed during reconciliation; retrying "
                        "(attempt %d of %d)",
                        pipeline_key,
                        attempt + 1,
                        self._max_attempts,
                    )

    async def _reconcile_once(
        self,
        pipeline_key: str,
        observations_by_environment: cabc.Mapping[
            str, cabc.Sequence[DeploymentObservation]
        ],
        attempt: int,
    ) -> ReconciliationResult:
        pipeline = await self._store.load_pipeline(pipeline_key)
        if pipeline is None:
            pipeline = Pipeline(pipeline_key=pipeline_key)

        stages = {
            environment_name: reconcile_environment_stage(
                pipeline, environment_name, observations
            )
            for environment_name, observations in observations_by_environment.items()
        }
        changed = {
            name: stage
            for name, stage in stages.items()
            if stage != pipeline.stage(name)
        }
        if not changed:
            return ReconciliationResult(
                pipeline_key=pipeline_key, stages=stages, saved=False, attempts=attempt
            )

        updated = msgspec.structs.replace(
            pipeline, stages={**pipeline.stages, **changed}
        )
        await self._store.save_pipeline(updated)
        return ReconciliationResult(
            pipeline_key=pipeline_key, stages=stages, saved=True, attempts=attempt
        )
