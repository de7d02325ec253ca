"""Operations exposed to the collection orchestrator.

:class:`DeploymentCollector` ties discovery, extraction and reconciliation
together for one TeamCity server. Every operation isolates its failures: a
failed unit is appended to :attr:`DeploymentCollector.failures` and the
operation returns what it could still compute.
"""

from __future__ import annotations

import dataclasses
import logging
import typing as typ

from deploytrail.config import CollectionConfig
from deploytrail.outcomes import FailureLog, UnitFailure
from deploytrail.pipeline.errors import (
    MissingCommitStageError,
    PipelineVersionConflictError,
    ReservedStageError,
)
from deploytrail.pipeline.reconciler import PipelineReconciler
from deploytrail.teamcity.errors import (
    ProjectCycleError,
    TeamCityAPIError,
    TeamCityResponseShapeError,
)
from deploytrail.teamcity.extraction import DeploymentObservationExtractor
from deploytrail.teamcity.observability import CollectionEventLogger
from deploytrail.teamcity.scanner import BuildTypeScanner, environment_name_for

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from deploytrail.pipeline.models import (
        Commit,
        DeploymentObservation,
        EnvironmentStage,
    )
    from deploytrail.pipeline.reconciler import PipelineStore, ReconciliationResult
    from deploytrail.teamcity.client import TeamCityClient
    from deploytrail.teamcity.scanner import DeploymentEnvironment

logger = logging.getLogger(__name__)


class CommitLookup(typ.Protocol):
    """Access to commits recorded by the source-control collector."""

    async def find_commit_by_revision(self, revision_id: str) -> Commit | None:
        """Return the commit with ``revision_id``, or None if unknown."""
        ...


@dataclasses.dataclass(frozen=True, slots=True)
class ProjectCollectionResult:
    """Summary of collecting one project into one pipeline."""

    pipeline_key: str
    environments: tuple[str, ...] = ()
    observations: int = 0
    reconciled: bool = False


class DeploymentCollector:
    """Discover deployments on TeamCity and reconcile them into pipelines."""

    def __init__(
        self,
        client: TeamCityClient,
        store: PipelineStore,
        commits: CommitLookup,
        *,
        config: CollectionConfig | None = None,
        event_logger: CollectionEventLogger | None = None,
    ) -> None:
        """Wire the scanner, extractor and reconciler around shared collaborators."""
        resolved = config or CollectionConfig()
        self._client = client
        self._commits = commits
        self._config = resolved
        self._failures = FailureLog()
        self._event_logger = event_logger or CollectionEventLogger()
        self._scanner = BuildTypeScanner(
            client, failures=self._failures, event_logger=self._event_logger
        )
        self._extractor = DeploymentObservationExtractor(
            client,
            page_size=resolved.page_size,
            max_consecutive_page_failures=resolved.max_consecutive_page_failures,
            failures=self._failures,
            event_logger=self._event_logger,
        )
        self._reconciler = PipelineReconciler(
            store, max_conflict_retries=resolved.max_conflict_retries
        )

    @property
    def failures(self) -> FailureLog:
        """Return the failures recorded by every operation of this collector."""
        return self._failures

    async def discover_deployment_build_types(self, project_id: str) -> frozenset[str]:
        """Return deployment build type ids under ``project_id``.

        A cyclic project hierarchy yields an empty set and a ``cycle`` failure.
        """
        try:
            return await self._scanner.scan(project_id)
        except ProjectCycleError as exc:
            self._record(f"project:{project_id}", exc)
            return frozenset()

    async def discover_environments(
        self, project_id: str
    ) -> list[DeploymentEnvironment]:
        """Return the deployment environments under ``project_id``."""
        try:
            return await self._scanner.discover_environments(project_id)
        except ProjectCycleError as exc:
            self._record(f"project:{project_id}", exc)
            return []

    async def collect_deployment_observations(
        self, build_type_id: str, *, environment_name: str | None = None
    ) -> list[DeploymentObservation]:
        """Return deployment observations from the full history of a build type.

        When ``environment_name`` is omitted it is derived from the build
        type's name.
        """
        if environment_name is None:
            try:
                build_type = await self._client.get_build_type(build_type_id)
            except (TeamCityAPIError, TeamCityResponseShapeError) as exc:
                self._record(f"build_type:{build_type_id}", exc)
                return []
            environment_name = environment_name_for(build_type.name)
        return await self._extractor.collect(
            build_type_id, environment_name=environment_name
        )

    async def reconcile(
        self,
        pipeline_key: str,
        environment_name: str,
        observations: cabc.Sequence[DeploymentObservation],
    ) -> EnvironmentStage | None:
        """Reconcile one environment; returns None when the pipeline was skipped."""
        result = await self.reconcile_environments(
            pipeline_key, {environment_name: observations}
        )
        if result is None:
            return None
        return result.stages[environment_name]

    async def reconcile_environments(
        self,
        pipeline_key: str,
        observations_by_environment: cabc.Mapping[
            str, cabc.Sequence[DeploymentObservation]
        ],
    ) -> ReconciliationResult | None:
        """Reconcile several environments of a pipeline with a single save.

        Observations of revisions the source-control collector has not
        recorded are dropped first. Returns None when the pipeline had to be
        skipped; nothing is written in that case.
        """
        known: dict[str, list[DeploymentObservation]] = {}
        cache: dict[str, bool] = {}
        for environment_name, observations in observations_by_environment.items():
            known[environment_name] = await self._known_observations(
                observations, cache
            )

        try:
            result = await self._reconciler.reconcile_environments(pipeline_key, known)
        except (
            MissingCommitStageError,
            PipelineVersionConflictError,
            ReservedStageError,
        ) as exc:
            failure = self._record(f"pipeline:{pipeline_key}", exc)
            self._event_logger.log_reconcile_skipped(
                pipeline_key=pipeline_key, reason=failure.kind
            )
            return None

        self._event_logger.log_reconcile_completed(
            pipeline_key=pipeline_key,
            environments=sorted(result.stages),
            saved=result.saved,
            attempts=result.attempts,
        )
        return result

    async def collect_project(
        self, pipeline_key: str, project_id: str
    ) -> ProjectCollectionResult:
        """Discover, extract and reconcile every environment of one project.

        All environments are reconciled into ``pipeline_key`` with one save.
        """
        environments = await self.discover_environments(project_id)
        observations_by_environment: dict[str, list[DeploymentObservation]] = {}
        for environment in environments:
            observations = await self.collect_deployment_observations(
                environment.build_type_id,
                environment_name=environment.environment_name,
            )
            observations_by_environment.setdefault(
                environment.environment_name, []
            ).extend(observations)

        total = sum(len(obs) for obs in observations_by_environment.values())
        if not total:
            return ProjectCollectionResult(
                pipeline_key=pipeline_key,
                environments=tuple(observations_by_environment),
            )

        result = await self.reconcile_environments(
            pipeline_key, observations_by_environment
        )
        return ProjectCollectionResult(
            pipeline_key=pipeline_key,
            environments=tuple(observations_by_environment),
            observations=total,
            reconciled=result is not None,
        )

    async def _known_observations(
        self,
        observations: cabc.Sequence[DeploymentObservation],
        cache: dict[str, bool],
    ) -> list[DeploymentObservation]:
        kept: list[DeploymentObservation] = []
        for observation in observations:
            revision_id = observation.revision_id
            if not isinstance(revision_id, str) or not revision_id.strip():
                # Left for the reconciler to drop with a diagnostic.
                kept.append(observation)
                continue
            if revision_id not in cache:
                commit = await self._commits.find_commit_by_revision(revision_id)
                cache[revision_id] = commit is not None
            if cache[revision_id]:
                kept.append(observation)
            else:
                logger.warning(
                    "Dropping deployment of unknown revision %s from build %s; "
                    "source-control history has not recorded it",
                    revision_id,
                    observation.build_id,
                )
        return kept

    def _record(self, unit: str, exc: BaseException) -> UnitFailure:
        failure = self._failures.record(UnitFailure.from_exception(unit, exc))
        self._event_logger.log_unit_failed(failure)
        return failure
