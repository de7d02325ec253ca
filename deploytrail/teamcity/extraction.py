"""Turn TeamCity build history into deployment observations.

Build history is read one page at a time with a ``start``/``count`` locator.
Pagination ends when the server returns a page with no builds at all; a page
whose builds are all filtered out still advances to the next offset.

Only successful builds on ``master`` or a ``release/`` branch become
observations. Each one is attributed to the first SCM revision attached to
the build and stamped with the build's trigger time.
"""

from __future__ import annotations

import dataclasses
import logging
import typing as typ

from deploytrail.outcomes import FailureLog, UnitFailure
from deploytrail.pipeline.models import DeploymentObservation

from .errors import BuildTimestampError, TeamCityAPIError, TeamCityResponseShapeError
from .observability import CollectionEventLogger
from .timestamps import parse_teamcity_timestamp

if typ.TYPE_CHECKING:
    from .client import TeamCityClient
    from .models import RawBuildRecord

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_CONSECUTIVE_PAGE_FAILURES = 3
SUCCESS_STATUS = "success"
MAINLINE_BRANCH = "master"
RELEASE_BRANCH_PREFIX = "release/"

_UNIT_ERRORS = (TeamCityAPIError, TeamCityResponseShapeError)


def is_successful(status: str | None) -> bool:
    """Return True for a ``success`` status, ignoring case.

    Builds that were only created or were cancelled never deployed anything.
    """
    return isinstance(status, str) and status.strip().lower() == SUCCESS_STATUS


def is_eligible_branch(branch_name: str | None) -> bool:
    """Return True for branches whose builds reach environments."""
    if not branch_name:
        return False
    return branch_name == MAINLINE_BRANCH or branch_name.startswith(
        RELEASE_BRANCH_PREFIX
    )


def observation_from_build(
    build: RawBuildRecord, *, environment_name: str
) -> DeploymentObservation | None:
    """Return the deployment observation for ``build``, or None if it is filtered.

    Raises
    ------
    BuildTimestampError
        If the build's trigger date cannot be parsed.

    """
    if not is_successful(build.status):
        logger.debug("Skipping build %s with status %r", build.build_id, build.status)
        return None
    if not is_eligible_branch(build.branch_name):
        return None
    if not build.revisions:
        logger.warning(
            "Build %s has no SCM revision; cannot attribute deployment to %s",
            build.build_id,
            environment_name,
        )
        return None
    if len(build.revisions) > 1:
        logger.warning(
            "Build %s carries %d revisions; attributing deployment to the first (%s)",
            build.build_id,
            len(build.revisions),
            build.revisions[0],
        )
    return DeploymentObservation(
        revision_id=build.revisions[0],
        environment_name=environment_name,
        observed_at=parse_teamcity_timestamp(build.triggered_date),
        build_id=build.build_id,
    )


@dataclasses.dataclass(frozen=True, slots=True)
class ExtractedPage:
    """Observations derived from one page of build history."""

    offset: int
    raw_count: int
    observations: tuple[DeploymentObservation, ...] = ()

    @property
    def exhausted(self) -> bool:
        """Return True when the server had no builds at this offset."""
        return self.raw_count == 0


class DeploymentObservationExtractor:
    """Read deployment build history page by page."""

    def __init__(
        self,
        client: TeamCityClient,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_consecutive_page_failures: int = DEFAULT_MAX_CONSECUTIVE_PAGE_FAILURES,
        failures: FailureLog | None = None,
        event_logger: CollectionEventLogger | None = None,
    ) -> None:
        """Bind the extractor to a client, paging policy and failure log."""
        if page_size < 1:
            msg = "page_size must be positive"
            raise ValueError(msg)
        if max_consecutive_page_failures < 1:
            msg = "max_consecutive_page_failures must be positive"
            raise ValueError(msg)
        self._client = client
        self._page_size = page_size
        self._max_page_failures = max_consecutive_page_failures
        self._failures = failures if failures is not None else FailureLog()
        self._event_logger = event_logger or CollectionEventLogger()

    @property
    def page_size(self) -> int:
        """Return the number of builds requested per page."""
        return self._page_size

    async def extract(
        self, build_type_id: str, *, environment_name: str, offset: int
    ) -> ExtractedPage:
        """Fetch one page of builds at ``offset`` and derive its observations.

        Duplicate revisions within the page are all returned. A build whose
        details cannot be fetched or whose timestamp is malformed is recorded
        as a failure and skipped.

        Raises
        ------
        TeamCityAPIError
            If the page listing itself cannot be fetched.
        TeamCityResponseShapeError
            If the page listing is malformed.

        """
        build_ids = await self._client.list_builds(
            build_type_id, offset=offset, count=self._page_size
        )
        observations: list[DeploymentObservation] = []
        for build_id in build_ids:
            try:
                build = await self._client.get_build(build_id)
                observation = observation_from_build(
                    build, environment_name=environment_name
                )
            except (*_UNIT_ERRORS, BuildTimestampError) as exc:
                self._record(f"build:{build_id}", exc)
                continue
            if observation is not None:
                observations.append(observation)
        return ExtractedPage(
            offset=offset, raw_count=len(build_ids), observations=tuple(observations)
        )

    async def iter_pages(
        self, build_type_id: str, *, environment_name: str
    ) -> typ.AsyncIterator[ExtractedPage]:
        """Yield non-empty pages of build history until the history is exhausted.

        A page that fails to load is recorded and skipped; paging stops after
        too many consecutive failures.
        """
        offset = 0
        consecutive_failures = 0
        while True:
            try:
                page = await self.extract(
                    build_type_id, environment_name=environment_name, offset=offset
                )
            except _UNIT_ERRORS as exc:
                self._record(f"builds:{build_type_id}@{offset}", exc)
                consecutive_failures += 1
                if consecutive_failures >= self._max_page_failures:
                    logger.warning(
                        "Giving up on build history of %s after %d failed pages",
                        build_type_id,
                        consecutive_failures,
                    )
                    return
                offset += self._page_size
                continue

            consecutive_failures = 0
            if page.exhausted:
                return
            yield page
            offset += self._page_size

    async def collect(
        self, build_type_id: str, *, environment_name: str
    ) -> list[DeploymentObservation]:
        """Return one observation per revision across the whole build history.

        Pages are folded as they arrive, keeping the earliest observation of
        each revision, so memory grows with distinct revisions rather than
        with the number of builds.
        """
        earliest: dict[str, DeploymentObservation] = {}
        pages = 0
        builds_seen = 0
        async for page in self.iter_pages(
            build_type_id, environment_name=environment_name
        ):
            pages += 1
            builds_seen += page.raw_count
            for observation in page.observations:
                current = earliest.get(observation.revision_id)
                if current is None or observation.observed_at < current.observed_at:
                    earliest[observation.revision_id] = observation

        observations = sorted(
            earliest.values(), key=lambda obs: obs.observed_at, reverse=True
        )
        self._event_logger.log_extraction_completed(
            build_type_id=build_type_id,
            environment_name=environment_name,
            pages=pages,
            builds_seen=builds_seen,
            observations=len(observations),
        )
        return observations

    def _record(self, unit: str, exc: BaseException) -> None:
        failure = self._failures.record(UnitFailure.from_exception(unit, exc))
        logger.warning("Skipping %s: %s", unit, exc)
        self._event_logger.log_unit_failed(failure)
