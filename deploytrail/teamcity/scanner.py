"""Discover deployment build configurations within a TeamCity project tree.

A build configuration is a deployment pipeline when its settings declare
``buildConfigurationType = DEPLOYMENT``. The scanner walks a project and all
of its sub-projects, classifying every build type it meets. A failure to
fetch one project or classify one build type is recorded and the walk moves
on; a project hierarchy that revisits a project id aborts the scan.
"""

from __future__ import annotations

import dataclasses
import logging
import typing as typ

from deploytrail.outcomes import FailureLog, UnitFailure

from .errors import ProjectCycleError, TeamCityAPIError, TeamCityResponseShapeError
from .observability import CollectionEventLogger

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from .client import TeamCityClient
    from .models import BuildTypeProperty

logger = logging.getLogger(__name__)

DEPLOYMENT_PROPERTY = "buildConfigurationType"
DEPLOYMENT_VALUE = "DEPLOYMENT"

_UNIT_ERRORS = (TeamCityAPIError, TeamCityResponseShapeError)


def is_deployment_build_type(properties: cabc.Iterable[BuildTypeProperty]) -> bool:
    """Return True when the first ``buildConfigurationType`` is ``DEPLOYMENT``."""
    for prop in properties:
        if prop.name != DEPLOYMENT_PROPERTY:
            continue
        return prop.value == DEPLOYMENT_VALUE
    return False


def environment_name_for(build_type_name: str) -> str:
    """Return the stage key for a deployment build type name."""
    return build_type_name.replace(".", "_")


@dataclasses.dataclass(frozen=True, slots=True)
class DeploymentEnvironment:
    """Deployment build type and the environment it deploys to."""

    build_type_id: str
    environment_name: str


class BuildTypeScanner:
    """Walk TeamCity projects and classify their build types."""

    def __init__(
        self,
        client: TeamCityClient,
        *,
        failures: FailureLog | None = None,
        event_logger: CollectionEventLogger | None = None,
    ) -> None:
        """Bind the scanner to a client and a failure log."""
        self._client = client
        self._failures = failures if failures is not None else FailureLog()
        self._event_logger = event_logger or CollectionEventLogger()

    @property
    def failures(self) -> FailureLog:
        """Return the log receiving per-unit failures."""
        return self._failures

    async def scan(self, project_id: str) -> frozenset[str]:
        """Return the ids of deployment build types under ``project_id``.

        Raises
        ------
        ProjectCycleError
            If the hierarchy visits a project id twice.

        """
        build_type_ids = await self.collect_build_type_ids(project_id)
        deployment_ids = [
            build_type_id
            for build_type_id in build_type_ids
            if await self.classify(build_type_id)
        ]
        self._event_logger.log_scan_completed(
            project_id=project_id,
            build_types_scanned=len(build_type_ids),
            deployment_build_types=len(deployment_ids),
        )
        return frozenset(deployment_ids)

    async def discover_environments(
        self, project_id: str
    ) -> list[DeploymentEnvironment]:
        """Return deployment build types under ``project_id`` with environment names.

        Build types whose details cannot be fetched are recorded as failures
        and left out.
        """
        environments: list[DeploymentEnvironment] = []
        for build_type_id in sorted(await self.scan(project_id)):
            try:
                build_type = await self._client.get_build_type(build_type_id)
            except _UNIT_ERRORS as exc:
                self._record(f"build_type:{build_type_id}", exc)
                continue
            environments.append(
                DeploymentEnvironment(
                    build_type_id=build_type_id,
                    environment_name=environment_name_for(build_type.name),
                )
            )
        return environments

    async def collect_build_type_ids(self, project_id: str) -> list[str]:
        """Return every build type id under ``project_id`` in traversal order.

        Projects are visited depth first, a project's own build types before
        those of its sub-projects. A project that cannot be fetched is
        recorded as a failure and its subtree skipped.
        """
        found: list[str] = []
        seen_build_types: set[str] = set()
        visited: set[str] = set()
        stack: list[tuple[str, tuple[str, ...]]] = [(project_id, ())]

        while stack:
            current, path = stack.pop()
            if current in visited:
                raise ProjectCycleError(current, path)
            visited.add(current)

            try:
                tree = await self._client.list_project_tree(current)
            except _UNIT_ERRORS as exc:
                self._record(f"project:{current}", exc)
                continue
            if tree.is_leaf:
                continue

            for build_type_id in tree.build_type_ids:
                if build_type_id not in seen_build_types:
                    seen_build_types.add(build_type_id)
                    found.append(build_type_id)
            child_path = (*path, current)
            stack.extend(
                (child, child_path) for child in reversed(tree.sub_project_ids)
            )

        return found

    async def classify(self, build_type_id: str) -> bool:
        """Return True if ``build_type_id`` is a deployment build type.

        Lookup failures classify the build type as non-deployment.
        """
        try:
            properties = await self._client.get_build_type_properties(build_type_id)
        except _UNIT_ERRORS as exc:
            self._record(f"build_type:{build_type_id}", exc)
            return False
        return is_deployment_build_type(properties)

    def _record(self, unit: str, exc: BaseException) -> None:
        failure = self._failures.record(UnitFailure.from_exception(unit, exc))
        logger.warning("Skipping %s: %s", unit, exc)
        self._event_logger.log_unit_failed(failure)
