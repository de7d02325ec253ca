"""In-memory TeamCity client used by scanner, extractor and collector tests."""

from __future__ import annotations

import dataclasses
import typing as typ

from deploytrail.teamcity.errors import TeamCityAPIError
from deploytrail.teamcity.models import (
    BuildTypeInfo,
    BuildTypeProperty,
    ProjectTree,
    RawBuildRecord,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc


def deployment_build_type(build_type_id: str, name: str) -> BuildTypeInfo:
    """Return a build type declaring ``buildConfigurationType = DEPLOYMENT``."""
    return BuildTypeInfo(
        build_type_id=build_type_id,
        name=name,
        properties=(
            BuildTypeProperty(name="buildConfigurationType", value="DEPLOYMENT"),
        ),
    )


def regular_build_type(build_type_id: str, name: str | None = None) -> BuildTypeInfo:
    """Return a build type with no deployment marker."""
    return BuildTypeInfo(
        build_type_id=build_type_id,
        name=name or build_type_id,
        properties=(BuildTypeProperty(name="checkoutMode", value="ON_AGENT"),),
    )


def build(  # noqa: PLR0913
    build_id: str,
    revision: str | None,
    triggered: str | None = "20240115T093000+0000",
    *,
    status: str | None = "SUCCESS",
    branch: str | None = "master",
    extra_revisions: cabc.Sequence[str] = (),
) -> RawBuildRecord:
    """Return a raw build record; defaults describe a successful master build."""
    revisions = (revision, *extra_revisions) if revision else tuple(extra_revisions)
    return RawBuildRecord(
        build_id=build_id,
        status=status,
        branch_name=branch,
        triggered_date=triggered,
        revisions=revisions,
    )


@dataclasses.dataclass(slots=True)
class FakeTeamCityClient:
    """Serve projects, build types and build history from dictionaries.

    Ids listed in ``failing`` raise :class:`TeamCityAPIError` when requested;
    ``failing_pages`` holds ``(build_type_id, offset)`` pairs whose listing
    fails.
    """

    projects: dict[str, ProjectTree] = dataclasses.field(default_factory=dict)
    build_types: dict[str, BuildTypeInfo] = dataclasses.field(default_factory=dict)
    history: dict[str, list[RawBuildRecord]] = dataclasses.field(
        default_factory=dict
    )
    failing: set[str] = dataclasses.field(default_factory=set)
    failing_pages: set[tuple[str, int]] = dataclasses.field(default_factory=set)
    calls: list[tuple[str, str]] = dataclasses.field(default_factory=list)

    def add_project(
        self,
        project_id: str,
        *,
        sub_projects: cabc.Sequence[str] = (),
        build_types: cabc.Sequence[BuildTypeInfo] = (),
    ) -> None:
        """Register a project and its build types."""
        self.projects[project_id] = ProjectTree(
            project_id=project_id,
            sub_project_ids=tuple(sub_projects),
            build_type_ids=tuple(bt.build_type_id for bt in build_types),
        )
        for build_type in build_types:
            self.build_types[build_type.build_type_id] = build_type

    def _check(self, kind: str, key: str) -> None:
        self.calls.append((kind, key))
        if key in self.failing:
            msg = f"simulated failure for {kind} {key}"
            raise TeamCityAPIError(msg, status_code=503)

    async def list_project_tree(self, project_id: str) -> ProjectTree:
        """Return the registered project or an empty tree."""
        self._check("project", project_id)
        return self.projects.get(project_id, ProjectTree(project_id=project_id))

    async def get_build_type(self, build_type_id: str) -> BuildTypeInfo:
        """Return the registered build type."""
        self._check("build_type", build_type_id)
        return self.build_types[build_type_id]

    async def get_build_type_properties(
        self, build_type_id: str
    ) -> list[BuildTypeProperty]:
        """Return the registered build type's properties."""
        build_type = await self.get_build_type(build_type_id)
        return list(build_type.properties)

    async def list_builds(
        self, build_type_id: str, *, offset: int, count: int
    ) -> list[str]:
        """Return one page of build ids, newest first as registered."""
        self.calls.append(("builds", f"{build_type_id}@{offset}"))
        if (build_type_id, offset) in self.failing_pages:
            msg = f"simulated page failure for {build_type_id}@{offset}"
            raise TeamCityAPIError(msg, status_code=502)
        records = self.history.get(build_type_id, [])
        return [record.build_id for record in records[offset : offset + count]]

    async def get_build(self, build_id: str) -> RawBuildRecord:
        """Return a registered build by id."""
        self._check("build", build_id)
        for records in self.history.values():
            for record in records:
                if record.build_id == build_id:
                    return record
        raise KeyError(build_id)
