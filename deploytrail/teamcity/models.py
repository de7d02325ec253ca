"""Typed records decoded from TeamCity REST payloads.

The ``_*Payload`` structs mirror the JSON returned by ``app/rest``; the
public dataclasses are the narrow records the scanner and extractor consume.
"""

from __future__ import annotations

import dataclasses
import typing as typ

import msgspec

from .errors import TeamCityResponseShapeError


@dataclasses.dataclass(frozen=True, slots=True)
class ProjectTree:
    """Direct children of one TeamCity project."""

    project_id: str
    sub_project_ids: tuple[str, ...] = ()
    build_type_ids: tuple[str, ...] = ()

    @property
    def is_leaf(self) -> bool:
        """Return True when the project has neither sub-projects nor build types."""
        return not self.sub_project_ids and not self.build_type_ids


@dataclasses.dataclass(frozen=True, slots=True)
class BuildTypeProperty:
    """Single ``settings.property`` entry of a build configuration."""

    name: str
    value: str | None


@dataclasses.dataclass(frozen=True, slots=True)
class BuildTypeInfo:
    """Build configuration identity and declared settings."""

    build_type_id: str
    name: str
    properties: tuple[BuildTypeProperty, ...] = ()


@dataclasses.dataclass(frozen=True, slots=True)
class RawBuildRecord:
    """Build fields needed to derive a deployment observation."""

    build_id: str
    status: str | None
    branch_name: str | None
    triggered_date: str | None
    revisions: tuple[str, ...] = ()


class _ProjectRef(msgspec.Struct):
    id: str


class _ProjectRefs(msgspec.Struct):
    project: list[_ProjectRef] = msgspec.field(default_factory=list)


class _BuildTypeRef(msgspec.Struct):
    id: str
    name: str | None = None


class _BuildTypeRefs(msgspec.Struct, rename="camel"):
    build_type: list[_BuildTypeRef] = msgspec.field(default_factory=list)


class _ProjectPayload(msgspec.Struct, rename="camel"):
    id: str
    projects: _ProjectRefs | None = None
    build_types: _BuildTypeRefs | None = None


class _PropertyPayload(msgspec.Struct):
    name: str
    value: str | None = None


class _SettingsPayload(msgspec.Struct):
    property: list[_PropertyPayload] = msgspec.field(default_factory=list)


class _BuildTypePayload(msgspec.Struct):
    id: str
    name: str | None = None
    settings: _SettingsPayload | None = None


class _BuildRef(msgspec.Struct):
    id: int | str


class _BuildListPayload(msgspec.Struct):
    build: list[_BuildRef] = msgspec.field(default_factory=list)


class _TriggeredPayload(msgspec.Struct):
    date: str | None = None


class _RevisionPayload(msgspec.Struct):
    version: str | None = None


class _RevisionsPayload(msgspec.Struct):
    revision: list[_RevisionPayload] = msgspec.field(default_factory=list)


class _BuildPayload(msgspec.Struct, rename="camel"):
    id: int | str
    status: str | None = None
    branch_name: str | None = None
    triggered: _TriggeredPayload | None = None
    revisions: _RevisionsPayload | None = None


T = typ.TypeVar("T")


def _convert(payload: object, target: type[T], *, what: str) -> T:
    if not isinstance(payload, dict):
        raise TeamCityResponseShapeError.missing(what)
    try:
        return msgspec.convert(payload, target)
    except msgspec.ValidationError as exc:
        raise TeamCityResponseShapeError.invalid(what, str(exc)) from exc


def decode_project_tree(payload: object) -> ProjectTree:
    """Decode an ``app/rest/projects/id:<id>`` response."""
    project = _convert(payload, _ProjectPayload, what="project")
    sub_projects = project.projects.project if project.projects else []
    build_types = project.build_types.build_type if project.build_types else []
    return ProjectTree(
        project_id=project.id,
        sub_project_ids=tuple(ref.id for ref in sub_projects),
        build_type_ids=tuple(ref.id for ref in build_types),
    )


def decode_build_type(payload: object) -> BuildTypeInfo:
    """Decode an ``app/rest/buildTypes/id:<id>`` response."""
    build_type = _convert(payload, _BuildTypePayload, what="buildType")
    properties = build_type.settings.property if build_type.settings else []
    return BuildTypeInfo(
        build_type_id=build_type.id,
        name=build_type.name or build_type.id,
        properties=tuple(
            BuildTypeProperty(name=prop.name, value=prop.value) for prop in properties
        ),
    )


def decode_build_ids(payload: object) -> list[str]:
    """Decode the build ids listed in an ``app/rest/builds?locator=...`` page."""
    page = _convert(payload, _BuildListPayload, what="builds")
    return [str(ref.id) for ref in page.build]


def decode_build(payload: object) -> RawBuildRecord:
    """Decode an ``app/rest/builds/id:<id>`` response."""
    build = _convert(payload, _BuildPayload, what="build")
    revisions: typ.Iterable[_RevisionPayload] = (
        build.revisions.revision if build.revisions else []
    )
    return RawBuildRecord(
        build_id=str(build.id),
        status=build.status,
        branch_name=build.branch_name,
        triggered_date=build.triggered.date if build.triggered else None,
        revisions=tuple(rev.version for rev in revisions if rev.version),
    )
