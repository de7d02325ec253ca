"""TeamCity client, deployment build-type discovery and build-history extraction."""

from __future__ import annotations

from .client import TeamCityClient, TeamCityRestClient, TeamCityRestConfig, join_url
from .errors import (
    BuildTimestampError,
    ProjectCycleError,
    TeamCityAPIError,
    TeamCityConfigError,
    TeamCityResponseShapeError,
)
from .extraction import (
    DeploymentObservationExtractor,
    ExtractedPage,
    is_eligible_branch,
    is_successful,
    observation_from_build,
)
from .models import BuildTypeInfo, BuildTypeProperty, ProjectTree, RawBuildRecord
from .observability import CollectionEventLogger, CollectionEventType
from .scanner import (
    BuildTypeScanner,
    DeploymentEnvironment,
    environment_name_for,
    is_deployment_build_type,
)
from .timestamps import parse_teamcity_datetime, parse_teamcity_timestamp

__all__ = [
    "BuildTimestampError",
    "BuildTypeInfo",
    "BuildTypeProperty",
    "BuildTypeScanner",
    "CollectionEventLogger",
    "CollectionEventType",
    "DeploymentEnvironment",
    "DeploymentObservationExtractor",
    "ExtractedPage",
    "ProjectCycleError",
    "ProjectTree",
    "RawBuildRecord",
    "TeamCityAPIError",
    "TeamCityClient",
    "TeamCityConfigError",
    "TeamCityResponseShapeError",
    "TeamCityRestClient",
    "TeamCityRestConfig",
    "environment_name_for",
    "is_deployment_build_type",
    "is_eligible_branch",
    "is_successful",
    "join_url",
    "observation_from_build",
    "parse_teamcity_datetime",
    "parse_teamcity_timestamp",
]
