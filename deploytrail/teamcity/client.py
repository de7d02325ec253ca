"""TeamCity REST client used by the deployment scanner and extractor."""

from __future__ import annotations

import base64
import dataclasses
import os
import typing as typ

import httpx

from .errors import TeamCityAPIError, TeamCityConfigError, TeamCityResponseShapeError
from .models import (
    BuildTypeInfo,
    BuildTypeProperty,
    ProjectTree,
    RawBuildRecord,
    decode_build,
    decode_build_ids,
    decode_build_type,
    decode_project_tree,
)

PROJECTS_PATH = "app/rest/projects"
BUILD_TYPES_PATH = "app/rest/buildTypes"
BUILDS_PATH = "app/rest/builds"

_HTTP_ERROR_STATUS_THRESHOLD = 400
_CREDENTIAL_PARTS = 2


class TeamCityClient(typ.Protocol):
    """Queries the deployment collector needs from a TeamCity server."""

    async def list_project_tree(self, project_id: str) -> ProjectTree:
        """Return the direct sub-projects and build types of a project."""
        ...

    async def get_build_type(self, build_type_id: str) -> BuildTypeInfo:
        """Return a build configuration with its declared settings."""
        ...

    async def get_build_type_properties(
        self, build_type_id: str
    ) -> list[BuildTypeProperty]:
        """Return the ``settings.property`` entries of a build configuration."""
        ...

    async def list_builds(
        self, build_type_id: str, *, offset: int, count: int
    ) -> list[str]:
        """Return ids of one page of builds for a build configuration."""
        ...

    async def get_build(self, build_id: str) -> RawBuildRecord:
        """Return the detailed record of a single build."""
        ...


def join_url(base: str, *paths: str) -> str:
    """Join ``paths`` onto ``base`` with exactly one ``/`` between segments."""
    result = base
    for path in paths:
        segment = path.lstrip("/")
        if not result.endswith("/"):
            result += "/"
        result += segment
    return result


@dataclasses.dataclass(frozen=True, slots=True)
class TeamCityRestConfig:
    """Connection settings for one TeamCity server."""

    base_url: str
    token: str | None = None
    credentials: str | None = None
    timeout_s: float = 30.0
    user_agent: str = "deploytrail/0.1"

    @classmethod
    def from_env(cls) -> TeamCityRestConfig:
        """Build configuration from ``DEPLOYTRAIL_TEAMCITY_*`` variables."""
        base_url = os.environ.get("DEPLOYTRAIL_TEAMCITY_URL", "").strip()
        if not base_url:
            raise TeamCityConfigError.missing_url()
        token = os.environ.get("DEPLOYTRAIL_TEAMCITY_TOKEN", "").strip() or None
        credentials = (
            os.environ.get("DEPLOYTRAIL_TEAMCITY_CREDENTIALS", "").strip() or None
        )
        if token is None and credentials is None:
            raise TeamCityConfigError.missing_auth()
        return cls(base_url=base_url, token=token, credentials=credentials)

    def auth_headers(self) -> dict[str, str]:
        """Return the Authorization header for the configured auth mode.

        Base64 credentials take precedence over a bearer token and must decode
        to exactly ``user:password``.
        """
        if self.credentials:
            try:
                decoded = base64.b64decode(self.credentials, validate=True).decode(
                    "utf-8"
                )
            except ValueError as exc:
                raise TeamCityConfigError.invalid_credentials() from exc
            parts = decoded.split(":")
            if len(parts) != _CREDENTIAL_PARTS or not all(parts):
                raise TeamCityConfigError.invalid_credentials()
            return {"Authorization": f"Basic {self.credentials}"}
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        raise TeamCityConfigError.missing_auth()


class TeamCityRestClient:
    """httpx implementation of :class:`TeamCityClient`."""

    def __init__(
        self,
        config: TeamCityRestConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the client; auth headers are validated eagerly."""
        headers = {
            **config.auth_headers(),
            "User-Agent": config.user_agent,
            "Accept": "application/json",
        }
        self._config = config
        self._headers = headers
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=config.timeout_s, headers=headers
        )

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def list_project_tree(self, project_id: str) -> ProjectTree:
        """Fetch ``app/rest/projects/id:<project_id>``."""
        payload = await self._get(
            join_url(self._config.base_url, PROJECTS_PATH, f"id:{project_id}")
        )
        return decode_project_tree(payload)

    async def get_build_type(self, build_type_id: str) -> BuildTypeInfo:
        """Fetch ``app/rest/buildTypes/id:<build_type_id>``."""
        payload = await self._get(
            join_url(self._config.base_url, BUILD_TYPES_PATH, f"id:{build_type_id}")
        )
        return decode_build_type(payload)

    async def get_build_type_properties(
        self, build_type_id: str
    ) -> list[BuildTypeProperty]:
        """Return the declared settings of a build configuration."""
        build_type = await self.get_build_type(build_type_id)
        return list(build_type.properties)

    async def list_builds(
        self, build_type_id: str, *, offset: int, count: int
    ) -> list[str]:
        """Fetch one page of build ids using a TeamCity build locator."""
        url = join_url(self._config.base_url, BUILDS_PATH)
        locator = f"buildType:{build_type_id},count:{count},start:{offset}"
        payload = await self._get(url, params={"locator": locator})
        return decode_build_ids(payload)

    async def get_build(self, build_id: str) -> RawBuildRecord:
        """Fetch ``app/rest/builds/id:<build_id>``."""
        payload = await self._get(
            join_url(self._config.base_url, BUILDS_PATH, f"id:{build_id}")
        )
        return decode_build(payload)

    async def _get(
        self, url: str, *, params: dict[str, str] | None = None
    ) -> dict[str, typ.Any]:
        """Issue a GET and return the decoded JSON object."""
        try:
            response = await self._client.get(url, params=params, headers=self._headers)
        except httpx.HTTPError as exc:
            raise TeamCityAPIError.transport(url, exc) from exc
        if response.status_code >= _HTTP_ERROR_STATUS_THRESHOLD:
            raise TeamCityAPIError.http_error(response.status_code, url)
        if not response.content:
            raise TeamCityResponseShapeError.missing("body")
        try:
            payload = response.json()
        except ValueError as exc:
            raise TeamCityResponseShapeError.invalid("response", str(exc)) from exc
        if not isinstance(payload, dict):
            raise TeamCityResponseShapeError.missing("response")
        return payload
