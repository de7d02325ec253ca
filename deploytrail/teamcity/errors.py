"""TeamCity collection errors."""

from __future__ import annotations

import typing as typ

from deploytrail.outcomes import FailureKind


class TeamCityAPIError(RuntimeError):
    """Raised when the TeamCity server cannot be reached or rejects a request."""

    failure_kind: typ.ClassVar[FailureKind] = FailureKind.TRANSPORT

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        """Initialise with a message and optional HTTP status code."""
        self.status_code = status_code
        super().__init__(message)

    @classmethod
    def http_error(cls, status_code: int, url: str) -> TeamCityAPIError:
        """Return an error for non-2xx HTTP responses."""
        return cls(f"TeamCity HTTP {status_code} for {url}", status_code=status_code)

    @classmethod
    def transport(cls, url: str, exc: BaseException) -> TeamCityAPIError:
        """Return an error for failures below the HTTP layer."""
        return cls(f"TeamCity request to {url} failed: {exc}")


class TeamCityResponseShapeError(RuntimeError):
    """Raised when TeamCity JSON lacks the fields a record needs."""

    failure_kind: typ.ClassVar[FailureKind] = FailureKind.PARSE

    @classmethod
    def missing(cls, field: str) -> TeamCityResponseShapeError:
        """Return an error for a missing response field."""
        return cls(f"TeamCity response missing expected field: {field}")

    @classmethod
    def invalid(cls, what: str, detail: str) -> TeamCityResponseShapeError:
        """Return an error for a payload that failed to decode."""
        return cls(f"TeamCity {what} payload is malformed: {detail}")


class BuildTimestampError(ValueError):
    """Raised when a TeamCity compact timestamp cannot be parsed."""

    failure_kind: typ.ClassVar[FailureKind] = FailureKind.PARSE

    @classmethod
    def malformed(cls, raw: object) -> BuildTimestampError:
        """Return an error naming the offending timestamp."""
        return cls(f"unparseable TeamCity timestamp: {raw!r}")


class ProjectCycleError(RuntimeError):
    """Raised when a project hierarchy revisits a project id."""

    failure_kind: typ.ClassVar[FailureKind] = FailureKind.CYCLE

    def __init__(self, project_id: str, path: tuple[str, ...]) -> None:
        """Record the repeated project and the traversal path that reached it."""
        self.project_id = project_id
        self.path = path
        chain = " -> ".join((*path, project_id))
        super().__init__(f"project {project_id} visited twice: {chain}")


class TeamCityConfigError(RuntimeError):
    """Raised when TeamCity client configuration is invalid."""

    failure_kind: typ.ClassVar[FailureKind] = FailureKind.CONFIGURATION

    @classmethod
    def missing_url(cls) -> TeamCityConfigError:
        """Return an error when no server URL is configured."""
        return cls("DEPLOYTRAIL_TEAMCITY_URL is required for TeamCity API")

    @classmethod
    def missing_auth(cls) -> TeamCityConfigError:
        """Return an error when neither a token nor credentials are configured."""
        return cls(
            "DEPLOYTRAIL_TEAMCITY_TOKEN or DEPLOYTRAIL_TEAMCITY_CREDENTIALS is required"
        )

    @classmethod
    def invalid_credentials(cls) -> TeamCityConfigError:
        """Return an error when base64 credentials do not decode to user:password."""
        return cls("Invalid TeamCity credentials: expected base64 of 'user:password'")
