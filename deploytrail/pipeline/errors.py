"""Pipeline reconciliation errors."""

from __future__ import annotations

import typing as typ

from deploytrail.outcomes import FailureKind


class MissingCommitStageError(RuntimeError):
    """Raised when a pipeline has no Commit-stage history to reconcile against."""

    failure_kind: typ.ClassVar[FailureKind] = FailureKind.MISSING_PREREQUISITE

    def __init__(self, message: str, *, pipeline_key: str) -> None:
        """Attach the pipeline key for diagnostics."""
        self.pipeline_key = pipeline_key
        super().__init__(message)

    @classmethod
    def for_pipeline(cls, pipeline_key: str) -> MissingCommitStageError:
        """Return an error for a pipeline with an absent or empty Commit stage."""
        return cls(
            f"pipeline {pipeline_key} has no Commit stage history; "
            "has the source-control collector run?",
            pipeline_key=pipeline_key,
        )


class PipelineVersionConflictError(RuntimeError):
    """Raised when a pipeline was modified by another writer since it was loaded."""

    failure_kind: typ.ClassVar[FailureKind] = FailureKind.CONFLICT

    def __init__(self, message: str, *, pipeline_key: str) -> None:
        """Attach the pipeline key for diagnostics."""
        self.pipeline_key = pipeline_key
        super().__init__(message)

    @classmethod
    def for_pipeline(
        cls, pipeline_key: str, expected_version: int
    ) -> PipelineVersionConflictError:
        """Return an error naming the stale version."""
        return cls(
            f"pipeline {pipeline_key} changed since version {expected_version}",
            pipeline_key=pipeline_key,
        )


class ReservedStageError(ValueError):
    """Raised when an environment would overwrite the Commit-stage history."""

    failure_kind: typ.ClassVar[FailureKind] = FailureKind.CONFIGURATION

    def __init__(self, message: str, *, pipeline_key: str) -> None:
        """Attach the pipeline key for diagnostics."""
        self.pipeline_key = pipeline_key
        super().__init__(message)

    @classmethod
    def for_environment(
        cls, pipeline_key: str, environment_name: str
    ) -> ReservedStageError:
        """Return an error for an environment named like the Commit stage."""
        return cls(
            f"environment {environment_name!r} of pipeline {pipeline_key} uses "
            "the reserved Commit stage name",
            pipeline_key=pipeline_key,
        )
