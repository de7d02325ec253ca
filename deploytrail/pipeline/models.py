"""Domain records for pipelines, environment stages and deployments.

All timestamps are integer epoch milliseconds.
"""

from __future__ import annotations

import dataclasses

import msgspec

COMMIT_STAGE = "Commit"


class Commit(msgspec.Struct, frozen=True, kw_only=True):
    """Source-control commit recorded by the upstream SCM collector.

    Attributes
    ----------
    revision_id : str
        SCM identity of the commit (for git, the SHA).
    commit_timestamp : int
        Commit time in epoch milliseconds.
    author : str, optional
        Commit author as reported by the SCM.
    message : str, optional
        Commit message.

    """

    revision_id: str
    commit_timestamp: int
    author: str | None = None
    message: str | None = None


class PipelineCommit(msgspec.Struct, frozen=True, kw_only=True):
    """Commit entry within a pipeline stage.

    ``timestamp`` is the time the commit reached the stage. In the Commit
    stage it is the time the commit was recorded; in environment stages it is
    the earliest known deployment time.
    """

    revision_id: str
    timestamp: int
    commit_timestamp: int | None = None
    author: str | None = None
    message: str | None = None

    @classmethod
    def from_commit(
        cls, commit: Commit, *, timestamp: int | None = None
    ) -> PipelineCommit:
        """Wrap a commit, defaulting the stage timestamp to the commit time."""
        return cls(
            revision_id=commit.revision_id,
            timestamp=commit.commit_timestamp if timestamp is None else timestamp,
            commit_timestamp=commit.commit_timestamp,
            author=commit.author,
            message=commit.message,
        )

    @property
    def history_timestamp(self) -> int:
        """Return the timestamp used to order commit history."""
        if self.commit_timestamp is not None:
            return self.commit_timestamp
        return self.timestamp

    def at(self, timestamp: int) -> PipelineCommit:
        """Return a copy of this entry stamped with ``timestamp``."""
        return msgspec.structs.replace(self, timestamp=timestamp)


class EnvironmentStage(msgspec.Struct, frozen=True, kw_only=True):
    """Commits considered live in one environment, newest deployment first."""

    environment_name: str
    commits: tuple[PipelineCommit, ...] = ()

    @property
    def revision_ids(self) -> frozenset[str]:
        """Return the revision ids present in the stage."""
        return frozenset(commit.revision_id for commit in self.commits)

    def find(self, revision_id: str) -> PipelineCommit | None:
        """Return the entry for ``revision_id`` if present."""
        for commit in self.commits:
            if commit.revision_id == revision_id:
                return commit
        return None


class Pipeline(msgspec.Struct, kw_only=True):
    """Per-application record of stage name to stage contents.

    ``version`` is zero for a pipeline that has never been stored and is
    advanced by the store on every successful save.
    """

    pipeline_key: str
    stages: dict[str, EnvironmentStage] = msgspec.field(default_factory=dict)
    version: int = 0

    @property
    def commit_stage(self) -> EnvironmentStage | None:
        """Return the full commit history stage, if the SCM collector wrote one."""
        return self.stages.get(COMMIT_STAGE)

    def stage(self, environment_name: str) -> EnvironmentStage:
        """Return the named stage, or an empty one when absent."""
        existing = self.stages.get(environment_name)
        if existing is not None:
            return existing
        return EnvironmentStage(environment_name=environment_name)


@dataclasses.dataclass(frozen=True, slots=True)
class DeploymentObservation:
    """A single fact: ``revision_id`` was deployed to an environment at a time."""

    revision_id: str
    environment_name: str
    observed_at: int
    build_id: str
