"""Persistence for pipelines and the commit lookup table."""

from __future__ import annotations

import datetime as dt
import typing as typ

import msgspec
from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Integer,
    String,
    Text,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from deploytrail.common.time import utcnow

from .errors import PipelineVersionConflictError
from .models import Commit, EnvironmentStage, Pipeline

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from sqlalchemy.engine import Dialect
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    SessionFactory: typ.TypeAlias = async_sessionmaker[AsyncSession]


class Base(DeclarativeBase):
    """Base declarative class for Deploytrail models."""


class UTCDateTime(TypeDecorator[dt.datetime]):
    """DateTime wrapper that round-trips UTC tzinfo even on SQLite."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Force bound datetime values to UTC with tzinfo."""
        if value is None:
            return None
        if value.tzinfo is None:
            msg = "datetime values must be timezone aware"
            raise ValueError(msg)
        return value.astimezone(dt.UTC)

    def process_result_value(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Ensure result datetimes are UTC and timezone aware."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)


class PipelineRecord(Base):
    """Stored pipeline: stage name to serialized stage, guarded by a version."""

    __tablename__ = "pipelines"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    pipeline_key: Mapped[str] = mapped_column(String(255), unique=True)
    version: Mapped[int] = mapped_column(Integer, default=1)
    stages: Mapped[dict[str, typ.Any]] = mapped_column(JSON, default=dict)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


class CommitRecord(Base):
    """Commit recorded by the source-control collector."""

    __tablename__ = "commits"

    revision_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    commit_timestamp: Mapped[int] = mapped_column(BigInteger)
    author: Mapped[str | None] = mapped_column(String(255), default=None)
    message: Mapped[str | None] = mapped_column(Text(), default=None)
    first_seen_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)


def _stages_to_json(stages: cabc.Mapping[str, EnvironmentStage]) -> dict[str, typ.Any]:
    return {name: msgspec.to_builtins(stage) for name, stage in stages.items()}


def _pipeline_from_record(record: PipelineRecord) -> Pipeline:
    stages = {
        name: msgspec.convert(payload, EnvironmentStage)
        for name, payload in (record.stages or {}).items()
    }
    return Pipeline(
        pipeline_key=record.pipeline_key, stages=stages, version=record.version
    )


class SqlPipelineStore:
    """SQLAlchemy pipeline store with version compare-and-swap on save."""

    def __init__(self, session_factory: SessionFactory) -> None:
        """Store the session factory used for every operation."""
        self._session_factory = session_factory

    async def load_pipeline(self, pipeline_key: str) -> Pipeline | None:
        """Return the stored pipeline for ``pipeline_key``, if any."""
        async with self._session_factory() as session:
            record = await session.scalar(
                select(PipelineRecord).where(
                    PipelineRecord.pipeline_key == pipeline_key
                )
            )
            if record is None:
                return None
            return _pipeline_from_record(record)

    async def save_pipeline(self, pipeline: Pipeline) -> Pipeline:
        """Write ``pipeline`` if nobody saved it since it was loaded.

        A version of zero inserts a new record; any other version only updates
        the row still carrying that version.
        """
        expected = pipeline.version
        payload = _stages_to_json(pipeline.stages)
        try:
            async with self._session_factory() as session, session.begin():
                if expected == 0:
                    session.add(
                        PipelineRecord(
                            pipeline_key=pipeline.pipeline_key,
                            version=1,
                            stages=payload,
                        )
                    )
                else:
                    result = await session.execute(
                        update(PipelineRecord)
                        .where(
                            PipelineRecord.pipeline_key == pipeline.pipeline_key,
                            PipelineRecord.version == expected,
                        )
                        .values(stages=payload, version=expected + 1)
                    )
                    if result.rowcount != 1:
                        raise PipelineVersionConflictError.for_pipeline(
                            pipeline.pipeline_key, expected
                        )
        except IntegrityError as exc:
            raise PipelineVersionConflictError.for_pipeline(
                pipeline.pipeline_key, expected
            ) from exc
        return msgspec.structs.replace(pipeline, version=expected + 1)

    async def find_commit_by_revision(self, revision_id: str) -> Commit | None:
        """Return the commit recorded for ``revision_id``, if any."""
        async with self._session_factory() as session:
            record = await session.get(CommitRecord, revision_id)
            if record is None:
                return None
            return Commit(
                revision_id=record.revision_id,
                commit_timestamp=record.commit_timestamp,
                author=record.author,
                message=record.message,
            )

    async def record_commits(self, commits: cabc.Iterable[Commit]) -> int:
        """Insert or refresh commit rows; returns the number written."""
        written = 0
        async with self._session_factory() as session, session.begin():
            for commit in commits:
                await session.merge(
                    CommitRecord(
                        revision_id=commit.revision_id,
                        commit_timestamp=commit.commit_timestamp,
                        author=commit.author,
                        message=commit.message,
                    )
                )
                written += 1
        return written


async def init_pipeline_storage(engine: AsyncEngine) -> None:
    """Create all tables registered with Base if they are absent."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
