"""Deploytrail runtime entrypoint for scheduled collection runs.

The runtime wires a :class:`~deploytrail.collector.DeploymentCollector` from
environment configuration and collects every configured TeamCity project
into the pipeline of the same key.

Configuration is driven by environment variables:

- ``DEPLOYTRAIL_DATABASE_URL``: SQLAlchemy async database URL (required)
- ``DEPLOYTRAIL_TEAMCITY_URL``: TeamCity server base URL (required)
- ``DEPLOYTRAIL_TEAMCITY_TOKEN`` or ``DEPLOYTRAIL_TEAMCITY_CREDENTIALS``
- ``DEPLOYTRAIL_PROJECT_IDS``: comma separated root project ids
- ``DEPLOYTRAIL_LOG_LEVEL``: Log level (default ``INFO``)

Run a collection pass with ``python -m deploytrail.runtime``.
"""

from __future__ import annotations

import asyncio
import os
import typing as typ

from deploytrail.collector import DeploymentCollector
from deploytrail.config import CollectionConfig
from deploytrail.logging import (
    configure_logging,
    get_logger,
    log_error,
    log_info,
    log_warning,
)
from deploytrail.pipeline.storage import SqlPipelineStore, init_pipeline_storage
from deploytrail.teamcity.client import TeamCityRestClient, TeamCityRestConfig
from deploytrail.teamcity.errors import TeamCityConfigError

if typ.TYPE_CHECKING:
    import httpx
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from deploytrail.collector import ProjectCollectionResult

__all__ = ["build_collector", "collect_projects", "main"]

logger = get_logger(__name__)


def build_collector(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    config: CollectionConfig | None = None,
    client_config: TeamCityRestConfig | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> tuple[DeploymentCollector, TeamCityRestClient]:
    """Build a collector backed by TeamCity REST and SQL storage.

    The REST client is returned alongside the collector so the caller can
    close it once the run is over.

    Raises
    ------
    TeamCityConfigError
        If ``client_config`` is omitted and the environment lacks a TeamCity
        URL or credentials.

    """
    resolved = config or CollectionConfig.from_env()
    client = TeamCityRestClient(
        client_config or TeamCityRestConfig.from_env(), http_client=http_client
    )
    store = SqlPipelineStore(session_factory)
    collector = DeploymentCollector(client, store, store, config=resolved)
    return collector, client


async def collect_projects(
    collector: DeploymentCollector, project_ids: typ.Iterable[str]
) -> list[ProjectCollectionResult]:
    """Collect each project into the pipeline keyed by its project id."""
    results: list[ProjectCollectionResult] = []
    for project_id in project_ids:
        result = await collector.collect_project(project_id, project_id)
        log_info(
            logger,
            "Collected project %s: environments=%d observations=%d reconciled=%s",
            project_id,
            len(result.environments),
            result.observations,
            result.reconciled,
        )
        results.append(result)
    return results


async def _run(database_url: str, config: CollectionConfig) -> None:
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    engine = create_async_engine(database_url)
    try:
        await init_pipeline_storage(engine)
        session_factory = async_sessionmaker(engine, expire_on_commit=False)
        collector, client = build_collector(session_factory, config=config)
        try:
            await collect_projects(collector, config.project_ids)
        finally:
            await client.aclose()
    finally:
        await engine.dispose()

    failures = collector.failures
    if failures:
        log_warning(logger, "Collection finished with %d failed units", len(failures))


def main() -> None:
    """Run one collection pass over the configured projects."""
    try:
        config = CollectionConfig.from_env()
    except ValueError as exc:
        configure_logging(os.environ.get("DEPLOYTRAIL_LOG_LEVEL"))
        log_error(logger, "Invalid collection configuration: %s", exc)
        raise SystemExit(1) from exc

    normalized_level, invalid_level = configure_logging(config.log_level)
    if invalid_level:
        log_warning(
            logger,
            "Invalid DEPLOYTRAIL_LOG_LEVEL %r, falling back to %s",
            config.log_level,
            normalized_level,
        )

    database_url = os.environ.get("DEPLOYTRAIL_DATABASE_URL")
    if not database_url:
        log_error(logger, "DEPLOYTRAIL_DATABASE_URL is not set")
        raise SystemExit(1)
    if not config.project_ids:
        log_warning(logger, "DEPLOYTRAIL_PROJECT_IDS is empty; nothing to collect")
        return

    log_info(
        logger,
        "Starting Deploytrail collection for %d projects (log_level=%s)",
        len(config.project_ids),
        normalized_level,
    )
    try:
        asyncio.run(_run(database_url, config))
    except TeamCityConfigError as exc:
        log_error(logger, "Invalid TeamCity configuration: %s", exc)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
