"""Behavioural tests for collecting TeamCity deployments into pipelines."""

from __future__ import annotations

import asyncio
import typing as typ

import pytest
from pytest_bdd import given, parsers, scenario, then, when
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from deploytrail.collector import DeploymentCollector, ProjectCollectionResult
from deploytrail.pipeline import Commit, SqlPipelineStore, init_pipeline_storage
from tests.helpers.pipeline_fakes import pipeline_with_history, stage_entries
from tests.helpers.teamcity_fakes import (
    FakeTeamCityClient,
    build,
    deployment_build_type,
)

if typ.TYPE_CHECKING:
    from pathlib import Path

_MILLIS = 1000


T = typ.TypeVar("T")


def run_async(coro: typ.Coroutine[typ.Any, typ.Any, T]) -> T:
    """Run async coroutines in sync BDD step functions."""
    return asyncio.run(coro)


def _parse_entries(raw: str) -> list[tuple[str, int]]:
    """Parse ``rev@seconds`` pairs into ``(rev, epoch millis)`` tuples."""
    entries: list[tuple[str, int]] = []
    for item in raw.split(","):
        revision_id, seconds = item.strip().split("@")
        entries.append((revision_id, int(seconds) * _MILLIS))
    return entries


class ReconciliationContext(typ.TypedDict, total=False):
    """Shared state used by BDD steps."""

    session_factory: async_sessionmaker[AsyncSession]
    store: SqlPipelineStore
    client: FakeTeamCityClient
    collector: DeploymentCollector
    result: ProjectCollectionResult


@scenario(
    "../deployment_reconciliation.feature",
    "A deployment carries older commits into the environment",
)
def test_deployment_backfills_older_commits() -> None:
    """Behavioural test: older commits inherit the deployment timestamp."""


@scenario(
    "../deployment_reconciliation.feature",
    "Feature branch builds are not deployments",
)
def test_feature_branch_builds_are_ignored() -> None:
    """Behavioural test: only mainline and release builds are deployments."""


@scenario(
    "../deployment_reconciliation.feature",
    "A pipeline without commit history is skipped",
)
def test_pipeline_without_history_is_skipped() -> None:
    """Behavioural test: missing commit history prevents any write."""


@pytest.fixture
def reconciliation_context(tmp_path: Path) -> typ.Iterator[ReconciliationContext]:
    """Provision a fresh database and TeamCity fake for each scenario."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'reconciliation.db'}", poolclass=NullPool
    )
    run_async(init_pipeline_storage(engine))
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    store = SqlPipelineStore(session_factory)
    client = FakeTeamCityClient()
    yield {
        "session_factory": session_factory,
        "store": store,
        "client": client,
        "collector": DeploymentCollector(client, store, store),
    }
    run_async(engine.dispose())


@given(parsers.parse('a pipeline "{pipeline_key}" with commit history "{history}"'))
def given_pipeline_with_history(
    reconciliation_context: ReconciliationContext, pipeline_key: str, history: str
) -> None:
    """Store a pipeline whose Commit stage holds the given history."""
    store = reconciliation_context["store"]
    entries = _parse_entries(history)

    async def _seed() -> None:
        await store.save_pipeline(pipeline_with_history(pipeline_key, *entries))
        await store.record_commits(
            Commit(revision_id=rev, commit_timestamp=ts) for rev, ts in entries
        )

    run_async(_seed())


@given(parsers.parse('an empty pipeline store that knows commit "{revision_id}"'))
def given_store_with_commit(
    reconciliation_context: ReconciliationContext, revision_id: str
) -> None:
    """Record a commit without writing any pipeline."""
    store = reconciliation_context["store"]
    run_async(
        store.record_commits([Commit(revision_id=revision_id, commit_timestamp=1)])
    )


@given(
    parsers.parse(
        'TeamCity project "{project_id}" deploys build type "{build_type_id}" '
        'named "{name}"'
    )
)
def given_deployment_project(
    reconciliation_context: ReconciliationContext,
    project_id: str,
    build_type_id: str,
    name: str,
) -> None:
    """Register a project holding a single deployment build type."""
    reconciliation_context["client"].add_project(
        project_id, build_types=[deployment_build_type(build_type_id, name)]
    )


@given(
    parsers.parse(
        'build type "{build_type_id}" has a successful "{branch}" build of '
        '"{revision_id}" at "{triggered}"'
    )
)
def given_successful_build(
    reconciliation_context: ReconciliationContext,
    build_type_id: str,
    branch: str,
    revision_id: str,
    triggered: str,
) -> None:
    """Append a successful build to the build type's history."""
    history = reconciliation_context["client"].history.setdefault(build_type_id, [])
    build_id = f"{build_type_id}-{len(history) + 1}"
    history.append(build(build_id, revision_id, triggered, branch=branch))


@when(
    parsers.parse('project "{project_id}" is collected into pipeline "{pipeline_key}"')
)
def when_project_collected(
    reconciliation_context: ReconciliationContext, project_id: str, pipeline_key: str
) -> None:
    """Run discovery, extraction and reconciliation for the project."""
    collector = reconciliation_context["collector"]
    reconciliation_context["result"] = run_async(
        collector.collect_project(pipeline_key, project_id)
    )


@then(
    parsers.parse(
        'environment "{environment_name}" of pipeline "{pipeline_key}" holds '
        '"{expected}"'
    )
)
def then_environment_holds(
    reconciliation_context: ReconciliationContext,
    environment_name: str,
    pipeline_key: str,
    expected: str,
) -> None:
    """The stored environment stage holds exactly the expected entries."""
    pipeline = run_async(reconciliation_context["store"].load_pipeline(pipeline_key))
    assert pipeline is not None
    assert stage_entries(pipeline.stages[environment_name]) == _parse_entries(expected)


@then(
    parsers.parse('pipeline "{pipeline_key}" has no environment "{environment_name}"')
)
def then_no_environment(
    reconciliation_context: ReconciliationContext,
    pipeline_key: str,
    environment_name: str,
) -> None:
    """The environment never received a stage."""
    pipeline = run_async(reconciliation_context["store"].load_pipeline(pipeline_key))
    assert pipeline is not None
    assert environment_name not in pipeline.stages


@then(parsers.parse('pipeline "{pipeline_key}" was not written'))
def then_not_written(
    reconciliation_context: ReconciliationContext, pipeline_key: str
) -> None:
    """No pipeline record exists for the key."""
    store = reconciliation_context["store"]
    assert run_async(store.load_pipeline(pipeline_key)) is None


@then(parsers.parse('a "{kind}" failure is recorded for "{unit}"'))
def then_failure_recorded(
    reconciliation_context: ReconciliationContext, kind: str, unit: str
) -> None:
    """The collector recorded the expected unit failure."""
    failures = reconciliation_context["collector"].failures.failures
    assert [(f.kind.value, f.unit) for f in failures] == [(kind, unit)]
