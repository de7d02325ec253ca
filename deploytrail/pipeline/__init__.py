"""Pipeline records and the deployment-commit reconciliation engine."""

from __future__ import annotations

from .errors import (
    MissingCommitStageError,
    PipelineVersionConflictError,
    ReservedStageError,
)
from .models import (
    COMMIT_STAGE,
    Commit,
    DeploymentObservation,
    EnvironmentStage,
    Pipeline,
    PipelineCommit,
)
from .reconciler import (
    PipelineReconciler,
    PipelineStore,
    ReconciliationResult,
    merge_deployed_revisions,
    reconcile_environment_stage,
    walk_commit_history,
)
from .storage import (
    CommitRecord,
    PipelineRecord,
    SqlPipelineStore,
    init_pipeline_storage,
)

__all__ = [
    "COMMIT_STAGE",
    "Commit",
    "CommitRecord",
    "DeploymentObservation",
    "EnvironmentStage",
    "MissingCommitStageError",
    "Pipeline",
    "PipelineCommit",
    "PipelineReconciler",
    "PipelineRecord",
    "PipelineStore",
    "PipelineVersionConflictError",
    "ReconciliationResult",
    "ReservedStageError",
    "SqlPipelineStore",
    "init_pipeline_storage",
    "merge_deployed_revisions",
    "reconcile_environment_stage",
    "walk_commit_history",
]
