"""Structured lifecycle events for deployment collection.

Events are emitted through femtologging as ``[event] key=value`` lines:
INFO for completed units of work, WARNING when reconciliation is skipped and
ERROR for abandoned units.
"""

from __future__ import annotations

import enum
import typing as typ

from deploytrail.logging import get_logger, log_error, log_info, log_warning

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from deploytrail.outcomes import UnitFailure

logger = get_logger(__name__)


class CollectionEventType(enum.StrEnum):
    """Structured log event types for collection runs."""

    SCAN_COMPLETED = "collection.scan.completed"
    UNIT_FAILED = "collection.unit.failed"
    EXTRACTION_COMPLETED = "collection.extraction.completed"
    RECONCILE_COMPLETED = "collection.reconcile.completed"
    RECONCILE_SKIPPED = "collection.reconcile.skipped"


class CollectionEventLogger:
    """Emit structured collection events via femtologging."""

    def log_scan_completed(
        self, *, project_id: str, build_types_scanned: int, deployment_build_types: int
    ) -> None:
        """Log the end of a project scan."""
        log_info(
            logger,
            "[%s] project_id=%s build_types_scanned=%d deployment_build_types=%d",
            CollectionEventType.SCAN_COMPLETED,
            project_id,
            build_types_scanned,
            deployment_build_types,
        )

    def log_unit_failed(self, failure: UnitFailure) -> None:
        """Log a unit of work that was abandoned."""
        log_error(
            logger,
            "[%s] unit=%s failure_kind=%s error_message=%s",
            CollectionEventType.UNIT_FAILED,
            failure.unit,
            failure.kind,
            failure.message,
        )

    def log_extraction_completed(
        self,
        *,
        build_type_id: str,
        environment_name: str,
        pages: int,
        builds_seen: int,
        observations: int,
    ) -> None:
        """Log the end of build-history extraction for one build type."""
        log_info(
            logger,
            "[%s] build_type_id=%s environment=%s pages=%d builds_seen=%d "
            "observations=%d",
            CollectionEventType.EXTRACTION_COMPLETED,
            build_type_id,
            environment_name,
            pages,
            builds_seen,
            observations,
        )

    def log_reconcile_completed(
        self,
        *,
        pipeline_key: str,
        environments: cabc.Sequence[str],
        saved: bool,
        attempts: int,
    ) -> None:
        """Log a finished pipeline reconciliation."""
        log_info(
            logger,
            "[%s] pipeline_key=%s environments=%s saved=%s attempts=%d",
            CollectionEventType.RECONCILE_COMPLETED,
            pipeline_key,
            ",".join(environments),
            saved,
            attempts,
        )

    def log_reconcile_skipped(self, *, pipeline_key: str, reason: str) -> None:
        """Log a pipeline whose reconciliation was skipped without writing."""
        log_warning(
            logger,
            "[%s] pipeline_key=%s reason=%s",
            CollectionEventType.RECONCILE_SKIPPED,
            pipeline_key,
            reason,
        )
