"""Configuration for deployment collection runs.

Usage
-----
Create a configuration with defaults:

>>> config = CollectionConfig()
>>> config.page_size
100

Or load from environment variables:

>>> import os
>>> os.environ["DEPLOYTRAIL_PROJECT_IDS"] = "Payments, Ledger"
>>> CollectionConfig.from_env().project_ids
('Payments', 'Ledger')

"""

from __future__ import annotations

import dataclasses as dc
import os


@dc.dataclass(frozen=True, slots=True)
class CollectionConfig:
    """Knobs for discovery, extraction and reconciliation.

    Attributes
    ----------
    project_ids
        Root TeamCity project ids scanned for deployment build types.
    page_size
        Number of builds requested per build-history page. Default is 100.
    max_consecutive_page_failures
        Consecutive failed pages after which paging of one build type stops.
        Default is 3.
    max_conflict_retries
        Times a pipeline is reloaded and reconciled again after losing a
        concurrent write. Default is 3.
    log_level
        femtologging level name. Default is ``INFO``.

    """

    project_ids: tuple[str, ...] = ()
    page_size: int = 100
    max_consecutive_page_failures: int = 3
    max_conflict_retries: int = 3
    log_level: str = "INFO"

    @staticmethod
    def _parse_int(env_var: str, default: int, *, minimum: int) -> int:
        """Read an integer env var no smaller than ``minimum``."""
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            return default
        try:
            value = int(raw)
        except ValueError as exc:
            msg = f"{env_var} must be an integer, got: {raw!r}"
            raise ValueError(msg) from exc
        if value < minimum:
            msg = f"{env_var} must be at least {minimum}, got: {value}"
            raise ValueError(msg)
        return value

    @staticmethod
    def _parse_list(env_var: str) -> tuple[str, ...]:
        raw = os.environ.get(env_var, "")
        return tuple(part.strip() for part in raw.split(",") if part.strip())

    @classmethod
    def from_env(cls) -> CollectionConfig:
        """Create configuration from environment variables.

        Reads ``DEPLOYTRAIL_PROJECT_IDS`` (comma separated),
        ``DEPLOYTRAIL_PAGE_SIZE``, ``DEPLOYTRAIL_MAX_PAGE_FAILURES``,
        ``DEPLOYTRAIL_MAX_CONFLICT_RETRIES`` and ``DEPLOYTRAIL_LOG_LEVEL``.

        Raises
        ------
        ValueError
            If a numeric variable is not an integer or is below its minimum.

        """
        return cls(
            project_ids=cls._parse_list("DEPLOYTRAIL_PROJECT_IDS"),
            page_size=cls._parse_int("DEPLOYTRAIL_PAGE_SIZE", 100, minimum=1),
            max_consecutive_page_failures=cls._parse_int(
                "DEPLOYTRAIL_MAX_PAGE_FAILURES", 3, minimum=1
            ),
            max_conflict_retries=cls._parse_int(
                "DEPLOYTRAIL_MAX_CONFLICT_RETRIES", 3, minimum=0
            ),
            log_level=os.environ.get("DEPLOYTRAIL_LOG_LEVEL", "").strip() or "INFO",
        )
