"""Typed failure values for isolated units of collection work.

A collection run is made of small units: classifying one build type, fetching
one page of builds, reconciling one pipeline. A unit that fails produces a
:class:`UnitFailure` instead of aborting the run; failures accumulate in a
:class:`FailureLog` that callers can inspect once the run completes.
"""

from __future__ import annotations

import dataclasses
import enum


class FailureKind(enum.StrEnum):
    """Categories used to group unit failures."""

    TRANSPORT = "transport"
    PARSE = "parse"
    MISSING_PREREQUISITE = "missing_prerequisite"
    CONFLICT = "conflict"
    CYCLE = "cycle"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


def categorize_error(exc: BaseException) -> FailureKind:
    """Map an exception onto the failure taxonomy.

    Deploytrail errors declare their category through a ``failure_kind``
    class attribute; anything else is ``UNKNOWN``.
    """
    kind = getattr(exc, "failure_kind", None)
    if isinstance(kind, FailureKind):
        return kind
    return FailureKind.UNKNOWN


@dataclasses.dataclass(frozen=True, slots=True)
class UnitFailure:
    """A unit of work that was abandoned, and why."""

    unit: str
    kind: FailureKind
    message: str

    @classmethod
    def from_exception(cls, unit: str, exc: BaseException) -> UnitFailure:
        """Build a failure record from the exception that ended the unit."""
        return cls(unit=unit, kind=categorize_error(exc), message=str(exc))


@dataclasses.dataclass(slots=True)
class FailureLog:
    """Append-only record of unit failures for one collection run."""

    failures: list[UnitFailure] = dataclasses.field(default_factory=list)

    def record(self, failure: UnitFailure) -> UnitFailure:
        """Append ``failure`` and return it."""
        self.failures.append(failure)
        return failure

    def of_kind(self, kind: FailureKind) -> list[UnitFailure]:
        """Return recorded failures of one kind, in recording order."""
        return [failure for failure in self.failures if failure.kind is kind]

    def __len__(self) -> int:
        """Return the number of recorded failures."""
        return len(self.failures)

    def __bool__(self) -> bool:
        """Return True when any failure was recorded."""
        return bool(self.failures)
