"""Unit tests for femtologging integration helpers.

Run with:
    pytest tests/unit/test_logging.py
"""

from __future__ import annotations

import pytest

from deploytrail.logging import (
    configure_logging,
    format_log_message,
    log_error,
    log_info,
    log_warning,
    normalize_log_level,
)


class _FakeLogger:
    """Collects log calls for assertions."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, object | None, bool]] = []

    def log(
        self,
        level: str,
        message: str,
        /,
        *,
        exc_info: object | None = None,
        stack_info: bool = False,
    ) -> str:
        self.calls.append((level, message, exc_info, stack_info))
        return message


@pytest.mark.parametrize(
    ("input_level", "expected_level", "expected_invalid"),
    [
        pytest.param("warning", "WARNING", False, id="lowercase"),
        pytest.param("  trace ", "TRACE", False, id="padded"),
        pytest.param(None, "INFO", True, id="none"),
        pytest.param("", "INFO", True, id="empty"),
        pytest.param("verbose", "INFO", True, id="unknown"),
    ],
)
def test_normalize_log_level(
    input_level: str | None, expected_level: str, *, expected_invalid: bool
) -> None:
    """Levels are upper-cased; unknown values fall back to INFO."""
    assert normalize_log_level(input_level) == (expected_level, expected_invalid)


def test_format_log_message_without_args_is_verbatim() -> None:
    """Templates without arguments are not interpolated."""
    assert format_log_message("100% done") == "100% done"


def test_log_helpers_emit_levels() -> None:
    """Each helper emits its own level with the formatted message."""
    logger = _FakeLogger()

    log_info(logger, "scanned %s", "Root")
    log_warning(logger, "skipped %d pages", 2)
    log_error(logger, "failed: %s", "build:1")

    assert logger.calls == [
        ("INFO", "scanned Root", None, False),
        ("WARNING", "skipped 2 pages", None, False),
        ("ERROR", "failed: build:1", None, False),
    ]


def test_configure_logging_applies_normalized_level(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """basicConfig receives the normalized level."""
    captured: dict[str, object] = {}

    def fake_basic_config(**kwargs: object) -> None:
        captured.update(kwargs)

    monkeypatch.setattr("deploytrail.logging.basicConfig", fake_basic_config)

    assert configure_logging("nope", force=True) == ("INFO", True)
    assert captured == {"level": "INFO", "force": True}
