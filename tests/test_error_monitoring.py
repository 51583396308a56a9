"""Tests for error capture and health reporting."""

from error_monitoring import ErrorMonitor
from services.errors import TranscodeError


def test_capture_counts_by_component():
    monitor = ErrorMonitor()

    monitor.capture_error(TranscodeError("corrupted", note_id="n1"), "ingestion", note_id="n1")
    monitor.capture_error(ValueError("bad"), "api")

    summary = monitor.get_error_summary(hours=1)
    assert summary["total_errors"] == 2
    assert summary["by_component"] == {"ingestion": 1, "api": 1}
    assert summary["by_error_type"]["TranscodeError"] == 1


def test_recent_errors_are_newest_first_without_tracebacks():
    monitor = ErrorMonitor()
    monitor.capture_error(ValueError("first"), "api")
    monitor.capture_error(ValueError("second"), "api")

    recent = monitor.get_recent_errors(limit=1)

    assert [event["message"] for event in recent] == ["second"]
    assert "traceback" not in recent[0]


def test_health_degrades_with_error_volume():
    monitor = ErrorMonitor()
    assert monitor.health_check()["status"] == "healthy"

    for _ in range(4):
        monitor.capture_error(ValueError("x"), "ingestion")
    assert monitor.health_check()["status"] == "degraded"

    monitor.capture_error(RuntimeError("disk"), "ingestion", severity="critical")
    assert monitor.health_check()["status"] == "critical"


def test_event_buffer_is_bounded():
    monitor = ErrorMonitor(max_events=3)
    for i in range(5):
        monitor.capture_error(ValueError(str(i)), "api")

    assert len(monitor.events) == 3
    assert monitor.error_counts["api:ValueError"] == 5
