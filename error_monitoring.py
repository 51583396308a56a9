"""
Error monitoring and logging setup for Chest of Notes
"""

import logging
import traceback
from datetime import datetime, timedelta
from typing import Dict, Any, Optional, List
from collections import defaultdict, deque
import json
from pathlib import Path
from dataclasses import dataclass, asdict, field

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: str = "INFO", error_log_file: Optional[Path] = None) -> None:
    """Configure the root logger once: console output plus an optional warnings file."""
    root = logging.getLogger()
    if getattr(root, "_notes_configured", False):
        return

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if error_log_file:
        Path(error_log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(error_log_file)
        file_handler.setLevel(logging.WARNING)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.setLevel(level.upper())
    root._notes_configured = True


@dataclass
class ErrorEvent:
    timestamp: datetime
    error_type: str
    message: str
    component: str
    note_id: Optional[str] = None
    traceback: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    severity: str = "error"  # warning, error, critical


class ErrorMonitor:
    """Keeps recent failures in memory and reports them for health checks"""

    def __init__(self, max_events: int = 1000):
        self.events = deque(maxlen=max_events)
        self.error_counts = defaultdict(int)
        self.logger = logging.getLogger("chest_of_notes.errors")

    def capture_error(self,
                      error: Exception,
                      component: str,
                      note_id: Optional[str] = None,
                      context: Optional[Dict[str, Any]] = None,
                      severity: str = "error") -> ErrorEvent:
        """Capture and log an error event"""

        event = ErrorEvent(
            timestamp=datetime.now(),
            error_type=type(error).__name__,
            message=str(error),
            component=component,
            note_id=note_id,
            traceback="".join(traceback.format_exception(type(error), error, error.__traceback__)),
            context=context or {},
            severity=severity
        )

        self.events.append(event)
        self.error_counts[f"{component}:{event.error_type}"] += 1

        log_data = {
            "error_type": event.error_type,
            "message": event.message,
            "component": component,
            "note_id": note_id,
            "context": event.context,
            "severity": severity
        }

        if severity == "critical":
            self.logger.critical(json.dumps(log_data))
        elif severity == "error":
            self.logger.error(json.dumps(log_data))
        else:
            self.logger.warning(json.dumps(log_data))

        return event

    def get_error_summary(self, hours: int = 24) -> Dict[str, Any]:
        """Get error summary for the last N hours"""
        cutoff = datetime.now() - timedelta(hours=hours)
        recent_events = [e for e in self.events if e.timestamp > cutoff]

        by_component: Dict[str, int] = defaultdict(int)
        by_error_type: Dict[str, int] = defaultdict(int)
        for event in recent_events:
            by_component[event.component] += 1
            by_error_type[event.error_type] += 1

        return {
            "total_errors": len(recent_events),
            "by_component": dict(by_component),
            "by_error_type": dict(by_error_type),
            "period_hours": hours
        }

    def get_recent_errors(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Get recent error events"""
        recent = list(self.events)[-limit:]
        result = []
        for event in reversed(recent):
            data = asdict(event)
            data["timestamp"] = event.timestamp.isoformat()
            data.pop("traceback", None)
            result.append(data)
        return result

    def health_check(self) -> Dict[str, Any]:
        """Summarize the last hour of errors into a status"""
        now = datetime.now()
        last_hour = now - timedelta(hours=1)

        recent_critical = len([
            e for e in self.events
            if e.timestamp > last_hour and e.severity == "critical"
        ])

        recent_errors = len([
            e for e in self.events
            if e.timestamp > last_hour and e.severity == "error"
        ])

        status = "healthy"
        if recent_critical > 0:
            status = "critical"
        elif recent_errors > 10:
            status = "unhealthy"
        elif recent_errors > 3:
            status = "degraded"

        return {
            "status": status,
            "critical_errors_last_hour": recent_critical,
            "errors_last_hour": recent_errors,
            "total_events": len(self.events),
            "timestamp": now.isoformat()
        }
