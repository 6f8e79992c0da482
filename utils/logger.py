"""
Structured Logger - JSON job events for log-based alerting and dashboards
"""
import json
import logging
from typing import Dict, Any, Optional

import config
from utils.timezone import get_local_time


class StructuredLogger:
    """Provides structured logging in JSON format for better parsing and analysis"""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self.name = name

    def _entry(self, event_type: str) -> Dict[str, Any]:
        return {
            "timestamp": get_local_time().isoformat(),
            "timezone": config.TIMEZONE,
            "event_type": event_type,
            "service": config.SERVICE_NAME,
            "logger": self.name,
        }

    def log_job_event(self, event_type: str, details: Dict[str, Any]):
        """Log a job-related event with structured data"""
        log_entry = {**self._entry(event_type), **details}

        # Choose log level based on event type
        if "error" in event_type.lower() or "failed" in event_type.lower():
            self.logger.error(json.dumps(log_entry, default=str))
        elif "warning" in event_type.lower() or "skipped" in event_type.lower():
            self.logger.warning(json.dumps(log_entry, default=str))
        else:
            self.logger.info(json.dumps(log_entry, default=str))

    def log_upstream_call(self, method: str, group_id: Optional[int] = None,
                          duration_ms: Optional[float] = None, error: Optional[str] = None):
        """Log one upstream AJAX call"""
        log_entry = self._entry("upstream_call")
        log_entry["method"] = method
        if group_id is not None:
            log_entry["group_id"] = group_id
        if duration_ms is not None:
            log_entry["duration_ms"] = round(duration_ms, 1)
        if error:
            log_entry["error"] = error
            self.logger.error(json.dumps(log_entry))
        else:
            self.logger.debug(json.dumps(log_entry))

    def log_performance(self, operation: str, duration_seconds: float,
                        item_count: Optional[int] = None, success: bool = True):
        """Log performance metrics"""
        log_entry = self._entry("performance")
        log_entry.update({
            "operation": operation,
            "duration_seconds": round(duration_seconds, 3),
            "success": success
        })

        if item_count is not None:
            log_entry["item_count"] = item_count
            log_entry["items_per_second"] = item_count / duration_seconds if duration_seconds > 0 else 0

        self.logger.info(json.dumps(log_entry))


class JsonFormatter(logging.Formatter):
    """Custom formatter that outputs JSON"""

    def format(self, record):
        # If the message is already JSON, return it as-is
        message = record.getMessage()
        try:
            json.loads(message)
            return message
        except (json.JSONDecodeError, TypeError):
            log_entry = {
                "timestamp": get_local_time().isoformat(),
                "timezone": config.TIMEZONE,
                "level": record.levelname,
                "logger": record.name,
                "message": message
            }

            if record.exc_info:
                log_entry["exception"] = self.formatException(record.exc_info)

            return json.dumps(log_entry)


def configure_logging(level: Optional[str] = None, structured: Optional[bool] = None):
    """Install the root handler (JSON when structured logging is on)"""
    level = level or config.LOG_LEVEL
    structured = config.STRUCTURED_LOGGING if structured is None else structured

    handler = logging.StreamHandler()
    if structured:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s'))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)
