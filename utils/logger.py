"""
Structured Logger - JSON log lines for sync cycles, API calls and timings
"""
import json
import logging
from typing import Dict, Any, Optional

import config
from utils.timezone import get_reference_time

SERVICE_NAME = "roster-sync"


def _base_entry(logger_name: str, event_type: str) -> Dict[str, Any]:
    return {
        "timestamp": get_reference_time().isoformat(),
        "timezone": config.REFERENCE_TIMEZONE,
        "event_type": event_type,
        "service": SERVICE_NAME,
        "logger": logger_name,
    }


class StructuredLogger:
    """Provides structured logging in JSON format for better parsing and analysis"""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self.name = name

    def log_sync_event(self, event_type: str, details: Dict[str, Any]):
        """Log a sync-related event with structured data"""
        log_entry = {**_base_entry(self.name, event_type), **details}

        # Choose log level based on event type
        if "error" in event_type.lower() or "failed" in event_type.lower():
            self.logger.error(json.dumps(log_entry, default=str))
        elif "warning" in event_type.lower() or "conflict" in event_type.lower():
            self.logger.warning(json.dumps(log_entry, default=str))
        else:
            self.logger.info(json.dumps(log_entry, default=str))

    def log_api_call(self, method: str, endpoint: str, status_code: Optional[int] = None,
                     duration_ms: Optional[float] = None, error: Optional[str] = None):
        """Log API call details"""
        log_entry = _base_entry(self.name, "api_call")
        log_entry["method"] = method
        log_entry["endpoint"] = endpoint

        if status_code is not None:
            log_entry["status_code"] = status_code
        if duration_ms is not None:
            log_entry["duration_ms"] = round(duration_ms, 1)
        if error:
            log_entry["error"] = error

        if error or (status_code and status_code >= 400):
            self.logger.error(json.dumps(log_entry))
        else:
            self.logger.debug(json.dumps(log_entry))

    def log_performance(self, operation: str, duration_seconds: float,
                        item_count: Optional[int] = None, success: bool = True):
        """Log performance metrics"""
        log_entry = _base_entry(self.name, "performance")
        log_entry["operation"] = operation
        log_entry["duration_seconds"] = round(duration_seconds, 3)
        log_entry["success"] = success

        if item_count is not None:
            log_entry["item_count"] = item_count
            log_entry["items_per_second"] = item_count / duration_seconds if duration_seconds > 0 else 0

        self.logger.info(json.dumps(log_entry))


class JsonFormatter(logging.Formatter):
    """Custom formatter that outputs JSON"""

    def format(self, record):
        message = record.getMessage()

        # Messages produced by StructuredLogger are already JSON
        if message.startswith('{'):
            try:
                json.loads(message)
                return message
            except ValueError:
                pass

        log_entry = {
            "timestamp": get_reference_time().isoformat(),
            "timezone": config.REFERENCE_TIMEZONE,
            "level": record.levelname,
            "logger": record.name,
            "message": message
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry)


def setup_logging(level: Optional[str] = None, structured: Optional[bool] = None):
    """Configure the root logger from LOG_LEVEL / STRUCTURED_LOGGING"""
    level = level or config.LOG_LEVEL
    structured = config.STRUCTURED_LOGGING if structured is None else structured

    handler = logging.StreamHandler()
    if structured:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
