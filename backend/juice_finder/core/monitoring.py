"""
Structured logging and operation timing.
"""

import time
from typing import Callable, Any
from functools import wraps
import logging
import json
from datetime import datetime

logger = logging.getLogger(__name__)


# ============================================================================
# STRUCTURED LOGGING
# ============================================================================

class JSONFormatter(logging.Formatter):
    """JSON formatter for structured log output (LOG_FORMAT=json)."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        duration_ms = getattr(record, "duration_ms", None)
        if duration_ms is not None:
            log_data["duration_ms"] = duration_ms
        return json.dumps(log_data, ensure_ascii=False)


# ============================================================================
# PERFORMANCE TRACKING
# ============================================================================

def track_performance(operation_name: str):
    """Decorator to log the duration of a synchronous operation."""
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000
                logger.error(
                    f"{operation_name} failed after {elapsed:.0f}ms: {e}",
                    extra={"duration_ms": round(elapsed)},
                )
                raise
            elapsed = (time.perf_counter() - start) * 1000
            logger.info(
                f"{operation_name} completed in {elapsed:.0f}ms",
                extra={"duration_ms": round(elapsed)},
            )
            return result

        return wrapper

    return decorator
