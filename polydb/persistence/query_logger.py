"""
Query Logger - Statement History and Slow Query Detection

📜 Observable Data Access:
Adapters report every query and execute call to an optional QueryLogger.
The logger keeps a bounded in-memory history for inspection in tests and
diagnostics, and forwards each entry to the standard logging hierarchy at
a level matching its outcome.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)

LOG_LEVELS = ("all", "error", "slow")


@dataclass
class QueryLogEntry:
    """A single logged statement"""
    type: str
    sql: str
    params: Any = None
    duration: float = 0.0
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    slow: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "sql": self.sql,
            "params": self.params,
            "duration": self.duration,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
            "slow": self.slow,
        }


class QueryLogger:
    """
    Bounded query history.

    Args:
        enabled: Disable to make log() a no-op
        log_level: "all" keeps every entry, "error" only failures,
            "slow" only statements over the threshold (and failures)
        slow_query_threshold: Seconds after which a statement counts as slow
        max_logs: History cap, oldest entries are evicted first
    """

    def __init__(self, enabled: bool = True, log_level: str = "all",
                 slow_query_threshold: float = 1.0, max_logs: int = 1000,
                 name: str = "polydb.queries"):
        if log_level not in LOG_LEVELS:
            raise ValueError(f"Invalid log_level: {log_level}. Must be one of {LOG_LEVELS}")
        self.enabled = enabled
        self.log_level = log_level
        self.slow_query_threshold = slow_query_threshold
        self.max_logs = max_logs
        self._logs: Deque[QueryLogEntry] = deque(maxlen=max_logs)
        self._logger = logging.getLogger(name)

    def log(self, type: str, sql: str, params: Any = None, duration: float = 0.0,
            error: Optional[BaseException] = None) -> Optional[QueryLogEntry]:
        if not self.enabled:
            return None

        slow = duration >= self.slow_query_threshold
        if self.log_level == "error" and error is None:
            return None
        if self.log_level == "slow" and not slow and error is None:
            return None

        entry = QueryLogEntry(
            type=type,
            sql=sql,
            params=params,
            duration=duration,
            error=str(error) if error is not None else None,
            slow=slow,
        )
        self._logs.append(entry)

        if error is not None:
            self._logger.error(f"[{type}] {sql} failed after {duration * 1000:.1f}ms: {error}")
        elif slow:
            self._logger.warning(f"[{type}] slow query ({duration * 1000:.1f}ms): {sql}")
        else:
            self._logger.debug(f"[{type}] {sql} ({duration * 1000:.1f}ms)")
        return entry

    def get_logs(self, type: Optional[str] = None, slow_only: bool = False,
                 errors_only: bool = False, limit: Optional[int] = None) -> List[QueryLogEntry]:
        """Return logged entries, newest last"""
        entries = list(self._logs)
        if type:
            entries = [e for e in entries if e.type == type]
        if slow_only:
            entries = [e for e in entries if e.slow]
        if errors_only:
            entries = [e for e in entries if e.error is not None]
        if limit is not None:
            entries = entries[-limit:]
        return entries

    def get_stats(self) -> Dict[str, Any]:
        entries = list(self._logs)
        total_duration = sum(e.duration for e in entries)
        return {
            "total": len(entries),
            "errors": sum(1 for e in entries if e.error is not None),
            "slow": sum(1 for e in entries if e.slow),
            "average_duration": total_duration / len(entries) if entries else 0.0,
        }

    def clear(self):
        self._logs.clear()


# Export main components
__all__ = ["QueryLogger", "QueryLogEntry"]
