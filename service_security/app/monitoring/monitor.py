"""
Security event monitor.

Keeps the most recent events in a bounded FIFO buffer, mirrors every event
to the structured log, and escalates repeated failures from one source IP
into ``suspicious_activity`` events.
"""

import threading
from collections import Counter, deque
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, List, Optional

from homebase_shared.logging import get_logger
from homebase_shared.metrics import MetricsCollector

from .events import SecurityEvent, SecurityEventType, Severity, utc_now


DEFAULT_CAPACITY = 1000
DETECTION_WINDOW = timedelta(minutes=5)
METRICS_WINDOW = timedelta(hours=1)

RAPID_FIRE_THRESHOLD = 20
CSRF_FAILURE_THRESHOLD = 5
UNAUTHORIZED_THRESHOLD = 10

_LOG_MESSAGES = {
    Severity.CRITICAL: "CRITICAL SECURITY EVENT",
    Severity.HIGH: "HIGH SECURITY EVENT",
    Severity.MEDIUM: "MEDIUM SECURITY EVENT",
    Severity.LOW: "LOW SECURITY EVENT",
}


class SecurityMonitor:
    """Append-only, capacity-bounded security event log with pattern detection."""

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.capacity = capacity
        self.metrics = metrics
        self.clock = clock
        self.logger = get_logger("security.monitor")
        self._events: Deque[SecurityEvent] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def log_event(self, event: SecurityEvent) -> None:
        """Record ``event`` and any escalation it triggers."""
        with self._lock:
            event.timestamp = self.clock()
            self._events.append(event)
            derived = self._detect_patterns(event)
            # Derived events skip detection, so escalation stops here.
            self._events.extend(derived)

        self._emit(event)
        for suspicious in derived:
            self._emit(suspicious, message="SUSPICIOUS ACTIVITY DETECTED")

    def _detect_patterns(self, event: SecurityEvent) -> List[SecurityEvent]:
        """Escalations for ``event`` over the trailing detection window. Caller holds the lock."""
        if event.source_ip is None:
            return []

        cutoff = event.timestamp - DETECTION_WINDOW
        same_ip = [e for e in self._events if e.source_ip == event.source_ip and e.timestamp > cutoff]
        by_type = Counter(e.type for e in same_ip)

        derived = []
        if len(same_ip) > RAPID_FIRE_THRESHOLD:
            derived.append(self._suspicious(event, "rapid_fire_requests", len(same_ip), Severity.HIGH))

        csrf_failures = by_type[SecurityEventType.CSRF_FAILURE]
        if csrf_failures > CSRF_FAILURE_THRESHOLD:
            derived.append(self._suspicious(event, "multiple_csrf_failures", csrf_failures, Severity.HIGH))

        unauthorized = by_type[SecurityEventType.UNAUTHORIZED_ACCESS]
        if unauthorized > UNAUTHORIZED_THRESHOLD:
            derived.append(
                self._suspicious(event, "multiple_unauthorized_attempts", unauthorized, Severity.CRITICAL)
            )

        return derived

    def _suspicious(self, trigger: SecurityEvent, pattern: str, count: int, severity: Severity) -> SecurityEvent:
        return SecurityEvent(
            type=SecurityEventType.SUSPICIOUS_ACTIVITY,
            severity=severity,
            source_ip=trigger.source_ip,
            details={"pattern": pattern, "count": count, "time_window": "5_minutes"},
            timestamp=trigger.timestamp,
        )

    def _emit(self, event: SecurityEvent, message: Optional[str] = None) -> None:
        message = message or _LOG_MESSAGES[event.severity]
        fields = event.to_dict()
        fields["event_type"] = fields.pop("type")
        fields["occurred_at"] = fields.pop("timestamp")
        if event.severity == Severity.CRITICAL:
            self.logger.error(message, **fields)
        elif event.severity in (Severity.HIGH, Severity.MEDIUM):
            self.logger.warning(message, **fields)
        else:
            self.logger.info(message, **fields)

        if self.metrics:
            self.metrics.increment_counter(
                "security_events_total",
                event_type=event.type.value,
                severity=event.severity.value,
            )

    # Convenience loggers used by the gateway pipeline.

    def log_rate_limit_exceeded(self, subject_id: str, endpoint: str, source_ip: str,
                                user_agent: Optional[str] = None) -> None:
        self.log_event(SecurityEvent(
            type=SecurityEventType.RATE_LIMIT_EXCEEDED,
            severity=Severity.MEDIUM,
            subject_id=subject_id,
            source_ip=source_ip,
            user_agent=user_agent,
            endpoint=endpoint,
            details={"action": "rate_limit_exceeded"},
        ))

    def log_csrf_failure(self, subject_id: str, endpoint: str, source_ip: str,
                         user_agent: Optional[str] = None) -> None:
        self.log_event(SecurityEvent(
            type=SecurityEventType.CSRF_FAILURE,
            severity=Severity.HIGH,
            subject_id=subject_id,
            source_ip=source_ip,
            user_agent=user_agent,
            endpoint=endpoint,
            details={"action": "csrf_validation_failed"},
        ))

    def log_unauthorized_access(self, endpoint: str, source_ip: str, user_agent: Optional[str] = None,
                                details: Optional[Dict[str, Any]] = None) -> None:
        self.log_event(SecurityEvent(
            type=SecurityEventType.UNAUTHORIZED_ACCESS,
            severity=Severity.HIGH,
            source_ip=source_ip,
            user_agent=user_agent,
            endpoint=endpoint,
            details={"action": "unauthorized_access", **(details or {})},
        ))

    def log_suspicious_activity(self, subject_id: str, activity: str, source_ip: str,
                                user_agent: Optional[str] = None,
                                details: Optional[Dict[str, Any]] = None) -> None:
        self.log_event(SecurityEvent(
            type=SecurityEventType.SUSPICIOUS_ACTIVITY,
            severity=Severity.MEDIUM,
            subject_id=subject_id,
            source_ip=source_ip,
            user_agent=user_agent,
            details={"activity": activity, **(details or {})},
        ))

    def log_authentication_failure(self, endpoint: str, source_ip: str, user_agent: Optional[str] = None,
                                   details: Optional[Dict[str, Any]] = None) -> None:
        self.log_event(SecurityEvent(
            type=SecurityEventType.AUTHENTICATION_FAILURE,
            severity=Severity.MEDIUM,
            source_ip=source_ip,
            user_agent=user_agent,
            endpoint=endpoint,
            details={"action": "authentication_failed", **(details or {})},
        ))

    # Queries. All return most recent first.

    def _snapshot(self) -> List[SecurityEvent]:
        with self._lock:
            events = list(self._events)
        # Stable sort keeps later appends first among equal timestamps.
        events.reverse()
        return sorted(events, key=lambda e: e.timestamp, reverse=True)

    def get_recent_events(self, limit: int = 50) -> List[SecurityEvent]:
        return self._snapshot()[:limit]

    def get_events_by_type(self, event_type: SecurityEventType, limit: int = 50) -> List[SecurityEvent]:
        event_type = SecurityEventType(event_type)
        return [e for e in self._snapshot() if e.type == event_type][:limit]

    def get_events_by_severity(self, severity: Severity, limit: int = 50) -> List[SecurityEvent]:
        severity = Severity(severity)
        return [e for e in self._snapshot() if e.severity == severity][:limit]

    def get_security_metrics(self) -> Dict[str, Any]:
        """Aggregate counts by type and severity plus last-hour activity."""
        events = self._snapshot()
        cutoff = self.clock() - METRICS_WINDOW
        return {
            "total_events": len(events),
            "events_by_type": dict(Counter(e.type.value for e in events)),
            "events_by_severity": dict(Counter(e.severity.value for e in events)),
            "recent_activity": sum(1 for e in events if e.timestamp > cutoff),
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
