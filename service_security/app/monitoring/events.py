"""
Security event model.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class SecurityEventType(str, Enum):
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    CSRF_FAILURE = "csrf_failure"
    UNAUTHORIZED_ACCESS = "unauthorized_access"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    AUTHENTICATION_FAILURE = "authentication_failure"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class SecurityEvent:
    """One security-relevant occurrence."""
    type: SecurityEventType
    severity: Severity
    subject_id: Optional[str] = None
    source_ip: Optional[str] = None
    user_agent: Optional[str] = None
    endpoint: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        self.type = SecurityEventType(self.type)
        self.severity = Severity(self.severity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "subject_id": self.subject_id,
            "source_ip": self.source_ip,
            "user_agent": self.user_agent,
            "endpoint": self.endpoint,
            "details": dict(self.details),
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
