"""
Security event monitoring: bounded event log plus escalation of repeated failures.
"""

from .events import SecurityEvent, SecurityEventType, Severity
from .monitor import SecurityMonitor

__all__ = ["SecurityEvent", "SecurityEventType", "Severity", "SecurityMonitor"]
