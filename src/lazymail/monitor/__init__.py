"""Inbox polling and per-email processing."""

from .email_monitor import MAX_CONSECUTIVE_FAILURES, EmailMonitor, MonitorState

__all__ = ["EmailMonitor", "MAX_CONSECUTIVE_FAILURES", "MonitorState"]
