"""Collaborator adapters for the approval workflow engine."""

from .identity import IdentityService, DirectoryIdentityService
from .notifications import (
    ApprovalEvent,
    LoggingNotifier,
    NotificationEventType,
    Notifier,
    RecordingNotifier,
)

__all__ = [
    "IdentityService",
    "DirectoryIdentityService",
    "ApprovalEvent",
    "LoggingNotifier",
    "NotificationEventType",
    "Notifier",
    "RecordingNotifier",
]
