"""Notification hook for approval state changes.

The engine reports what happened; delivering it (email, chat, push) is
the job of whichever ``Notifier`` the application plugs in. Failures in
a notifier are logged and never undo or fail the approval action.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from approvalflow.db.base import utcnow

logger = logging.getLogger(__name__)


class NotificationEventType(str, Enum):
    """Types of approval notifications."""

    APPROVAL_REQUESTED = "approval_requested"
    APPROVAL_APPROVED = "approval_approved"
    APPROVAL_REJECTED = "approval_rejected"
    APPROVAL_DELEGATED = "approval_delegated"
    APPROVAL_CANCELLED = "approval_cancelled"


@dataclass
class ApprovalEvent:
    """A state change worth telling someone about."""
    event_type: NotificationEventType
    org_id: UUID
    request_id: UUID
    entity_type: str
    entity_id: str
    recipients: List[UUID]
    actor_id: Optional[UUID] = None
    step_order: Optional[int] = None
    comments: Optional[str] = None
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "org_id": str(self.org_id),
            "request_id": str(self.request_id),
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "recipients": [str(r) for r in self.recipients],
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "step_order": self.step_order,
            "comments": self.comments,
            "occurred_at": self.occurred_at.isoformat(),
        }


class Notifier(ABC):
    """Receives approval events."""

    @abstractmethod
    def notify(self, event: ApprovalEvent) -> None:
        ...


class LoggingNotifier(Notifier):
    """Default notifier: writes each event to the log."""

    def notify(self, event: ApprovalEvent) -> None:
        logger.info(
            "Notification %s for request %s (%s %s) to %d recipient(s)",
            event.event_type.value,
            event.request_id,
            event.entity_type,
            event.entity_id,
            len(event.recipients),
        )


class NullNotifier(Notifier):
    def notify(self, event: ApprovalEvent) -> None:
        return None


class RecordingNotifier(Notifier):
    """Keeps events in memory; useful for tests and dry runs."""

    def __init__(self):
        self.events: List[ApprovalEvent] = []

    def notify(self, event: ApprovalEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: NotificationEventType) -> List[ApprovalEvent]:
        return [e for e in self.events if e.event_type == event_type]


def dispatch(notifier: Optional[Notifier], events: Iterable[ApprovalEvent]) -> int:
    """
    Deliver events to a notifier, isolating failures.

    Returns:
        Number of events delivered without error
    """
    if notifier is None:
        return 0

    delivered = 0
    for event in events:
        if not event.recipients:
            continue
        try:
            notifier.notify(event)
            delivered += 1
        except Exception:
            logger.exception(
                "Notifier failed for %s on request %s", event.event_type.value, event.request_id
            )
    return delivered
