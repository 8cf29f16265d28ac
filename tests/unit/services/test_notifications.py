"""Tests for notification dispatch."""

from uuid import uuid4

from approvalflow.services.notifications import (
    ApprovalEvent,
    LoggingNotifier,
    NotificationEventType,
    Notifier,
    RecordingNotifier,
    dispatch,
)


def _event(event_type=NotificationEventType.APPROVAL_REQUESTED, recipients=None):
    return ApprovalEvent(
        event_type=event_type,
        org_id=uuid4(),
        request_id=uuid4(),
        entity_type="expense",
        entity_id="EXP-1",
        recipients=[uuid4()] if recipients is None else recipients,
    )


class ExplodingNotifier(Notifier):
    def notify(self, event):
        raise ConnectionError("mail server down")


class TestDispatch:

    def test_delivers_events(self):
        notifier = RecordingNotifier()
        events = [_event(), _event(NotificationEventType.APPROVAL_APPROVED)]

        assert dispatch(notifier, events) == 2
        assert notifier.of_type(NotificationEventType.APPROVAL_APPROVED) == [events[1]]

    def test_events_without_recipients_are_dropped(self):
        notifier = RecordingNotifier()
        assert dispatch(notifier, [_event(recipients=[])]) == 0
        assert notifier.events == []

    def test_notifier_failures_are_contained(self, caplog):
        assert dispatch(ExplodingNotifier(), [_event()]) == 0
        assert "Notifier failed" in caplog.text

    def test_no_notifier(self):
        assert dispatch(None, [_event()]) == 0

    def test_logging_notifier(self, caplog):
        caplog.set_level("INFO", logger="approvalflow.services.notifications")
        LoggingNotifier().notify(_event())
        assert "approval_requested" in caplog.text


class TestApprovalEvent:

    def test_to_dict_is_json_friendly(self):
        event = _event()
        data = event.to_dict()
        assert data["event_type"] == "approval_requested"
        assert data["recipients"] == [str(event.recipients[0])]
        assert data["actor_id"] is None
        assert isinstance(data["occurred_at"], str)
