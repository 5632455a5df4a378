import uuid
from unittest.mock import MagicMock, patch

from app.services.event import EventType, publish_event


class TestEventType:
    def test_all_event_types_have_dotted_values(self) -> None:
        for et in EventType:
            assert "." in et.value, f"{et.name} value should contain a dot"

    def test_event_type_count(self) -> None:
        assert len(EventType) == 19

    def test_document_events(self) -> None:
        assert EventType.document_created.value == "document.created"
        assert EventType.document_issued.value == "document.issued"
        assert EventType.document_superseded.value == "document.superseded"
        assert (
            EventType.document_artifact_registered.value
            == "document.artifact_registered"
        )

    def test_action_events(self) -> None:
        assert EventType.action_closed.value == "action.closed"
        assert EventType.action_reopened.value == "action.reopened"
        assert EventType.action_suppressed.value == "action.suppressed"
        assert EventType.action_unsuppressed.value == "action.unsuppressed"

    def test_pack_events(self) -> None:
        assert EventType.defence_pack_created.value == "defence_pack.created"
        assert (
            EventType.recommendations_regenerated.value
            == "recommendations.regenerated"
        )


class TestPublishEvent:
    @patch("app.tasks.events.process_event.delay")
    def test_publish_event_calls_delay(self, mock_delay: MagicMock) -> None:
        entity_id = uuid.uuid4()
        actor_id = uuid.uuid4()
        doc_id = uuid.uuid4()
        publish_event(
            EventType.document_issued,
            entity_type="document",
            entity_id=entity_id,
            actor_id=actor_id,
            document_id=doc_id,
            payload={"version_number": 2},
        )
        mock_delay.assert_called_once_with(
            event_type="document.issued",
            entity_type="document",
            entity_id=str(entity_id),
            actor_id=str(actor_id),
            document_id=str(doc_id),
            payload={"version_number": 2},
        )

    @patch("app.tasks.events.process_event.delay")
    def test_publish_event_none_actor_and_document(self, mock_delay: MagicMock) -> None:
        entity_id = uuid.uuid4()
        publish_event(
            EventType.action_suppressed,
            entity_type="action",
            entity_id=entity_id,
        )
        mock_delay.assert_called_once_with(
            event_type="action.suppressed",
            entity_type="action",
            entity_id=str(entity_id),
            actor_id=None,
            document_id=None,
            payload={},
        )

    @patch("app.tasks.events.process_event.delay", side_effect=RuntimeError("down"))
    def test_publish_event_never_raises(self, mock_delay: MagicMock) -> None:
        publish_event(
            EventType.document_created,
            entity_type="document",
            entity_id=uuid.uuid4(),
        )
        # Should not raise
