import enum
import logging
import uuid

logger = logging.getLogger(__name__)


class EventType(enum.Enum):
    document_created = "document.created"
    document_updated = "document.updated"
    document_deleted = "document.deleted"
    document_issued = "document.issued"
    document_superseded = "document.superseded"
    document_artifact_registered = "document.artifact_registered"

    version_created = "version.created"

    module_saved = "module.saved"

    evidence_added = "evidence.added"
    evidence_removed = "evidence.removed"

    action_created = "action.created"
    action_updated = "action.updated"
    action_closed = "action.closed"
    action_reopened = "action.reopened"
    action_deleted = "action.deleted"
    action_suppressed = "action.suppressed"
    action_unsuppressed = "action.unsuppressed"

    recommendations_regenerated = "recommendations.regenerated"

    defence_pack_created = "defence_pack.created"


def publish_event(
    event_type: EventType,
    entity_type: str,
    entity_id: str | uuid.UUID,
    actor_id: str | uuid.UUID | None = None,
    document_id: str | uuid.UUID | None = None,
    payload: dict | None = None,
) -> None:
    """Fire-and-forget event publishing.

    Queues a Celery task that records the event in the audit trail.
    Never raises; failures are logged.
    """
    try:
        from app.tasks.events import process_event

        process_event.delay(
            event_type=event_type.value,
            entity_type=entity_type,
            entity_id=str(entity_id),
            actor_id=str(actor_id) if actor_id else None,
            document_id=str(document_id) if document_id else None,
            payload=payload or {},
        )
        logger.debug(
            "Published event %s for %s/%s", event_type.value, entity_type, entity_id
        )
    except Exception as e:
        logger.exception("Failed to publish event %s: %s", event_type.value, e)
