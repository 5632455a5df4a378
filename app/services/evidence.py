from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import NotFound, ValidationFailed
from app.models.compliance import Action, Attachment, Document
from app.schemas.compliance import AttachmentCreate
from app.services.common import apply_pagination, coerce_uuid
from app.services.event import EventType, publish_event
from app.services.locking import ensure_draft, get_document_or_404
from app.services.response import ListResponseMixin
from app.services.storage import storage

logger = logging.getLogger(__name__)


class Attachments(ListResponseMixin):
    """Evidence metadata attached to a document version."""

    @staticmethod
    def add(db: Session, document_id: str, payload: AttachmentCreate) -> Attachment:
        document = get_document_or_404(db, document_id)
        ensure_draft(document)
        if payload.action_id is not None:
            action = db.get(Action, payload.action_id)
            if not action or action.document_id != document.id:
                raise ValidationFailed(
                    "Evidence can only be linked to an action of the same document"
                )
        data = payload.model_dump()
        if not data.get("storage_key"):
            data["storage_key"] = storage.generate_storage_key(
                str(document.id), payload.file_name
            )
        attachment = Attachment(
            document_id=document.id,
            base_document_id=document.base_document_id,
            **data,
        )
        db.add(attachment)
        db.commit()
        db.refresh(attachment)
        logger.info("Added evidence %s to document %s", attachment.id, document.id)
        publish_event(
            EventType.evidence_added,
            entity_type="attachment",
            entity_id=attachment.id,
            actor_id=attachment.uploaded_by,
            document_id=document.id,
            payload={"file_name": attachment.file_name},
        )
        return attachment

    @staticmethod
    def get(db: Session, attachment_id: str) -> Attachment:
        attachment = db.get(Attachment, coerce_uuid(attachment_id))
        if not attachment:
            raise NotFound(f"Attachment {attachment_id} not found")
        return attachment

    @staticmethod
    def list(
        db: Session, document_id: str, limit: int, offset: int
    ) -> list[Attachment]:  # type: ignore[override]
        stmt = (
            select(Attachment)
            .where(Attachment.document_id == coerce_uuid(document_id))
            .order_by(Attachment.uploaded_at.asc())
        )
        return db.scalars(apply_pagination(stmt, limit, offset)).all()

    @staticmethod
    def delete(
        db: Session, attachment_id: str, document_id: str | None = None
    ) -> None:
        attachment = Attachments.get(db, attachment_id)
        if document_id is not None and attachment.document_id != coerce_uuid(
            document_id
        ):
            raise NotFound(f"Attachment {attachment_id} not found")
        ensure_draft(attachment.document)
        owner_id = attachment.document_id
        db.delete(attachment)
        db.commit()
        logger.info("Removed evidence %s from document %s", attachment_id, owner_id)
        publish_event(
            EventType.evidence_removed,
            entity_type="attachment",
            entity_id=attachment_id,
            document_id=owner_id,
        )

    @staticmethod
    def carry_forward(
        db: Session,
        source: Document,
        target: Document,
        action_map: dict[uuid.UUID, Action],
    ) -> list[Attachment]:
        """Copy evidence metadata onto a new version; stored files are shared."""
        copies = []
        for attachment in db.scalars(
            select(Attachment).where(Attachment.document_id == source.id)
        ).all():
            carried_action = action_map.get(attachment.action_id)
            copy = Attachment(
                id=uuid.uuid4(),
                document_id=target.id,
                base_document_id=target.base_document_id,
                action_id=carried_action.id if carried_action else None,
                file_name=attachment.file_name,
                file_type=attachment.file_type,
                size_bytes=attachment.size_bytes,
                storage_key=attachment.storage_key,
                caption=attachment.caption,
                uploaded_by=attachment.uploaded_by,
                uploaded_at=attachment.uploaded_at,
            )
            db.add(copy)
            copies.append(copy)
        logger.info(
            "Carried %d evidence items from document %s to %s",
            len(copies),
            source.id,
            target.id,
        )
        return copies


attachments = Attachments()
