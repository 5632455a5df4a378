"""Seams to the services that surround the issue-control engine.

The form layer decides whether a document is complete, the evidence store
owns uploaded files and the render service produces the issued artifact.
Each is reached through a small protocol so the engine can be driven with
in-process defaults or test doubles.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import settings
from app.models.compliance import Attachment, Document
from app.services.storage import storage

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class EvidenceItem:
    file_name: str
    file_type: str
    size_bytes: int
    uploaded_at: datetime | None
    caption: str | None = None
    action_id: uuid.UUID | None = None


class IssueValidator(Protocol):
    def validate(self, db: Session, document: Document) -> ValidationResult: ...


class EvidenceProvider(Protocol):
    def list_evidence(self, db: Session, document_id: uuid.UUID) -> list[EvidenceItem]: ...


class ArtifactSource(Protocol):
    def fetch(self, document: Document) -> bytes: ...


class ModuleCompletenessValidator:
    """Requires at least one content module and no empty module payloads."""

    def validate(self, db: Session, document: Document) -> ValidationResult:
        errors: list[str] = []
        modules = list(document.modules)
        if not modules:
            errors.append("Document has no content modules")
        for module in modules:
            if not module.is_populated:
                errors.append(f"Module {module.module_key} has no content")
        return ValidationResult(valid=not errors, errors=errors)


class AttachmentEvidenceProvider:
    def list_evidence(self, db: Session, document_id: uuid.UUID) -> list[EvidenceItem]:
        rows = db.scalars(
            select(Attachment)
            .where(Attachment.document_id == document_id)
            .order_by(Attachment.uploaded_at.asc(), Attachment.file_name.asc())
        ).all()
        return [
            EvidenceItem(
                file_name=row.file_name,
                file_type=row.file_type,
                size_bytes=row.size_bytes,
                uploaded_at=row.uploaded_at,
                caption=row.caption,
                action_id=row.action_id,
            )
            for row in rows
        ]


class StoredArtifactSource:
    """Reads the rendered artifact recorded on the document from storage."""

    def fetch(self, document: Document) -> bytes:
        if not document.rendered_artifact_key:
            raise ValueError(f"Document {document.id} has no rendered artifact")
        return storage.get_object(
            settings.s3_artifact_bucket, document.rendered_artifact_key
        )
