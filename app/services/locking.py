import logging
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import DocumentLocked, NotFound
from app.models.compliance import Document, IssueStatus
from app.models.person import Person
from app.services.common import coerce_uuid

logger = logging.getLogger(__name__)


def get_document_or_404(db: Session, document_id: str | uuid.UUID) -> Document:
    document = db.get(Document, coerce_uuid(document_id))
    if not document:
        raise NotFound(f"Document {document_id} not found")
    return document


def lock_message(document: Document) -> str:
    return (
        f"Document {document.id} (v{document.version_number}) is "
        f"{document.issue_status.value} and cannot be modified"
    )


def ensure_draft(document: Document) -> None:
    if document.issue_status != IssueStatus.draft:
        logger.warning("Rejected write to locked document %s", document.id)
        raise DocumentLocked(lock_message(document))


def lock_family(db: Session, base_document_id: uuid.UUID) -> list[Document]:
    """Row-lock every version of a family, oldest first.

    Rows are re-read so status checks made after the lock see committed
    values from concurrent writers.
    """
    return list(
        db.scalars(
            select(Document)
            .where(Document.base_document_id == base_document_id)
            .order_by(Document.version_number.asc())
            .with_for_update()
            .execution_options(populate_existing=True)
        ).all()
    )


def get_person_or_404(db: Session, person_id, label: str = "User") -> Person:
    person = db.get(Person, coerce_uuid(person_id))
    if not person:
        raise NotFound(f"{label} {person_id} not found")
    return person
