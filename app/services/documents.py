from __future__ import annotations

import copy
import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.errors import (
    ConcurrencyConflict,
    DocumentLocked,
    DraftAlreadyExists,
    InvariantViolation,
    NotFound,
    ValidationFailed,
)
from app.models.compliance import (
    Action,
    Attachment,
    Document,
    IssueStatus,
    ModuleInstance,
)
from app.observability import DOCUMENTS_ISSUED, VERSIONS_CREATED, WRITE_CONFLICTS
from app.schemas.compliance import (
    DocumentCreate,
    DocumentUpdate,
    ModuleSave,
    RenderedArtifactCreate,
)
from app.services.change_summary import change_summaries
from app.services.collaborators import (
    IssueValidator,
    ModuleCompletenessValidator,
    ValidationResult,
)
from app.services.common import apply_ordering, apply_pagination, coerce_uuid
from app.services.event import EventType, publish_event
from app.services.evidence import attachments
from app.services.lineage import assign_reference_numbers, carry_forward
from app.services.locking import (
    ensure_draft,
    get_document_or_404,
    get_person_or_404,
    lock_family,
)
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)

_VALID_STATUSES = {e.value for e in IssueStatus}
_REQUIRED_FIELDS = {"title", "document_type", "executive_summary_mode"}

default_validator: IssueValidator = ModuleCompletenessValidator()


def _family_or_404(db: Session, base_document_id) -> list[Document]:
    """Lock and return a family, accepting any version id as the family key."""
    base_id = coerce_uuid(base_document_id)
    family = lock_family(db, base_id)
    if not family:
        document = db.get(Document, base_id)
        if document is None:
            raise NotFound(f"Document family {base_document_id} not found")
        family = lock_family(db, document.base_document_id)
    return family


class Documents(ListResponseMixin):
    @staticmethod
    def create(db: Session, payload: DocumentCreate) -> Document:
        get_person_or_404(db, payload.created_by, "Creator")
        document_id = uuid.uuid4()
        document = Document(
            id=document_id,
            base_document_id=document_id,
            version_number=1,
            issue_status=IssueStatus.draft,
            **payload.model_dump(),
        )
        db.add(document)
        db.commit()
        db.refresh(document)
        logger.info("Created document family %s", document.id)
        publish_event(
            EventType.document_created,
            entity_type="document",
            entity_id=document.id,
            actor_id=document.created_by,
            document_id=document.id,
        )
        return document

    @staticmethod
    def get(db: Session, document_id: str) -> Document:
        return get_document_or_404(db, document_id)

    @staticmethod
    def list(
        db: Session,
        document_type: str | None,
        issue_status: str | None,
        base_document_id: str | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ) -> list[Document]:  # type: ignore[override]
        stmt = select(Document)
        if document_type is not None:
            stmt = stmt.where(Document.document_type == document_type)
        if issue_status is not None:
            if issue_status not in _VALID_STATUSES:
                raise ValidationFailed(
                    f"Invalid issue_status. Allowed: {sorted(_VALID_STATUSES)}"
                )
            stmt = stmt.where(Document.issue_status == IssueStatus(issue_status))
        if base_document_id is not None:
            stmt = stmt.where(
                Document.base_document_id == coerce_uuid(base_document_id)
            )
        stmt = apply_ordering(
            stmt,
            order_by,
            order_dir,
            {
                "created_at": Document.created_at,
                "updated_at": Document.updated_at,
                "title": Document.title,
                "version_number": Document.version_number,
                "issue_date": Document.issue_date,
            },
        )
        return db.scalars(apply_pagination(stmt, limit, offset)).all()

    @staticmethod
    def list_versions(db: Session, base_document_id: str) -> list[Document]:
        versions = db.scalars(
            select(Document)
            .where(Document.base_document_id == coerce_uuid(base_document_id))
            .order_by(Document.version_number.desc())
        ).all()
        if not versions:
            raise NotFound(f"Document family {base_document_id} not found")
        return versions

    @staticmethod
    def get_current_issued(db: Session, base_document_id: str) -> Document:
        document = db.scalars(
            select(Document)
            .where(Document.base_document_id == coerce_uuid(base_document_id))
            .where(Document.issue_status == IssueStatus.issued)
        ).first()
        if not document:
            raise NotFound(f"Document family {base_document_id} has no issued version")
        return document

    @staticmethod
    def update(db: Session, document_id: str, payload: DocumentUpdate) -> Document:
        document = get_document_or_404(db, document_id)
        ensure_draft(document)
        data = {
            key: value
            for key, value in payload.model_dump(exclude_unset=True).items()
            if value is not None or key not in _REQUIRED_FIELDS
        }
        for key, value in data.items():
            setattr(document, key, value)
        db.commit()
        db.refresh(document)
        logger.info("Updated document %s", document.id)
        publish_event(
            EventType.document_updated,
            entity_type="document",
            entity_id=document.id,
            document_id=document.id,
            payload={"changed_fields": list(data.keys())},
        )
        return document

    @staticmethod
    def delete(db: Session, document_id: str) -> None:
        """Hard-delete a draft version and everything it owns."""
        document = get_document_or_404(db, document_id)
        ensure_draft(document)
        doc_id = document.id
        base_id = document.base_document_id
        for model in (Attachment, ModuleInstance, Action):
            for row in db.scalars(select(model).where(model.document_id == doc_id)):
                db.delete(row)
        db.delete(document)
        db.commit()
        logger.info("Deleted draft document %s (family %s)", doc_id, base_id)
        publish_event(
            EventType.document_deleted,
            entity_type="document",
            entity_id=doc_id,
            document_id=doc_id,
            payload={"base_document_id": str(base_id)},
        )

    @staticmethod
    def family_health(db: Session, base_document_id: str) -> dict:
        base_id = coerce_uuid(base_document_id)
        rows = db.execute(
            select(Document.issue_status, func.count())
            .where(Document.base_document_id == base_id)
            .group_by(Document.issue_status)
        ).all()
        counts = {status: count for status, count in rows}
        if not counts:
            raise NotFound(f"Document family {base_document_id} not found")
        drafts = counts.get(IssueStatus.draft, 0)
        issued = counts.get(IssueStatus.issued, 0)
        if issued > 1:
            health = "ERROR: Multiple issued"
        elif drafts > 1:
            health = "ERROR: Multiple drafts"
        else:
            health = "OK"

        def _single(status: IssueStatus):
            return db.scalars(
                select(Document.id)
                .where(Document.base_document_id == base_id)
                .where(Document.issue_status == status)
                .order_by(Document.version_number.desc())
            ).first()

        return {
            "base_document_id": base_id,
            "total_versions": sum(counts.values()),
            "draft_count": drafts,
            "issued_count": issued,
            "superseded_count": counts.get(IssueStatus.superseded, 0),
            "current_issued_id": _single(IssueStatus.issued),
            "current_draft_id": _single(IssueStatus.draft),
            "health_status": health,
        }

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    @staticmethod
    def validate_for_issue(
        db: Session, document_id: str, validator: IssueValidator | None = None
    ) -> ValidationResult:
        document = get_document_or_404(db, document_id)
        if document.issue_status != IssueStatus.draft:
            return ValidationResult(
                valid=False,
                errors=[f"Document is {document.issue_status.value}, not draft"],
            )
        return (validator or default_validator).validate(db, document)

    @staticmethod
    def issue(
        db: Session,
        document_id: str,
        user_id: str,
        validator: IssueValidator | None = None,
    ) -> dict:
        """Issue a draft and supersede the family's previously issued version."""
        document = get_document_or_404(db, document_id)
        issuer = get_person_or_404(db, user_id)
        family = lock_family(db, document.base_document_id)
        ensure_draft(document)

        result = (validator or default_validator).validate(db, document)
        if not result.valid:
            logger.warning(
                "Issue of document %s rejected: %s", document.id, result.errors
            )
            raise ValidationFailed(
                f"Document {document.id} failed issue validation",
                details=result.errors,
            )

        prior = next(
            (d for d in family if d.issue_status == IssueStatus.issued), None
        )
        now = datetime.now(timezone.utc)
        try:
            assign_reference_numbers(db, document)
            db.flush()
            if prior is not None:
                prior.issue_status = IssueStatus.superseded
                prior.superseded_by_document_id = document.id
                prior.superseded_date = now
                db.flush()
            document.issue_status = IssueStatus.issued
            document.issue_date = now
            document.issued_by = issuer.id
            db.flush()
            change_summaries.generate(db, document, issuer.id)
            db.commit()
        except IntegrityError:
            db.rollback()
            WRITE_CONFLICTS.labels("issue").inc()
            logger.warning("Concurrent issue detected for document %s", document_id)
            raise ConcurrencyConflict(
                f"Family of document {document_id} was changed concurrently"
            )

        DOCUMENTS_ISSUED.inc()
        logger.info(
            "Issued document %s v%s (superseded %s)",
            document.id,
            document.version_number,
            prior.id if prior else None,
        )
        if prior is not None:
            publish_event(
                EventType.document_superseded,
                entity_type="document",
                entity_id=prior.id,
                actor_id=issuer.id,
                document_id=prior.id,
                payload={"superseded_by_document_id": str(document.id)},
            )
        publish_event(
            EventType.document_issued,
            entity_type="document",
            entity_id=document.id,
            actor_id=issuer.id,
            document_id=document.id,
            payload={"version_number": document.version_number},
        )
        return {
            "document_id": document.id,
            "issued_at": now,
            "superseded_prior_id": prior.id if prior else None,
        }

    @staticmethod
    def create_new_version(db: Session, base_document_id: str, user_id: str) -> dict:
        """Open a new draft from the family's current issued version."""
        creator = get_person_or_404(db, user_id)
        family = _family_or_404(db, base_document_id)
        source = next(
            (d for d in family if d.issue_status == IssueStatus.issued), None
        )
        if source is None:
            raise InvariantViolation(
                f"Document family {base_document_id} has no issued version"
            )
        draft = next((d for d in family if d.issue_status == IssueStatus.draft), None)
        if draft is not None:
            logger.warning(
                "Rejected new version of family %s: draft %s exists",
                source.base_document_id,
                draft.id,
            )
            raise DraftAlreadyExists(
                f"Draft version {draft.version_number} already exists",
                details={"draft_document_id": str(draft.id)},
            )

        new_document = Document(
            id=uuid.uuid4(),
            base_document_id=source.base_document_id,
            version_number=max(d.version_number for d in family) + 1,
            title=source.title,
            document_type=source.document_type,
            description=source.description,
            issue_status=IssueStatus.draft,
            created_by=creator.id,
        )
        try:
            db.add(new_document)
            db.flush()
            for module in source.modules:
                db.add(
                    ModuleInstance(
                        document_id=new_document.id,
                        module_key=module.module_key,
                        payload=copy.deepcopy(module.payload),
                        outcome=module.outcome,
                    )
                )
            carried = carry_forward(db, source, new_document, creator.id)
            attachments.carry_forward(db, source, new_document, carried)
            db.commit()
        except IntegrityError:
            db.rollback()
            WRITE_CONFLICTS.labels("create_new_version").inc()
            logger.warning(
                "Concurrent new version detected for family %s", base_document_id
            )
            raise ConcurrencyConflict(
                f"Family {base_document_id} was changed concurrently"
            )

        VERSIONS_CREATED.inc()
        logger.info(
            "Created version %s (%s) of family %s from %s",
            new_document.version_number,
            new_document.id,
            new_document.base_document_id,
            source.id,
        )
        publish_event(
            EventType.version_created,
            entity_type="document",
            entity_id=new_document.id,
            actor_id=creator.id,
            document_id=new_document.id,
            payload={
                "source_document_id": str(source.id),
                "version_number": new_document.version_number,
                "carried_actions": len(carried),
            },
        )
        return {
            "new_document_id": new_document.id,
            "version_number": new_document.version_number,
        }

    @staticmethod
    def register_rendered_artifact(
        db: Session, document_id: str, payload: RenderedArtifactCreate
    ) -> Document:
        document = get_document_or_404(db, document_id)
        if document.issue_status != IssueStatus.issued:
            raise InvariantViolation(
                "Rendered artifacts can only be registered on issued documents"
            )
        if document.rendered_artifact_key:
            raise DocumentLocked(
                f"Document {document.id} already has a rendered artifact"
            )
        document.rendered_artifact_key = payload.storage_key
        document.rendered_artifact_checksum = payload.checksum
        document.rendered_artifact_size_bytes = payload.size_bytes
        document.rendered_artifact_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(document)
        logger.info("Registered rendered artifact for document %s", document.id)
        publish_event(
            EventType.document_artifact_registered,
            entity_type="document",
            entity_id=document.id,
            document_id=document.id,
            payload={"storage_key": payload.storage_key},
        )
        return document


class ModuleInstances(ListResponseMixin):
    @staticmethod
    def save(
        db: Session, document_id: str, module_key: str, payload: ModuleSave
    ) -> ModuleInstance:
        document = get_document_or_404(db, document_id)
        ensure_draft(document)
        module = db.scalars(
            select(ModuleInstance)
            .where(ModuleInstance.document_id == document.id)
            .where(ModuleInstance.module_key == module_key)
        ).first()
        if module is None:
            module = ModuleInstance(document_id=document.id, module_key=module_key)
            db.add(module)
        module.payload = payload.payload
        module.outcome = payload.outcome
        db.commit()
        db.refresh(module)
        logger.info("Saved module %s on document %s", module_key, document.id)
        publish_event(
            EventType.module_saved,
            entity_type="module_instance",
            entity_id=module.id,
            document_id=document.id,
            payload={"module_key": module_key},
        )
        return module

    @staticmethod
    def list(
        db: Session, document_id: str, limit: int, offset: int
    ) -> list[ModuleInstance]:  # type: ignore[override]
        stmt = (
            select(ModuleInstance)
            .where(ModuleInstance.document_id == coerce_uuid(document_id))
            .order_by(ModuleInstance.module_key.asc())
        )
        return db.scalars(apply_pagination(stmt, limit, offset)).all()


documents = Documents()
module_instances = ModuleInstances()
