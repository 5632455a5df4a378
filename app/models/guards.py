"""Flush-time write policy for locked documents.

Every session flush is inspected before it reaches the database. Rows that
belong to an issued or superseded document may only change their status
transition fields; anything else raises ``DocumentLocked``. Defence packs and
change summaries are write-once.
"""

import logging

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from app.errors import DocumentLocked, InvariantViolation
from app.models.compliance import (
    ACTION_CLOSURE_FIELDS,
    DOCUMENT_ARTIFACT_FIELDS,
    DOCUMENT_TRANSITION_FIELDS,
    LOCKED_ISSUE_STATUSES,
    Action,
    Attachment,
    ChangeSummary,
    DefencePack,
    Document,
    IssueStatus,
    ModuleInstance,
)

logger = logging.getLogger(__name__)


def _committed_value(obj, attr: str):
    history = inspect(obj).attrs[attr].history
    if history.deleted:
        return history.deleted[0]
    if history.added:
        # Set from null
        return None
    if history.unchanged:
        return history.unchanged[0]
    return getattr(obj, attr)


def _changed_fields(obj) -> set[str]:
    state = inspect(obj)
    return {
        attr.key
        for attr in state.mapper.column_attrs
        if state.attrs[attr.key].history.has_changes()
    }


def _committed_status(session: Session, document_id) -> IssueStatus | None:
    if document_id is None:
        return None
    document = session.get(Document, document_id)
    if document is None:
        return None
    return _committed_value(document, "issue_status")


def _check_document_update(document: Document) -> None:
    previous = _committed_value(document, "issue_status")
    if previous not in LOCKED_ISSUE_STATUSES:
        return
    changed = _changed_fields(document)
    illegal = changed - DOCUMENT_TRANSITION_FIELDS - DOCUMENT_ARTIFACT_FIELDS
    if illegal:
        raise DocumentLocked(
            f"Document {document.id} is {previous.value} and cannot be modified",
            details={"fields": sorted(illegal)},
        )
    if "issue_status" in changed and not (
        previous == IssueStatus.issued
        and document.issue_status == IssueStatus.superseded
    ):
        raise DocumentLocked(
            f"Illegal transition {previous.value} -> {document.issue_status.value}"
        )
    if changed & DOCUMENT_ARTIFACT_FIELDS and (
        _committed_value(document, "rendered_artifact_key") is not None
    ):
        raise DocumentLocked(
            f"Rendered artifact of document {document.id} is already recorded"
        )


def _check_child(session: Session, obj, allowed: frozenset[str] = frozenset()) -> None:
    status = _committed_status(session, obj.document_id)
    if status not in LOCKED_ISSUE_STATUSES:
        return
    if obj in session.dirty:
        illegal = _changed_fields(obj) - allowed
        if not illegal:
            return
        details = {"fields": sorted(illegal)}
    else:
        details = None
    raise DocumentLocked(
        f"{type(obj).__name__} belongs to a {status.value} document",
        details=details,
    )


@event.listens_for(Session, "before_flush")
def enforce_document_locks(session: Session, flush_context, instances) -> None:
    with session.no_autoflush:
        _enforce(session)


def _enforce(session: Session) -> None:
    for obj in list(session.new):
        if isinstance(obj, (ModuleInstance, Attachment, Action)):
            _check_child(session, obj)

    for obj in list(session.dirty):
        if not session.is_modified(obj, include_collections=False):
            continue
        if isinstance(obj, Document):
            _check_document_update(obj)
        elif isinstance(obj, Action):
            _check_child(session, obj, ACTION_CLOSURE_FIELDS)
        elif isinstance(obj, (ModuleInstance, Attachment)):
            _check_child(session, obj)
        elif isinstance(obj, (DefencePack, ChangeSummary)):
            raise InvariantViolation(f"{type(obj).__name__} records are immutable")

    for obj in list(session.deleted):
        if isinstance(obj, Document):
            status = _committed_value(obj, "issue_status")
            if status in LOCKED_ISSUE_STATUSES:
                raise DocumentLocked(f"Document {obj.id} is {status.value}")
        elif isinstance(obj, (ModuleInstance, Attachment, Action)):
            _check_child(session, obj)
        elif isinstance(obj, (DefencePack, ChangeSummary)):
            raise InvariantViolation(f"{type(obj).__name__} records are immutable")
