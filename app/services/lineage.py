"""Cross-version action lineage.

Every carried copy of an action points at the lineage root through
``origin_action_id``; the root itself leaves it null. Lineage is resolved
by id lookup, never by walking copies version to version.
"""

import logging
import re
import uuid

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.config import settings
from app.models.compliance import (
    CARRY_FORWARD_STATUSES,
    Action,
    Document,
)

logger = logging.getLogger(__name__)


def trigger_key_for(
    document_id: uuid.UUID,
    module_key: str,
    factor_key: str | None,
    rule_id: uuid.UUID,
) -> str:
    return f"{document_id}:{module_key}:{factor_key or '*'}:{rule_id}"


def rekey_trigger(trigger_key: str | None, document_id: uuid.UUID) -> str | None:
    if not trigger_key:
        return trigger_key
    _, _, rest = trigger_key.partition(":")
    return f"{document_id}:{rest}"


def lineage_members(db: Session, root_id: uuid.UUID) -> list[Action]:
    return list(
        db.scalars(
            select(Action)
            .where(or_(Action.id == root_id, Action.origin_action_id == root_id))
            .order_by(Action.created_at.asc())
        ).all()
    )


def carry_forward(
    db: Session, source: Document, target: Document, user_id: uuid.UUID | None
) -> dict[uuid.UUID, Action]:
    """Copy the outstanding actions of ``source`` onto ``target``.

    Returns a map of source action id to its new copy.
    """
    sources = db.scalars(
        select(Action)
        .where(Action.document_id == source.id)
        .where(Action.status.in_(CARRY_FORWARD_STATUSES))
        .order_by(Action.created_at.asc())
    ).all()
    copies: dict[uuid.UUID, Action] = {}
    for action in sources:
        copy = Action(
            id=uuid.uuid4(),
            document_id=target.id,
            source_document_id=action.source_document_id,
            origin_action_id=action.origin_action_id or action.id,
            carried_from_document_id=source.id,
            reference_number=action.reference_number,
            title=action.title,
            recommended_action=action.recommended_action,
            observation=action.observation,
            hazard=action.hazard,
            module_key=action.module_key,
            priority=action.priority,
            status=action.status,
            source_type=action.source_type,
            library_id=action.library_id,
            trigger_key=rekey_trigger(action.trigger_key, target.id),
            trigger_context=dict(action.trigger_context or {}) or None,
            is_suppressed=action.is_suppressed,
            owner_id=action.owner_id,
            target_date=action.target_date,
            created_by=user_id,
        )
        db.add(copy)
        copies[action.id] = copy
    logger.info(
        "Carried %d actions from document %s to %s",
        len(copies),
        source.id,
        target.id,
    )
    return copies


_REFERENCE_PATTERN = re.compile(r"^(?P<prefix>[A-Za-z]+)-(?P<number>\d+)$")


def _reference_number(value: str | None) -> int:
    match = _REFERENCE_PATTERN.match(value or "")
    if not match or match.group("prefix") != settings.action_reference_prefix:
        return 0
    return int(match.group("number"))


def assign_reference_numbers(db: Session, document: Document) -> list[Action]:
    """Number the document's unnumbered live actions, continuing the family."""
    family_refs = db.scalars(
        select(Action.reference_number)
        .join(Document, Document.id == Action.document_id)
        .where(Document.base_document_id == document.base_document_id)
        .where(Action.reference_number.is_not(None))
    ).all()
    next_number = max((_reference_number(ref) for ref in family_refs), default=0)
    unnumbered = db.scalars(
        select(Action)
        .where(Action.document_id == document.id)
        .where(Action.is_suppressed.is_(False))
        .where(Action.reference_number.is_(None))
        .order_by(Action.created_at.asc(), Action.id.asc())
    ).all()
    for action in unnumbered:
        next_number += 1
        action.reference_number = f"{settings.action_reference_prefix}-{next_number:02d}"
    if unnumbered:
        logger.info(
            "Assigned %d reference numbers on document %s",
            len(unnumbered),
            document.id,
        )
    return list(unnumbered)
