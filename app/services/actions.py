from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.errors import InvariantViolation, NotFound, ValidationFailed
from app.models.compliance import (
    Action,
    ActionPriority,
    ActionSourceType,
    ActionStatus,
    Attachment,
)
from app.observability import ACTIONS_CLOSED
from app.schemas.compliance import ActionCreate, ActionUpdate
from app.services.common import apply_ordering, apply_pagination, coerce_uuid
from app.services.event import EventType, publish_event
from app.services.lineage import lineage_members
from app.services.locking import (
    ensure_draft,
    get_document_or_404,
    get_person_or_404,
)
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)

_VALID_PRIORITIES = {e.value for e in ActionPriority}
# Closing goes through Actions.close so the whole lineage is updated
_EDITABLE_STATUSES = {
    ActionStatus.open.value,
    ActionStatus.in_progress.value,
    ActionStatus.deferred.value,
    ActionStatus.not_applicable.value,
}


def _validate_priority(value: str) -> ActionPriority:
    if value not in _VALID_PRIORITIES:
        raise ValidationFailed(
            f"Invalid priority. Allowed: {sorted(_VALID_PRIORITIES)}"
        )
    return ActionPriority(value)


def _validate_status(value: str) -> ActionStatus:
    if value not in _EDITABLE_STATUSES:
        raise ValidationFailed(
            f"Invalid status. Allowed: {sorted(_EDITABLE_STATUSES)}"
        )
    return ActionStatus(value)


class Actions(ListResponseMixin):
    @staticmethod
    def create(db: Session, payload: ActionCreate) -> Action:
        document = get_document_or_404(db, payload.document_id)
        ensure_draft(document)
        if payload.owner_id is not None:
            get_person_or_404(db, payload.owner_id, "Owner")
        data = payload.model_dump()
        data["priority"] = _validate_priority(data["priority"])
        data["status"] = _validate_status(data["status"])
        action = Action(
            source_document_id=document.id,
            source_type=ActionSourceType.manual,
            **data,
        )
        db.add(action)
        db.commit()
        db.refresh(action)
        logger.info("Created action %s on document %s", action.id, document.id)
        publish_event(
            EventType.action_created,
            entity_type="action",
            entity_id=action.id,
            actor_id=action.created_by,
            document_id=document.id,
        )
        return action

    @staticmethod
    def get(db: Session, action_id: str) -> Action:
        action = db.get(Action, coerce_uuid(action_id))
        if not action:
            raise NotFound(f"Action {action_id} not found")
        return action

    @staticmethod
    def list(
        db: Session,
        document_id: str | None,
        status: str | None,
        source_type: str | None,
        include_suppressed: bool,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ) -> list[Action]:  # type: ignore[override]
        stmt = select(Action)
        if document_id is not None:
            stmt = stmt.where(Action.document_id == coerce_uuid(document_id))
        if status is not None:
            if status not in {e.value for e in ActionStatus}:
                raise ValidationFailed(f"Invalid status: {status}")
            stmt = stmt.where(Action.status == ActionStatus(status))
        if source_type is not None:
            if source_type not in {e.value for e in ActionSourceType}:
                raise ValidationFailed(f"Invalid source_type: {source_type}")
            stmt = stmt.where(Action.source_type == ActionSourceType(source_type))
        if not include_suppressed:
            stmt = stmt.where(Action.is_suppressed.is_(False))
        stmt = apply_ordering(
            stmt,
            order_by,
            order_dir,
            {
                "created_at": Action.created_at,
                "updated_at": Action.updated_at,
                "reference_number": Action.reference_number,
                "priority": Action.priority,
                "target_date": Action.target_date,
            },
        )
        return db.scalars(apply_pagination(stmt, limit, offset)).all()

    @staticmethod
    def update(db: Session, action_id: str, payload: ActionUpdate) -> Action:
        action = Actions.get(db, action_id)
        ensure_draft(action.document)
        data = payload.model_dump(exclude_unset=True)
        if data.get("priority") is not None:
            data["priority"] = _validate_priority(data["priority"])
        if data.get("status") is not None:
            data["status"] = _validate_status(data["status"])
        if data.get("owner_id") is not None:
            get_person_or_404(db, data["owner_id"], "Owner")
        for key, value in data.items():
            if value is None and key in {"title", "priority", "status"}:
                continue
            setattr(action, key, value)
        db.commit()
        db.refresh(action)
        logger.info("Updated action %s", action.id)
        publish_event(
            EventType.action_updated,
            entity_type="action",
            entity_id=action.id,
            document_id=action.document_id,
            payload={"changed_fields": list(data.keys())},
        )
        return action

    @staticmethod
    def close(
        db: Session, action_id: str, user_id: str, notes: str | None = None
    ) -> dict:
        """Close every copy of the action's lineage across all versions.

        Copies that are already closed keep their original closure record.
        """
        action = Actions.get(db, action_id)
        closer = get_person_or_404(db, user_id)
        root_id = action.lineage_root_id
        members = db.scalars(
            select(Action)
            .where(or_(Action.id == root_id, Action.origin_action_id == root_id))
            .with_for_update()
            .execution_options(populate_existing=True)
        ).all()
        now = datetime.now(timezone.utc)
        closed_ids = []
        for member in members:
            if member.status == ActionStatus.closed:
                continue
            member.status = ActionStatus.closed
            member.closed_at = now
            member.closed_by = closer.id
            member.closure_note = notes
            closed_ids.append(member.id)
        db.commit()

        if closed_ids:
            ACTIONS_CLOSED.inc(len(closed_ids))
            logger.info(
                "Closed %d actions in lineage %s", len(closed_ids), root_id
            )
            publish_event(
                EventType.action_closed,
                entity_type="action",
                entity_id=action.id,
                actor_id=closer.id,
                document_id=action.document_id,
                payload={
                    "lineage_root_id": str(root_id),
                    "closed_action_ids": [str(i) for i in closed_ids],
                },
            )
        else:
            logger.info("Lineage %s already closed", root_id)
        return {
            "closed_action_ids": closed_ids,
            "lineage_root_id": root_id,
            "already_closed": not closed_ids,
        }

    @staticmethod
    def reopen(
        db: Session, action_id: str, user_id: str, notes: str | None = None
    ) -> Action:
        action = Actions.get(db, action_id)
        ensure_draft(action.document)
        reopener = get_person_or_404(db, user_id)
        if action.status not in (ActionStatus.closed, ActionStatus.not_applicable):
            raise InvariantViolation(
                f"Action {action.id} is {action.status.value} and cannot be reopened"
            )
        action.status = ActionStatus.open
        action.reopened_at = datetime.now(timezone.utc)
        action.reopened_by = reopener.id
        action.reopen_note = notes
        db.commit()
        db.refresh(action)
        logger.info("Reopened action %s", action.id)
        publish_event(
            EventType.action_reopened,
            entity_type="action",
            entity_id=action.id,
            actor_id=reopener.id,
            document_id=action.document_id,
        )
        return action

    @staticmethod
    def delete(db: Session, action_id: str) -> None:
        """Remove a manual action; auto-recommendations are suppressed instead."""
        action = Actions.get(db, action_id)
        ensure_draft(action.document)
        document_id = action.document_id
        if action.source_type == ActionSourceType.auto:
            action.is_suppressed = True
            db.commit()
            logger.info("Suppressed auto action %s (%s)", action.id, action.trigger_key)
            publish_event(
                EventType.action_suppressed,
                entity_type="action",
                entity_id=action.id,
                document_id=document_id,
                payload={"trigger_key": action.trigger_key},
            )
            return
        for attachment in db.scalars(
            select(Attachment).where(Attachment.action_id == action.id)
        ):
            attachment.action_id = None
        db.delete(action)
        db.commit()
        logger.info("Deleted manual action %s", action_id)
        publish_event(
            EventType.action_deleted,
            entity_type="action",
            entity_id=action_id,
            document_id=document_id,
        )

    @staticmethod
    def unsuppress(db: Session, action_id: str) -> Action:
        action = Actions.get(db, action_id)
        ensure_draft(action.document)
        if not action.is_suppressed:
            raise InvariantViolation(f"Action {action.id} is not suppressed")
        action.is_suppressed = False
        db.commit()
        db.refresh(action)
        logger.info("Unsuppressed auto action %s", action.id)
        publish_event(
            EventType.action_unsuppressed,
            entity_type="action",
            entity_id=action.id,
            document_id=action.document_id,
        )
        return action

    @staticmethod
    def lineage(db: Session, action_id: str) -> list[Action]:
        action = Actions.get(db, action_id)
        return lineage_members(db, action.lineage_root_id)


actions = Actions()
