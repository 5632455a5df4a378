"""Change summaries recorded when a version is issued.

Each issued version is compared with the version issued immediately before
it in the same family. Actions are matched across versions by lineage root,
so a carried copy counts as the same item as its predecessor.
"""

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import NotFound
from app.models.compliance import (
    CARRY_FORWARD_STATUSES,
    Action,
    ActionStatus,
    ChangeSummary,
    Document,
)
from app.services.common import as_utc, coerce_uuid

logger = logging.getLogger(__name__)

INITIAL_ISSUE_TEXT = "Initial issue - no previous version."

_RESOLVED_STATUSES = frozenset({ActionStatus.closed, ActionStatus.not_applicable})


def _live_actions(db: Session, document_id: uuid.UUID) -> list[Action]:
    return list(
        db.scalars(
            select(Action)
            .where(Action.document_id == document_id)
            .where(Action.is_suppressed.is_(False))
            .order_by(Action.reference_number.asc(), Action.created_at.asc())
        ).all()
    )


def _action_entry(action: Action) -> dict:
    return {
        "action_id": str(action.id),
        "lineage_root_id": str(action.lineage_root_id),
        "reference_number": action.reference_number,
        "title": action.title,
        "priority": action.priority.value,
        "status": action.status.value,
    }


def _resolved_since(action: Action, since) -> bool:
    if action.status not in _RESOLVED_STATUSES:
        return False
    if since is None:
        return True
    resolved_at = as_utc(action.closed_at or action.updated_at)
    return resolved_at is not None and resolved_at > as_utc(since)


class ChangeSummaries:
    @staticmethod
    def previous_version(db: Session, document: Document) -> Document | None:
        return db.scalars(
            select(Document)
            .where(Document.base_document_id == document.base_document_id)
            .where(Document.version_number < document.version_number)
            .where(Document.issue_date.is_not(None))
            .order_by(Document.version_number.desc())
            .limit(1)
        ).first()

    @staticmethod
    def compute(db: Session, document: Document) -> dict:
        previous = ChangeSummaries.previous_version(db, document)
        current = _live_actions(db, document.id)
        outstanding = [a for a in current if a.status in CARRY_FORWARD_STATUSES]

        if previous is None:
            return {
                "previous": None,
                "new_actions": [_action_entry(a) for a in current],
                "closed_actions": [],
                "reopened_count": 0,
                "outstanding_count": len(outstanding),
            }

        since = previous.issue_date
        prior = _live_actions(db, previous.id)
        prior_roots = {a.lineage_root_id for a in prior}
        current_by_root = {a.lineage_root_id: a for a in current}

        new_actions = [a for a in current if a.lineage_root_id not in prior_roots]
        closed_actions = []
        for action in prior:
            carried = current_by_root.get(action.lineage_root_id)
            if carried is not None:
                if _resolved_since(carried, since):
                    closed_actions.append(carried)
            elif _resolved_since(action, since):
                closed_actions.append(action)
        reopened = [
            a
            for a in current
            if a.reopened_at is not None and as_utc(a.reopened_at) > as_utc(since)
        ]
        return {
            "previous": previous,
            "new_actions": [_action_entry(a) for a in new_actions],
            "closed_actions": [_action_entry(a) for a in closed_actions],
            "reopened_count": len(reopened),
            "outstanding_count": len(outstanding),
        }

    @staticmethod
    def format_markdown(document: Document, data: dict) -> str:
        previous = data["previous"]
        lines = [f"# Change summary: {document.title} v{document.version_number}", ""]
        if previous is None:
            lines.append(INITIAL_ISSUE_TEXT)
        else:
            lines.append(f"Compared with version {previous.version_number}.")
        lines += [
            "",
            f"- New actions: {len(data['new_actions'])}",
            f"- Closed actions: {len(data['closed_actions'])}",
            f"- Reopened actions: {data['reopened_count']}",
            f"- Outstanding actions: {data['outstanding_count']}",
        ]
        for heading, entries in (
            ("New actions", data["new_actions"]),
            ("Closed actions", data["closed_actions"]),
        ):
            if not entries:
                continue
            lines += ["", f"## {heading}", ""]
            for entry in entries:
                ref = entry["reference_number"] or "-"
                lines.append(f"- {ref} {entry['title']} ({entry['priority']})")
        return "\n".join(lines) + "\n"

    @staticmethod
    def generate(
        db: Session, document: Document, user_id: uuid.UUID | None = None
    ) -> ChangeSummary:
        """Record the summary for a version being issued. Caller commits."""
        data = ChangeSummaries.compute(db, document)
        previous = data["previous"]
        summary = ChangeSummary(
            document_id=document.id,
            base_document_id=document.base_document_id,
            previous_document_id=previous.id if previous else None,
            version_number=document.version_number,
            new_actions_count=len(data["new_actions"]),
            closed_actions_count=len(data["closed_actions"]),
            reopened_actions_count=data["reopened_count"],
            outstanding_actions_count=data["outstanding_count"],
            new_actions=data["new_actions"],
            closed_actions=data["closed_actions"],
            has_material_changes=bool(
                data["new_actions"] or data["closed_actions"] or data["reopened_count"]
            ),
            summary_markdown=ChangeSummaries.format_markdown(document, data),
            generated_by=user_id,
        )
        db.add(summary)
        logger.info(
            "Generated change summary for document %s (new=%d closed=%d)",
            document.id,
            summary.new_actions_count,
            summary.closed_actions_count,
        )
        return summary

    @staticmethod
    def get_for_document(db: Session, document_id: str) -> ChangeSummary:
        summary = db.scalars(
            select(ChangeSummary).where(
                ChangeSummary.document_id == coerce_uuid(document_id)
            )
        ).first()
        if not summary:
            raise NotFound(f"No change summary for document {document_id}")
        return summary


change_summaries = ChangeSummaries()
