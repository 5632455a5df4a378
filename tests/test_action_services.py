import uuid

import pytest

from app.errors import DocumentLocked, InvariantViolation, NotFound, ValidationFailed
from app.models.compliance import (
    Action,
    ActionPriority,
    ActionSourceType,
    ActionStatus,
    Attachment,
    Document,
)
from app.schemas.compliance import (
    ActionCreate,
    ActionUpdate,
    AttachmentCreate,
    DocumentCreate,
    ModuleSave,
)
from app.services.actions import Actions
from app.services.documents import Documents, ModuleInstances
from app.services.evidence import Attachments


def _create_document(db_session, person):
    doc = Documents.create(
        db_session,
        DocumentCreate(title="FRA", document_type="fra", created_by=person.id),
    )
    ModuleInstances.save(
        db_session, str(doc.id), "fire_safety", ModuleSave(payload={"rating": 2})
    )
    return doc


def _create_action(db_session, doc, **overrides):
    defaults = dict(document_id=doc.id, title="Repair emergency lighting")
    defaults.update(overrides)
    return Actions.create(db_session, ActionCreate(**defaults))


def _create_auto_action(db_session, doc):
    action = Action(
        document_id=doc.id,
        source_document_id=doc.id,
        title="Fire alarm coverage inadequate",
        source_type=ActionSourceType.auto,
        trigger_key=f"{doc.id}:fire_safety:alarm:{uuid.uuid4()}",
    )
    db_session.add(action)
    db_session.commit()
    db_session.refresh(action)
    return action


def _carry(db_session, doc, person):
    """Issue ``doc`` and open the next version; returns the new draft."""
    Documents.issue(db_session, str(doc.id), str(person.id))
    result = Documents.create_new_version(db_session, str(doc.id), str(person.id))
    return db_session.get(Document, result["new_document_id"])


def _copy_of(db_session, action, document):
    return (
        db_session.query(Action)
        .filter_by(document_id=document.id, origin_action_id=action.id)
        .one()
    )


class TestActionsCreate:
    def test_create_manual_action(self, db_session, person):
        doc = _create_document(db_session, person)
        action = _create_action(db_session, doc, priority="high", owner_id=person.id)
        assert action.source_type == ActionSourceType.manual
        assert action.status == ActionStatus.open
        assert action.priority == ActionPriority.high
        assert action.source_document_id == doc.id
        assert action.origin_action_id is None
        assert action.lineage_root_id == action.id

    def test_create_on_issued_document(self, db_session, person):
        doc = _create_document(db_session, person)
        Documents.issue(db_session, str(doc.id), str(person.id))
        with pytest.raises(DocumentLocked):
            _create_action(db_session, doc)

    def test_create_invalid_priority(self, db_session, person):
        doc = _create_document(db_session, person)
        with pytest.raises(ValidationFailed):
            _create_action(db_session, doc, priority="urgent")

    def test_create_closed_status_rejected(self, db_session, person):
        doc = _create_document(db_session, person)
        with pytest.raises(ValidationFailed):
            _create_action(db_session, doc, status="closed")

    def test_create_unknown_owner(self, db_session, person):
        doc = _create_document(db_session, person)
        with pytest.raises(NotFound):
            _create_action(db_session, doc, owner_id=uuid.uuid4())


class TestActionsUpdate:
    def test_update_fields(self, db_session, person):
        doc = _create_document(db_session, person)
        action = _create_action(db_session, doc)
        updated = Actions.update(
            db_session,
            str(action.id),
            ActionUpdate(status="in_progress", observation="Two fittings failed"),
        )
        assert updated.status == ActionStatus.in_progress
        assert updated.observation == "Two fittings failed"

    def test_update_cannot_close(self, db_session, person):
        doc = _create_document(db_session, person)
        action = _create_action(db_session, doc)
        with pytest.raises(ValidationFailed):
            Actions.update(db_session, str(action.id), ActionUpdate(status="closed"))

    def test_update_on_issued_document(self, db_session, person):
        doc = _create_document(db_session, person)
        action = _create_action(db_session, doc)
        Documents.issue(db_session, str(doc.id), str(person.id))
        with pytest.raises(DocumentLocked):
            Actions.update(db_session, str(action.id), ActionUpdate(title="Edited"))


class TestActionsClose:
    def test_close_single_action(self, db_session, person):
        doc = _create_document(db_session, person)
        action = _create_action(db_session, doc)
        result = Actions.close(db_session, str(action.id), str(person.id), "Done")
        db_session.refresh(action)
        assert result["closed_action_ids"] == [action.id]
        assert result["lineage_root_id"] == action.id
        assert result["already_closed"] is False
        assert action.status == ActionStatus.closed
        assert action.closed_by == person.id
        assert action.closure_note == "Done"

    def test_close_spans_lineage(self, db_session, person):
        v1 = _create_document(db_session, person)
        root = _create_action(db_session, v1)
        v2 = _carry(db_session, v1, person)
        copy = _copy_of(db_session, root, v2)
        result = Actions.close(db_session, str(copy.id), str(person.id))
        db_session.refresh(root)
        db_session.refresh(copy)
        assert set(result["closed_action_ids"]) == {root.id, copy.id}
        assert result["lineage_root_id"] == root.id
        assert root.status == ActionStatus.closed
        assert copy.status == ActionStatus.closed

    def test_close_from_older_copy_reaches_newer(self, db_session, person):
        v1 = _create_document(db_session, person)
        root = _create_action(db_session, v1)
        v2 = _carry(db_session, v1, person)
        v3 = _carry(db_session, v2, person)
        newest = _copy_of(db_session, root, v3)
        Actions.close(db_session, str(root.id), str(person.id))
        db_session.refresh(newest)
        assert newest.status == ActionStatus.closed

    def test_close_is_idempotent(self, db_session, person):
        doc = _create_document(db_session, person)
        action = _create_action(db_session, doc)
        Actions.close(db_session, str(action.id), str(person.id), "First")
        result = Actions.close(db_session, str(action.id), str(person.id), "Second")
        db_session.refresh(action)
        assert result["already_closed"] is True
        assert result["closed_action_ids"] == []
        assert action.closure_note == "First"

    def test_close_unknown_action(self, db_session, person):
        with pytest.raises(NotFound):
            Actions.close(db_session, str(uuid.uuid4()), str(person.id))


class TestActionsReopen:
    def test_reopen_closed_action(self, db_session, person):
        doc = _create_document(db_session, person)
        action = _create_action(db_session, doc)
        Actions.close(db_session, str(action.id), str(person.id))
        reopened = Actions.reopen(
            db_session, str(action.id), str(person.id), "Defect recurred"
        )
        assert reopened.status == ActionStatus.open
        assert reopened.reopened_by == person.id
        assert reopened.reopen_note == "Defect recurred"

    def test_reopen_open_action(self, db_session, person):
        doc = _create_document(db_session, person)
        action = _create_action(db_session, doc)
        with pytest.raises(InvariantViolation):
            Actions.reopen(db_session, str(action.id), str(person.id))

    def test_reopen_on_issued_document(self, db_session, person):
        doc = _create_document(db_session, person)
        action = _create_action(db_session, doc)
        Actions.close(db_session, str(action.id), str(person.id))
        Documents.issue(db_session, str(doc.id), str(person.id))
        with pytest.raises(DocumentLocked):
            Actions.reopen(db_session, str(action.id), str(person.id))


class TestActionsDelete:
    def test_delete_manual_action(self, db_session, person):
        doc = _create_document(db_session, person)
        action = _create_action(db_session, doc)
        attachment = Attachments.add(
            db_session,
            str(doc.id),
            AttachmentCreate(
                file_name="photo.jpg", file_type="image/jpeg", action_id=action.id
            ),
        )
        action_id = action.id
        Actions.delete(db_session, str(action_id))
        db_session.refresh(attachment)
        assert db_session.get(Action, action_id) is None
        assert attachment.action_id is None

    def test_delete_auto_action_suppresses(self, db_session, person):
        doc = _create_document(db_session, person)
        action = _create_auto_action(db_session, doc)
        Actions.delete(db_session, str(action.id))
        db_session.refresh(action)
        assert action.is_suppressed is True

    def test_delete_on_issued_document(self, db_session, person):
        doc = _create_document(db_session, person)
        action = _create_action(db_session, doc)
        Documents.issue(db_session, str(doc.id), str(person.id))
        with pytest.raises(DocumentLocked):
            Actions.delete(db_session, str(action.id))

    def test_unsuppress(self, db_session, person):
        doc = _create_document(db_session, person)
        action = _create_auto_action(db_session, doc)
        Actions.delete(db_session, str(action.id))
        restored = Actions.unsuppress(db_session, str(action.id))
        assert restored.is_suppressed is False

    def test_unsuppress_live_action(self, db_session, person):
        doc = _create_document(db_session, person)
        action = _create_auto_action(db_session, doc)
        with pytest.raises(InvariantViolation):
            Actions.unsuppress(db_session, str(action.id))


class TestActionsList:
    def _list(self, db_session, doc, **overrides):
        params = dict(
            document_id=str(doc.id),
            status=None,
            source_type=None,
            include_suppressed=False,
            order_by="created_at",
            order_dir="asc",
            limit=50,
            offset=0,
        )
        params.update(overrides)
        return Actions.list(db_session, **params)

    def test_list_hides_suppressed(self, db_session, person):
        doc = _create_document(db_session, person)
        manual = _create_action(db_session, doc)
        auto = _create_auto_action(db_session, doc)
        Actions.delete(db_session, str(auto.id))
        assert [a.id for a in self._list(db_session, doc)] == [manual.id]
        assert len(self._list(db_session, doc, include_suppressed=True)) == 2

    def test_list_filter_source_type(self, db_session, person):
        doc = _create_document(db_session, person)
        _create_action(db_session, doc)
        auto = _create_auto_action(db_session, doc)
        results = self._list(db_session, doc, source_type="auto")
        assert [a.id for a in results] == [auto.id]

    def test_list_invalid_status(self, db_session, person):
        doc = _create_document(db_session, person)
        with pytest.raises(ValidationFailed):
            self._list(db_session, doc, status="done")


class TestActionsLineage:
    def test_lineage_members(self, db_session, person):
        v1 = _create_document(db_session, person)
        root = _create_action(db_session, v1)
        v2 = _carry(db_session, v1, person)
        copy = _copy_of(db_session, root, v2)
        members = Actions.lineage(db_session, str(copy.id))
        assert {m.id for m in members} == {root.id, copy.id}
        assert {m.document_id for m in members} == {v1.id, v2.id}

    def test_evidence_linked_to_carried_copy(self, db_session, person):
        v1 = _create_document(db_session, person)
        root = _create_action(db_session, v1)
        Attachments.add(
            db_session,
            str(v1.id),
            AttachmentCreate(
                file_name="door.jpg", file_type="image/jpeg", action_id=root.id
            ),
        )
        v2 = _carry(db_session, v1, person)
        copy = _copy_of(db_session, root, v2)
        carried = db_session.query(Attachment).filter_by(document_id=v2.id).one()
        assert carried.action_id == copy.id
