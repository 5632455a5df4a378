import uuid

import pytest

from app.errors import NotFound
from app.models.compliance import Action, ChangeSummary, Document
from app.schemas.compliance import ActionCreate, DocumentCreate, ModuleSave
from app.services.actions import Actions
from app.services.change_summary import INITIAL_ISSUE_TEXT, ChangeSummaries
from app.services.documents import Documents, ModuleInstances


def _create_document(db_session, person):
    doc = Documents.create(
        db_session,
        DocumentCreate(title="Block A FRA", document_type="fra", created_by=person.id),
    )
    ModuleInstances.save(
        db_session, str(doc.id), "fire_safety", ModuleSave(payload={"rating": 2})
    )
    return doc


def _create_action(db_session, doc, title):
    return Actions.create(db_session, ActionCreate(document_id=doc.id, title=title))


def _next_version(db_session, doc, person):
    Documents.issue(db_session, str(doc.id), str(person.id))
    result = Documents.create_new_version(db_session, str(doc.id), str(person.id))
    return db_session.get(Document, result["new_document_id"])


def _summary(db_session, doc):
    return db_session.query(ChangeSummary).filter_by(document_id=doc.id).one()


class TestInitialIssue:
    def test_initial_summary(self, db_session, person):
        doc = _create_document(db_session, person)
        _create_action(db_session, doc, "Fit intumescent strips")
        Documents.issue(db_session, str(doc.id), str(person.id))
        summary = _summary(db_session, doc)
        assert summary.is_initial_issue is True
        assert summary.new_actions_count == 1
        assert summary.closed_actions_count == 0
        assert summary.outstanding_actions_count == 1
        assert summary.has_material_changes is True
        assert INITIAL_ISSUE_TEXT in summary.summary_markdown
        assert summary.new_actions[0]["reference_number"] == "R-01"

    def test_initial_summary_without_actions(self, db_session, person):
        doc = _create_document(db_session, person)
        Documents.issue(db_session, str(doc.id), str(person.id))
        summary = _summary(db_session, doc)
        assert summary.new_actions == []
        assert summary.has_material_changes is False


class TestVersionComparison:
    def test_new_and_closed_actions(self, db_session, person):
        v1 = _create_document(db_session, person)
        kept = _create_action(db_session, v1, "Clear escape route")
        fixed = _create_action(db_session, v1, "Repair door closer")
        v2 = _next_version(db_session, v1, person)
        fixed_copy = (
            db_session.query(Action)
            .filter_by(document_id=v2.id, origin_action_id=fixed.id)
            .one()
        )
        Actions.close(db_session, str(fixed_copy.id), str(person.id))
        _create_action(db_session, v2, "Replace signage")
        Documents.issue(db_session, str(v2.id), str(person.id))

        summary = _summary(db_session, v2)
        assert summary.previous_document_id == v1.id
        assert summary.new_actions_count == 1
        assert summary.new_actions[0]["title"] == "Replace signage"
        assert summary.closed_actions_count == 1
        assert summary.closed_actions[0]["lineage_root_id"] == str(fixed.id)
        assert summary.outstanding_actions_count == 2
        assert "Compared with version 1." in summary.summary_markdown
        assert kept.id not in {
            uuid.UUID(entry["lineage_root_id"]) for entry in summary.new_actions
        }

    def test_reopened_actions_counted(self, db_session, person):
        v1 = _create_document(db_session, person)
        root = _create_action(db_session, v1, "Test emergency lighting")
        v2 = _next_version(db_session, v1, person)
        copy = (
            db_session.query(Action)
            .filter_by(document_id=v2.id, origin_action_id=root.id)
            .one()
        )
        Actions.close(db_session, str(copy.id), str(person.id))
        Actions.reopen(db_session, str(copy.id), str(person.id), "Failed retest")
        Documents.issue(db_session, str(v2.id), str(person.id))
        summary = _summary(db_session, v2)
        assert summary.reopened_actions_count == 1
        assert summary.closed_actions_count == 0

    def test_no_material_changes(self, db_session, person):
        v1 = _create_document(db_session, person)
        v2 = _next_version(db_session, v1, person)
        Documents.issue(db_session, str(v2.id), str(person.id))
        summary = _summary(db_session, v2)
        assert summary.has_material_changes is False
        assert summary.previous_document_id == v1.id

    def test_previous_version(self, db_session, person):
        v1 = _create_document(db_session, person)
        v2 = _next_version(db_session, v1, person)
        assert ChangeSummaries.previous_version(db_session, v2).id == v1.id
        assert ChangeSummaries.previous_version(db_session, v1) is None


class TestFormatMarkdown:
    def test_lists_entries(self, db_session, person):
        doc = _create_document(db_session, person)
        data = {
            "previous": None,
            "new_actions": [
                {"reference_number": "R-01", "title": "Fix door", "priority": "high"},
                {"reference_number": None, "title": "Add sign", "priority": "low"},
            ],
            "closed_actions": [],
            "reopened_count": 0,
            "outstanding_count": 2,
        }
        text = ChangeSummaries.format_markdown(doc, data)
        assert text.startswith("# Change summary: Block A FRA v1")
        assert "- New actions: 2" in text
        assert "- R-01 Fix door (high)" in text
        assert "- - Add sign (low)" in text
        assert "## Closed actions" not in text


class TestGetForDocument:
    def test_not_found_for_draft(self, db_session, person):
        doc = _create_document(db_session, person)
        with pytest.raises(NotFound):
            ChangeSummaries.get_for_document(db_session, str(doc.id))
