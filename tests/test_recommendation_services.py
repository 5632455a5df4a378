import uuid
from unittest.mock import patch

import pytest
from sqlalchemy import insert

from app.errors import DocumentLocked, NotFound, ValidationFailed
from app.models.compliance import (
    Action,
    ActionPriority,
    ActionSourceType,
    ActionStatus,
    Document,
)
from app.schemas.compliance import (
    DocumentCreate,
    ModuleSave,
    RatingInput,
    RecommendationRuleCreate,
    RecommendationRuleUpdate,
)
from app.services.actions import Actions
from app.services.documents import Documents, ModuleInstances
from app.services.lineage import rekey_trigger, trigger_key_for
from app.services.recommendations import (
    RecommendationEngine,
    RecommendationRules,
    rating_for,
    rating_map,
)


def _create_document(db_session, person):
    doc = Documents.create(
        db_session,
        DocumentCreate(title="FRA", document_type="fra", created_by=person.id),
    )
    ModuleInstances.save(
        db_session, str(doc.id), "fire_safety", ModuleSave(payload={"rating": 1})
    )
    return doc


def _create_rule(db_session, **overrides):
    defaults = dict(
        source_module_key="fire_safety",
        source_factor_key="alarm",
        trigger_rating_threshold=2,
        default_title="Upgrade the fire alarm system",
        default_action="Install an L2 system",
        default_priority="high",
    )
    defaults.update(overrides)
    return RecommendationRules.create(db_session, RecommendationRuleCreate(**defaults))


def _ratings(rating, module_key="fire_safety", factor_key="alarm"):
    return [RatingInput(module_key=module_key, factor_key=factor_key, rating=rating)]


def _auto_actions(db_session, doc):
    return (
        db_session.query(Action)
        .filter_by(document_id=doc.id, source_type=ActionSourceType.auto)
        .all()
    )


class TestRecommendationRules:
    def test_create_rule(self, db_session):
        rule = _create_rule(db_session)
        assert rule.default_priority == ActionPriority.high
        assert rule.is_active is True

    def test_create_invalid_priority(self, db_session):
        with pytest.raises(ValidationFailed):
            _create_rule(db_session, default_priority="urgent")

    def test_get_not_found(self, db_session):
        with pytest.raises(NotFound):
            RecommendationRules.get(db_session, str(uuid.uuid4()))

    def test_list_filter_module(self, db_session):
        _create_rule(db_session)
        _create_rule(db_session, source_module_key="management")
        results = RecommendationRules.list(
            db_session,
            source_module_key="management",
            is_active=None,
            order_by="created_at",
            order_dir="asc",
            limit=50,
            offset=0,
        )
        assert [r.source_module_key for r in results] == ["management"]

    def test_update_rule(self, db_session):
        rule = _create_rule(db_session)
        updated = RecommendationRules.update(
            db_session,
            str(rule.id),
            RecommendationRuleUpdate(default_title="Replace alarm panel"),
        )
        assert updated.default_title == "Replace alarm panel"

    def test_delete_deactivates(self, db_session):
        rule = _create_rule(db_session)
        RecommendationRules.delete(db_session, str(rule.id))
        db_session.refresh(rule)
        assert rule.is_active is False


class TestRatingHelpers:
    def test_worst_rating_wins(self):
        grades = rating_map(
            [
                RatingInput(module_key="fire_safety", factor_key="alarm", rating=3),
                RatingInput(module_key="fire_safety", factor_key="alarm", rating=1),
            ]
        )
        assert grades == {"fire_safety:alarm": 1, "fire_safety": 1}

    def test_factor_ratings_count_towards_module(self):
        grades = rating_map(
            [
                RatingInput(module_key="fire_safety", factor_key="alarm", rating=1),
                RatingInput(module_key="fire_safety", factor_key="doors", rating=3),
                RatingInput(module_key="fire_safety", rating=2),
            ]
        )
        assert grades == {
            "fire_safety": 1,
            "fire_safety:alarm": 1,
            "fire_safety:doors": 3,
        }

    def test_accepts_dicts(self):
        grades = rating_map([{"module_key": "management", "rating": 2}])
        assert grades == {"management": 2}

    def test_factor_rule_falls_back_to_module(self, db_session):
        rule = _create_rule(db_session)
        assert rating_for(rule, {"fire_safety": 1}) == 1
        assert rating_for(rule, {"fire_safety": 1, "fire_safety:alarm": 3}) == 3
        assert rating_for(rule, {"management": 1}) is None

    def test_trigger_key_round_trip(self):
        doc_id, other_id, rule_id = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        key = trigger_key_for(doc_id, "fire_safety", None, rule_id)
        assert key == f"{doc_id}:fire_safety:*:{rule_id}"
        assert rekey_trigger(key, other_id) == f"{other_id}:fire_safety:*:{rule_id}"


class TestRegenerate:
    def test_creates_action_for_low_rating(self, db_session, person):
        doc = _create_document(db_session, person)
        rule = _create_rule(db_session)
        result = RecommendationEngine.regenerate(db_session, str(doc.id), _ratings(1))
        actions = _auto_actions(db_session, doc)
        assert len(result["created"]) == 1
        assert result["skipped"] == 0
        assert actions[0].title == "Upgrade the fire alarm system"
        assert actions[0].recommended_action == "Install an L2 system"
        assert actions[0].priority == ActionPriority.high
        assert actions[0].library_id == rule.id
        assert actions[0].trigger_key == trigger_key_for(
            doc.id, "fire_safety", "alarm", rule.id
        )
        assert actions[0].trigger_context["rating"] == 1

    def test_rating_above_threshold_skipped(self, db_session, person):
        doc = _create_document(db_session, person)
        _create_rule(db_session, trigger_rating_threshold=1)
        result = RecommendationEngine.regenerate(db_session, str(doc.id), _ratings(2))
        assert result["created"] == []
        assert result["skipped"] == 1
        assert _auto_actions(db_session, doc) == []

    def test_regenerate_is_idempotent(self, db_session, person):
        doc = _create_document(db_session, person)
        _create_rule(db_session)
        RecommendationEngine.regenerate(db_session, str(doc.id), _ratings(1))
        result = RecommendationEngine.regenerate(db_session, str(doc.id), _ratings(1))
        assert result == {"created": [], "refreshed": [], "skipped": 1}
        assert len(_auto_actions(db_session, doc)) == 1

    def test_refreshes_changed_rule(self, db_session, person):
        doc = _create_document(db_session, person)
        rule = _create_rule(db_session)
        first = RecommendationEngine.regenerate(db_session, str(doc.id), _ratings(1))
        RecommendationRules.update(
            db_session,
            str(rule.id),
            RecommendationRuleUpdate(default_title="Replace alarm panel"),
        )
        result = RecommendationEngine.regenerate(db_session, str(doc.id), _ratings(2))
        action = _auto_actions(db_session, doc)[0]
        assert result["refreshed"] == first["created"]
        assert action.title == "Replace alarm panel"
        assert action.trigger_context["rating"] == 2

    def test_suppressed_trigger_is_not_recreated(self, db_session, person):
        doc = _create_document(db_session, person)
        _create_rule(db_session)
        created = RecommendationEngine.regenerate(
            db_session, str(doc.id), _ratings(1)
        )["created"]
        Actions.delete(db_session, str(created[0]))
        result = RecommendationEngine.regenerate(db_session, str(doc.id), _ratings(1))
        actions = _auto_actions(db_session, doc)
        assert result["created"] == []
        assert len(actions) == 1
        assert actions[0].is_suppressed is True

    def test_inactive_rule_ignored(self, db_session, person):
        doc = _create_document(db_session, person)
        rule = _create_rule(db_session)
        RecommendationRules.delete(db_session, str(rule.id))
        result = RecommendationEngine.regenerate(db_session, str(doc.id), _ratings(1))
        assert result == {"created": [], "refreshed": [], "skipped": 0}

    def test_module_level_rule(self, db_session, person):
        doc = _create_document(db_session, person)
        _create_rule(db_session, source_factor_key=None)
        result = RecommendationEngine.regenerate(
            db_session, str(doc.id), _ratings(1, factor_key=None)
        )
        assert len(result["created"]) == 1

    def test_module_level_rule_from_factor_rating(self, db_session, person):
        doc = _create_document(db_session, person)
        _create_rule(db_session, source_factor_key=None)
        result = RecommendationEngine.regenerate(db_session, str(doc.id), _ratings(1))
        actions = _auto_actions(db_session, doc)
        assert len(result["created"]) == 1
        assert actions[0].trigger_context == {
            "module_key": "fire_safety",
            "factor_key": None,
            "rating": 1,
            "threshold": 2,
        }

    def test_refresh_kept_when_insert_conflicts(self, db_session, person):
        doc = _create_document(db_session, person)
        alarm_rule = _create_rule(db_session)
        first = RecommendationEngine.regenerate(db_session, str(doc.id), _ratings(1))
        RecommendationRules.update(
            db_session,
            str(alarm_rule.id),
            RecommendationRuleUpdate(default_title="Replace alarm panel"),
        )
        sounder_rule = _create_rule(db_session, default_title="Add a sounder")

        def key_for(document_id, module_key, factor_key, rule_id):
            key = trigger_key_for(document_id, module_key, factor_key, rule_id)
            if rule_id == sounder_rule.id:
                # Written by another request after the existing triggers were read
                db_session.execute(
                    insert(Action).values(
                        id=uuid.uuid4(),
                        document_id=doc.id,
                        source_document_id=doc.id,
                        title="Add a sounder",
                        priority=ActionPriority.high,
                        status=ActionStatus.open,
                        source_type=ActionSourceType.auto,
                        library_id=sounder_rule.id,
                        trigger_key=key,
                        is_suppressed=False,
                    )
                )
            return key

        with patch(
            "app.services.recommendations.trigger_key_for", side_effect=key_for
        ):
            result = RecommendationEngine.regenerate(
                db_session, str(doc.id), _ratings(1)
            )
        assert result["created"] == []
        assert result["refreshed"] == first["created"]
        db_session.expire_all()
        titles = sorted(a.title for a in _auto_actions(db_session, doc))
        assert titles == ["Add a sounder", "Replace alarm panel"]

    def test_regenerate_on_issued_document(self, db_session, person):
        doc = _create_document(db_session, person)
        Documents.issue(db_session, str(doc.id), str(person.id))
        with pytest.raises(DocumentLocked):
            RecommendationEngine.regenerate(db_session, str(doc.id), _ratings(1))

    def test_carried_trigger_not_duplicated(self, db_session, person):
        v1 = _create_document(db_session, person)
        _create_rule(db_session)
        RecommendationEngine.regenerate(db_session, str(v1.id), _ratings(1))
        Documents.issue(db_session, str(v1.id), str(person.id))
        new = Documents.create_new_version(db_session, str(v1.id), str(person.id))
        v2 = db_session.get(Document, new["new_document_id"])
        result = RecommendationEngine.regenerate(db_session, str(v2.id), _ratings(1))
        actions = _auto_actions(db_session, v2)
        assert result["created"] == []
        assert len(actions) == 1
        assert actions[0].trigger_key.startswith(f"{v2.id}:")

    def test_suppression_carries_forward(self, db_session, person):
        v1 = _create_document(db_session, person)
        _create_rule(db_session)
        created = RecommendationEngine.regenerate(
            db_session, str(v1.id), _ratings(1)
        )["created"]
        Actions.delete(db_session, str(created[0]))
        Documents.issue(db_session, str(v1.id), str(person.id))
        new = Documents.create_new_version(db_session, str(v1.id), str(person.id))
        result = RecommendationEngine.regenerate(
            db_session, str(new["new_document_id"]), _ratings(1)
        )
        assert result["created"] == []

    def test_closed_trigger_raised_again_on_next_version(self, db_session, person):
        v1 = _create_document(db_session, person)
        _create_rule(db_session)
        created = RecommendationEngine.regenerate(
            db_session, str(v1.id), _ratings(1)
        )["created"]
        Actions.close(db_session, str(created[0]), str(person.id))
        Documents.issue(db_session, str(v1.id), str(person.id))
        new = Documents.create_new_version(db_session, str(v1.id), str(person.id))
        result = RecommendationEngine.regenerate(
            db_session, str(new["new_document_id"]), _ratings(1)
        )
        assert len(result["created"]) == 1
