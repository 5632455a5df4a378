from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.errors import NotFound, ValidationFailed
from app.models.compliance import (
    Action,
    ActionPriority,
    ActionSourceType,
    ActionStatus,
    RecommendationRule,
)
from app.observability import RECOMMENDATIONS_CREATED
from app.schemas.compliance import (
    RatingInput,
    RecommendationRuleCreate,
    RecommendationRuleUpdate,
)
from app.services.common import apply_ordering, apply_pagination, coerce_uuid
from app.services.event import EventType, publish_event
from app.services.lineage import trigger_key_for
from app.services.locking import ensure_draft, get_document_or_404
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)

_VALID_PRIORITIES = {e.value for e in ActionPriority}


def _validate_priority(value: str) -> ActionPriority:
    if value not in _VALID_PRIORITIES:
        raise ValidationFailed(
            f"Invalid default_priority. Allowed: {sorted(_VALID_PRIORITIES)}"
        )
    return ActionPriority(value)


class RecommendationRules(ListResponseMixin):
    @staticmethod
    def create(db: Session, payload: RecommendationRuleCreate) -> RecommendationRule:
        data = payload.model_dump()
        data["default_priority"] = _validate_priority(data["default_priority"])
        rule = RecommendationRule(**data)
        db.add(rule)
        db.commit()
        db.refresh(rule)
        logger.info(
            "Created recommendation rule %s for %s:%s",
            rule.id,
            rule.source_module_key,
            rule.source_factor_key or "*",
        )
        return rule

    @staticmethod
    def get(db: Session, rule_id: str) -> RecommendationRule:
        rule = db.get(RecommendationRule, coerce_uuid(rule_id))
        if not rule:
            raise NotFound(f"Recommendation rule {rule_id} not found")
        return rule

    @staticmethod
    def list(
        db: Session,
        source_module_key: str | None,
        is_active: bool | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ) -> list[RecommendationRule]:  # type: ignore[override]
        stmt = select(RecommendationRule)
        if source_module_key is not None:
            stmt = stmt.where(RecommendationRule.source_module_key == source_module_key)
        if is_active is not None:
            stmt = stmt.where(RecommendationRule.is_active == is_active)
        stmt = apply_ordering(
            stmt,
            order_by,
            order_dir,
            {
                "created_at": RecommendationRule.created_at,
                "source_module_key": RecommendationRule.source_module_key,
                "default_title": RecommendationRule.default_title,
            },
        )
        return db.scalars(apply_pagination(stmt, limit, offset)).all()

    @staticmethod
    def update(
        db: Session, rule_id: str, payload: RecommendationRuleUpdate
    ) -> RecommendationRule:
        rule = RecommendationRules.get(db, rule_id)
        data = payload.model_dump(exclude_unset=True)
        if data.get("default_priority") is not None:
            data["default_priority"] = _validate_priority(data["default_priority"])
        for key, value in data.items():
            if value is None and key in {
                "default_title",
                "default_priority",
                "trigger_rating_threshold",
                "is_active",
            }:
                continue
            setattr(rule, key, value)
        db.commit()
        db.refresh(rule)
        logger.info("Updated recommendation rule %s", rule.id)
        return rule

    @staticmethod
    def delete(db: Session, rule_id: str) -> None:
        rule = RecommendationRules.get(db, rule_id)
        rule.is_active = False
        db.commit()
        logger.info("Deactivated recommendation rule %s", rule.id)


def rating_map(ratings: Iterable[RatingInput | dict]) -> dict[str, int]:
    """Index ratings by ``module`` and ``module:factor``; the worst rating wins.

    Factor ratings also count towards their module.
    """
    grades: dict[str, int] = {}
    for item in ratings:
        if isinstance(item, dict):
            item = RatingInput(**item)
        keys = [item.module_key]
        if item.factor_key:
            keys.append(f"{item.module_key}:{item.factor_key}")
        for key in keys:
            grades[key] = min(grades.get(key, item.rating), item.rating)
    return grades


def rating_for(rule: RecommendationRule, grades: dict[str, int]) -> int | None:
    if rule.source_factor_key:
        factor_key = f"{rule.source_module_key}:{rule.source_factor_key}"
        if factor_key in grades:
            return grades[factor_key]
    return grades.get(rule.source_module_key)


class RecommendationEngine:
    """Turns low assessment ratings into auto-recommendation actions.

    Every (document, rule) pair maps to one trigger key, and the actions table
    is unique on ``(document_id, trigger_key)``. Re-running with the same
    ratings therefore only refreshes existing rows, and a suppressed row keeps
    its key so the rule can never raise it again on that draft.
    """

    @staticmethod
    def regenerate(
        db: Session,
        document_id: str,
        ratings: Iterable[RatingInput | dict],
        user_id: str | None = None,
    ) -> dict:
        document = get_document_or_404(db, document_id)
        ensure_draft(document)
        grades = rating_map(ratings)
        rules = db.scalars(
            select(RecommendationRule)
            .where(RecommendationRule.is_active.is_(True))
            .order_by(RecommendationRule.created_at.asc(), RecommendationRule.id.asc())
        ).all()
        existing = {
            action.trigger_key: action
            for action in db.scalars(
                select(Action)
                .where(Action.document_id == document.id)
                .where(Action.trigger_key.is_not(None))
            ).all()
        }

        created = []
        refreshed = []
        for rule in rules:
            rating = rating_for(rule, grades)
            if rating is None or rating > rule.trigger_rating_threshold:
                continue
            trigger_key = trigger_key_for(
                document.id, rule.source_module_key, rule.source_factor_key, rule.id
            )
            context = {
                "module_key": rule.source_module_key,
                "factor_key": rule.source_factor_key,
                "rating": rating,
                "threshold": rule.trigger_rating_threshold,
            }
            current = existing.get(trigger_key)
            if current is not None:
                if current.is_suppressed:
                    logger.debug("Trigger %s is suppressed", trigger_key)
                    continue
                if (
                    current.title != rule.default_title
                    or current.priority != rule.default_priority
                    or current.trigger_context != context
                ):
                    current.title = rule.default_title
                    current.priority = rule.default_priority
                    current.trigger_context = context
                    refreshed.append(current.id)
                continue

            action = Action(
                id=uuid.uuid4(),
                document_id=document.id,
                source_document_id=document.id,
                title=rule.default_title,
                observation=rule.default_observation,
                recommended_action=rule.default_action,
                hazard=rule.default_hazard,
                module_key=rule.source_module_key,
                priority=rule.default_priority,
                status=ActionStatus.open,
                source_type=ActionSourceType.auto,
                library_id=rule.id,
                trigger_key=trigger_key,
                trigger_context=context,
                created_by=coerce_uuid(user_id),
            )
            # Refreshes stay outside the savepoint a failed insert rolls back
            db.flush()
            try:
                with db.begin_nested():
                    db.add(action)
            except IntegrityError:
                # Another writer inserted the same trigger first
                logger.info("Trigger %s already exists", trigger_key)
                continue
            created.append(action.id)

        db.commit()
        if created:
            RECOMMENDATIONS_CREATED.inc(len(created))
        result = {
            "created": created,
            "refreshed": refreshed,
            "skipped": len(rules) - len(created),
        }
        logger.info(
            "Regenerated recommendations for document %s: created=%d refreshed=%d skipped=%d",
            document.id,
            len(created),
            len(refreshed),
            result["skipped"],
        )
        publish_event(
            EventType.recommendations_regenerated,
            entity_type="document",
            entity_id=document.id,
            actor_id=user_id,
            document_id=document.id,
            payload={
                "created": [str(i) for i in created],
                "refreshed": [str(i) for i in refreshed],
                "skipped": result["skipped"],
            },
        )
        return result


recommendation_rules = RecommendationRules()
recommendation_engine = RecommendationEngine()
