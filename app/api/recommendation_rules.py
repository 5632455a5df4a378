from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.schemas.common import ListResponse
from app.schemas.compliance import (
    RecommendationRuleCreate,
    RecommendationRuleRead,
    RecommendationRuleUpdate,
)
from app.services import recommendations as recommendation_service

router = APIRouter(prefix="/recommendation-rules", tags=["recommendation-rules"])


@router.post(
    "", response_model=RecommendationRuleRead, status_code=status.HTTP_201_CREATED
)
def create_rule(payload: RecommendationRuleCreate, db: Session = Depends(get_db)):
    return recommendation_service.recommendation_rules.create(db, payload)


@router.get("/{rule_id}", response_model=RecommendationRuleRead)
def get_rule(rule_id: str, db: Session = Depends(get_db)):
    return recommendation_service.recommendation_rules.get(db, rule_id)


@router.get("", response_model=ListResponse[RecommendationRuleRead])
def list_rules(
    source_module_key: str | None = None,
    is_active: bool | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="asc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return recommendation_service.recommendation_rules.list_response(
        db, source_module_key, is_active, order_by, order_dir, limit, offset
    )


@router.patch("/{rule_id}", response_model=RecommendationRuleRead)
def update_rule(
    rule_id: str, payload: RecommendationRuleUpdate, db: Session = Depends(get_db)
):
    return recommendation_service.recommendation_rules.update(db, rule_id, payload)


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_rule(rule_id: str, db: Session = Depends(get_db)):
    recommendation_service.recommendation_rules.delete(db, rule_id)
