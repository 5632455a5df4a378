from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.schemas.common import ListResponse
from app.schemas.compliance import (
    ActionCreate,
    ActionRead,
    ActionUpdate,
    CloseActionRequest,
    CloseActionResult,
    ReopenActionRequest,
)
from app.services import actions as action_service

router = APIRouter(prefix="/actions", tags=["actions"])


@router.post("", response_model=ActionRead, status_code=status.HTTP_201_CREATED)
def create_action(payload: ActionCreate, db: Session = Depends(get_db)):
    return action_service.actions.create(db, payload)


@router.get("/{action_id}", response_model=ActionRead)
def get_action(action_id: str, db: Session = Depends(get_db)):
    return action_service.actions.get(db, action_id)


@router.get("", response_model=ListResponse[ActionRead])
def list_actions(
    document_id: str | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    source_type: str | None = None,
    include_suppressed: bool = False,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="asc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return action_service.actions.list_response(
        db,
        document_id,
        status_filter,
        source_type,
        include_suppressed,
        order_by,
        order_dir,
        limit,
        offset,
    )


@router.patch("/{action_id}", response_model=ActionRead)
def update_action(action_id: str, payload: ActionUpdate, db: Session = Depends(get_db)):
    return action_service.actions.update(db, action_id, payload)


@router.delete("/{action_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_action(action_id: str, db: Session = Depends(get_db)):
    action_service.actions.delete(db, action_id)


# ------------------------------------------------------------------
# Lineage
# ------------------------------------------------------------------


@router.post("/{action_id}/close", response_model=CloseActionResult)
def close_action(
    action_id: str, payload: CloseActionRequest, db: Session = Depends(get_db)
):
    return action_service.actions.close(db, action_id, payload.user_id, payload.notes)


@router.post("/{action_id}/reopen", response_model=ActionRead)
def reopen_action(
    action_id: str, payload: ReopenActionRequest, db: Session = Depends(get_db)
):
    return action_service.actions.reopen(db, action_id, payload.user_id, payload.notes)


@router.post("/{action_id}/unsuppress", response_model=ActionRead)
def unsuppress_action(action_id: str, db: Session = Depends(get_db)):
    return action_service.actions.unsuppress(db, action_id)


@router.get("/{action_id}/lineage", response_model=list[ActionRead])
def get_lineage(action_id: str, db: Session = Depends(get_db)):
    return action_service.actions.lineage(db, action_id)
