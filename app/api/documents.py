from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.schemas.common import ListResponse
from app.schemas.compliance import (
    AttachmentCreate,
    AttachmentRead,
    ChangeSummaryRead,
    DefencePackBuildRequest,
    DefencePackRead,
    DocumentCreate,
    DocumentRead,
    DocumentUpdate,
    FamilyHealthRead,
    IssueRequest,
    IssueResult,
    ModuleRead,
    ModuleSave,
    NewVersionRequest,
    NewVersionResult,
    RegenerateRequest,
    RegenerateResult,
    RenderedArtifactCreate,
    ValidationResultRead,
)
from app.services import change_summary as summary_service
from app.services import defence_pack as pack_service
from app.services import documents as doc_service
from app.services import evidence as evidence_service
from app.services import recommendations as recommendation_service

router = APIRouter(prefix="/documents", tags=["documents"])


# ------------------------------------------------------------------
# Document CRUD
# ------------------------------------------------------------------


@router.post("", response_model=DocumentRead, status_code=status.HTTP_201_CREATED)
def create_document(payload: DocumentCreate, db: Session = Depends(get_db)):
    return doc_service.documents.create(db, payload)


@router.get("/{document_id}", response_model=DocumentRead)
def get_document(document_id: str, db: Session = Depends(get_db)):
    return doc_service.documents.get(db, document_id)


@router.get("", response_model=ListResponse[DocumentRead])
def list_documents(
    document_type: str | None = None,
    issue_status: str | None = None,
    base_document_id: str | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return doc_service.documents.list_response(
        db,
        document_type,
        issue_status,
        base_document_id,
        order_by,
        order_dir,
        limit,
        offset,
    )


@router.patch("/{document_id}", response_model=DocumentRead)
def update_document(
    document_id: str, payload: DocumentUpdate, db: Session = Depends(get_db)
):
    return doc_service.documents.update(db, document_id, payload)


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_document(document_id: str, db: Session = Depends(get_db)):
    doc_service.documents.delete(db, document_id)


# ------------------------------------------------------------------
# Family
# ------------------------------------------------------------------


@router.get("/{document_id}/versions", response_model=list[DocumentRead])
def list_versions(document_id: str, db: Session = Depends(get_db)):
    document = doc_service.documents.get(db, document_id)
    return doc_service.documents.list_versions(db, document.base_document_id)


@router.get("/{document_id}/current", response_model=DocumentRead)
def get_current_issued(document_id: str, db: Session = Depends(get_db)):
    document = doc_service.documents.get(db, document_id)
    return doc_service.documents.get_current_issued(db, document.base_document_id)


@router.get("/{document_id}/health", response_model=FamilyHealthRead)
def family_health(document_id: str, db: Session = Depends(get_db)):
    document = doc_service.documents.get(db, document_id)
    return doc_service.documents.family_health(db, document.base_document_id)


# ------------------------------------------------------------------
# Issue state machine
# ------------------------------------------------------------------


@router.get("/{document_id}/validate", response_model=ValidationResultRead)
def validate_for_issue(document_id: str, db: Session = Depends(get_db)):
    return doc_service.documents.validate_for_issue(db, document_id)


@router.post("/{document_id}/issue", response_model=IssueResult)
def issue_document(
    document_id: str, payload: IssueRequest, db: Session = Depends(get_db)
):
    return doc_service.documents.issue(db, document_id, payload.user_id)


@router.post(
    "/{document_id}/versions",
    response_model=NewVersionResult,
    status_code=status.HTTP_201_CREATED,
)
def create_new_version(
    document_id: str, payload: NewVersionRequest, db: Session = Depends(get_db)
):
    return doc_service.documents.create_new_version(db, document_id, payload.user_id)


@router.post("/{document_id}/rendered-artifact", response_model=DocumentRead)
def register_rendered_artifact(
    document_id: str, payload: RenderedArtifactCreate, db: Session = Depends(get_db)
):
    return doc_service.documents.register_rendered_artifact(db, document_id, payload)


@router.get("/{document_id}/change-summary", response_model=ChangeSummaryRead)
def get_change_summary(document_id: str, db: Session = Depends(get_db)):
    return summary_service.change_summaries.get_for_document(db, document_id)


# ------------------------------------------------------------------
# Content modules
# ------------------------------------------------------------------


@router.put("/{document_id}/modules/{module_key}", response_model=ModuleRead)
def save_module(
    document_id: str,
    module_key: str,
    payload: ModuleSave,
    db: Session = Depends(get_db),
):
    return doc_service.module_instances.save(db, document_id, module_key, payload)


@router.get("/{document_id}/modules", response_model=ListResponse[ModuleRead])
def list_modules(
    document_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return doc_service.module_instances.list_response(db, document_id, limit, offset)


# ------------------------------------------------------------------
# Auto-recommendations
# ------------------------------------------------------------------


@router.post(
    "/{document_id}/recommendations/regenerate", response_model=RegenerateResult
)
def regenerate_recommendations(
    document_id: str, payload: RegenerateRequest, db: Session = Depends(get_db)
):
    return recommendation_service.recommendation_engine.regenerate(
        db, document_id, payload.ratings, payload.user_id
    )


# ------------------------------------------------------------------
# Evidence
# ------------------------------------------------------------------


@router.post(
    "/{document_id}/evidence",
    response_model=AttachmentRead,
    status_code=status.HTTP_201_CREATED,
)
def add_evidence(
    document_id: str, payload: AttachmentCreate, db: Session = Depends(get_db)
):
    return evidence_service.attachments.add(db, document_id, payload)


@router.get("/{document_id}/evidence", response_model=ListResponse[AttachmentRead])
def list_evidence(
    document_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return evidence_service.attachments.list_response(db, document_id, limit, offset)


@router.delete(
    "/{document_id}/evidence/{attachment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def remove_evidence(document_id: str, attachment_id: str, db: Session = Depends(get_db)):
    evidence_service.attachments.delete(db, attachment_id, document_id)


# ------------------------------------------------------------------
# Defence pack
# ------------------------------------------------------------------


@router.post("/{document_id}/defence-pack", response_model=DefencePackRead)
def build_defence_pack(
    document_id: str,
    payload: DefencePackBuildRequest | None = None,
    db: Session = Depends(get_db),
):
    user_id = payload.user_id if payload else None
    return pack_service.defence_packs.build(db, document_id, user_id).pack


@router.get("/{document_id}/defence-pack", response_model=DefencePackRead)
def get_defence_pack(document_id: str, db: Session = Depends(get_db)):
    return pack_service.defence_packs.get_for_document(db, document_id)
