from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.schemas.common import ListResponse
from app.schemas.compliance import DefencePackRead, DownloadURLResponse
from app.services import defence_pack as pack_service

router = APIRouter(prefix="/defence-packs", tags=["defence-packs"])


@router.get("", response_model=ListResponse[DefencePackRead])
def list_defence_packs(
    base_document_id: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return pack_service.defence_packs.list_response(db, base_document_id, limit, offset)


@router.get("/{pack_id}", response_model=DefencePackRead)
def get_defence_pack(pack_id: str, db: Session = Depends(get_db)):
    return pack_service.defence_packs.get(db, pack_id)


@router.get("/{pack_id}/download-url", response_model=DownloadURLResponse)
def get_download_url(pack_id: str, db: Session = Depends(get_db)):
    url = pack_service.defence_packs.download_url(db, pack_id)
    return DownloadURLResponse(download_url=url)
