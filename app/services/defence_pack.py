"""Defence packs: immutable evidence bundles for issued versions.

A pack is a zip of the issued artifact, the change summary, an action
snapshot and an evidence index, plus a manifest describing them. At most one
pack exists per document; building again returns the stored pack.
"""

from __future__ import annotations

import hashlib
import io
import json
import logging
import uuid
import zipfile
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import (
    DependencyUnavailable,
    DocumentNotIssued,
    NotFound,
    RenderedArtifactMissing,
)
from app.models.compliance import (
    Action,
    ChangeSummary,
    DefencePack,
    Document,
    IssueStatus,
)
from app.observability import DEFENCE_PACKS_BUILT
from app.services.change_summary import INITIAL_ISSUE_TEXT
from app.services.collaborators import (
    ArtifactSource,
    AttachmentEvidenceProvider,
    EvidenceItem,
    EvidenceProvider,
    StoredArtifactSource,
)
from app.services.common import apply_pagination, coerce_uuid
from app.services.event import EventType, publish_event
from app.services.locking import get_document_or_404
from app.services.response import ListResponseMixin
from app.services.storage import StorageError, storage

logger = logging.getLogger(__name__)

ARTIFACT_FILE = "issued_document.pdf"
MANIFEST_FILE = "manifest.json"


@dataclass
class PackBuildResult:
    pack: DefencePack
    created: bool


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _json_bytes(data) -> bytes:
    return json.dumps(data, indent=2, sort_keys=True).encode("utf-8")


def _action_snapshot(db: Session, document: Document) -> list[dict]:
    rows = db.scalars(
        select(Action)
        .where(Action.document_id == document.id)
        .where(Action.is_suppressed.is_(False))
        .order_by(Action.reference_number.asc(), Action.created_at.asc())
    ).all()
    return [
        {
            "reference_number": action.reference_number,
            "title": action.title,
            "priority": action.priority.value,
            "status": action.status.value,
            "source_type": action.source_type.value,
            "owner": action.owner.full_name if action.owner else None,
            "target_date": _iso(action.target_date),
            "created_at": _iso(action.created_at),
            "closed_at": _iso(action.closed_at),
        }
        for action in rows
    ]


def _evidence_index(items: list[EvidenceItem]) -> list[dict]:
    return [
        {
            "file_name": item.file_name,
            "file_type": item.file_type,
            "size_bytes": item.size_bytes,
            "uploaded_at": _iso(item.uploaded_at),
            "caption": item.caption,
        }
        for item in items
    ]


def _summary_files(summary: ChangeSummary | None) -> dict[str, bytes]:
    if summary is None or summary.is_initial_issue:
        return {"change_summary.txt": (INITIAL_ISSUE_TEXT + "\n").encode("utf-8")}
    return {
        "change_summary.md": (summary.summary_markdown or "").encode("utf-8"),
        "change_summary.json": _json_bytes(
            {
                "version_number": summary.version_number,
                "previous_document_id": str(summary.previous_document_id),
                "new_actions_count": summary.new_actions_count,
                "closed_actions_count": summary.closed_actions_count,
                "reopened_actions_count": summary.reopened_actions_count,
                "outstanding_actions_count": summary.outstanding_actions_count,
                "new_actions": summary.new_actions or [],
                "closed_actions": summary.closed_actions or [],
                "has_material_changes": summary.has_material_changes,
                "generated_at": _iso(summary.generated_at),
            }
        ),
    }


def build_zip(files: dict[str, bytes], timestamp: datetime) -> bytes:
    """Zip ``files`` in name order with every entry stamped ``timestamp``."""
    buffer = io.BytesIO()
    date_time = timestamp.timetuple()[:6]
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as bundle:
        for name in sorted(files):
            info = zipfile.ZipInfo(name, date_time=date_time)
            info.compress_type = zipfile.ZIP_DEFLATED
            info.external_attr = 0o644 << 16
            bundle.writestr(info, files[name])
    return buffer.getvalue()


def _discard_bundle(bucket: str, bundle_path: str) -> None:
    try:
        storage.delete_object(bucket, bundle_path)
    except StorageError:
        logger.exception("Failed to remove orphaned bundle %s", bundle_path)


class DefencePacks(ListResponseMixin):
    @staticmethod
    def build(
        db: Session,
        document_id: str,
        user_id: str | None = None,
        artifact_source: ArtifactSource | None = None,
        evidence_provider: EvidenceProvider | None = None,
    ) -> PackBuildResult:
        document = get_document_or_404(db, document_id)
        existing = DefencePacks._for_document(db, document.id)
        if existing is not None:
            logger.info("Defence pack %s already exists for %s", existing.id, document.id)
            return PackBuildResult(pack=existing, created=False)

        if document.issue_status != IssueStatus.issued:
            raise DocumentNotIssued(
                f"Document {document.id} is {document.issue_status.value}"
            )
        if not document.rendered_artifact_key:
            raise RenderedArtifactMissing(
                f"Document {document.id} has no rendered artifact"
            )

        artifact_source = artifact_source or StoredArtifactSource()
        evidence_provider = evidence_provider or AttachmentEvidenceProvider()
        pack_id = uuid.uuid4()
        created_at = datetime.now(timezone.utc)
        try:
            artifact = artifact_source.fetch(document)
            evidence = evidence_provider.list_evidence(db, document.id)
        except Exception as e:
            logger.exception("Failed to collect defence pack inputs for %s", document.id)
            raise DependencyUnavailable(
                f"Could not collect defence pack inputs: {e}"
            ) from e

        summary = db.scalars(
            select(ChangeSummary).where(ChangeSummary.document_id == document.id)
        ).first()
        actions = _action_snapshot(db, document)
        files = {
            ARTIFACT_FILE: artifact,
            "actions_snapshot.json": _json_bytes(actions),
            "evidence_index.json": _json_bytes(_evidence_index(evidence)),
            **_summary_files(summary),
        }
        manifest = {
            "pack_id": str(pack_id),
            "document_id": str(document.id),
            "base_document_id": str(document.base_document_id),
            "version_number": document.version_number,
            "title": document.title,
            "document_type": document.document_type,
            "issue_date": _iso(document.issue_date),
            "artifact_checksum": document.rendered_artifact_checksum,
            "files": sorted([*files, MANIFEST_FILE]),
            "action_count": len(actions),
            "evidence_count": len(evidence),
            "pack_created_at": created_at.isoformat(),
        }
        files[MANIFEST_FILE] = _json_bytes(manifest)
        bundle = build_zip(files, created_at)
        checksum = hashlib.sha256(bundle).hexdigest()
        bucket = settings.s3_defence_pack_bucket
        bundle_path = f"{settings.defence_pack_prefix}/{document.id}/{pack_id}.zip"
        try:
            storage.put_object(bucket, bundle_path, bundle, "application/zip")
        except StorageError as e:
            logger.exception("Failed to upload defence pack for %s", document.id)
            raise DependencyUnavailable(f"Could not store defence pack: {e}") from e

        pack = DefencePack(
            id=pack_id,
            document_id=document.id,
            base_document_id=document.base_document_id,
            version_number=document.version_number,
            bundle_path=bundle_path,
            checksum=checksum,
            size_bytes=len(bundle),
            manifest=manifest,
            created_by=coerce_uuid(user_id),
            created_at=created_at,
        )
        try:
            with db.begin_nested():
                db.add(pack)
        except IntegrityError:
            logger.warning(
                "Concurrent defence pack build for %s; keeping the stored pack",
                document.id,
            )
            _discard_bundle(bucket, bundle_path)
            winner = DefencePacks._for_document(db, document.id)
            if winner is None:
                raise
            db.commit()
            return PackBuildResult(pack=winner, created=False)
        except Exception:
            logger.exception("Failed to record defence pack for %s", document.id)
            _discard_bundle(bucket, bundle_path)
            raise
        try:
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to commit defence pack for %s", document.id)
            _discard_bundle(bucket, bundle_path)
            raise
        db.refresh(pack)

        DEFENCE_PACKS_BUILT.inc()
        logger.info(
            "Built defence pack %s for document %s (%d bytes, sha256 %s)",
            pack.id,
            document.id,
            pack.size_bytes,
            pack.checksum,
        )
        publish_event(
            EventType.defence_pack_created,
            entity_type="defence_pack",
            entity_id=pack.id,
            actor_id=pack.created_by,
            document_id=document.id,
            payload={"checksum": pack.checksum, "bundle_path": pack.bundle_path},
        )
        return PackBuildResult(pack=pack, created=True)

    @staticmethod
    def _for_document(db: Session, document_id: uuid.UUID) -> DefencePack | None:
        return db.scalars(
            select(DefencePack).where(DefencePack.document_id == document_id)
        ).first()

    @staticmethod
    def get(db: Session, pack_id: str) -> DefencePack:
        pack = db.get(DefencePack, coerce_uuid(pack_id))
        if not pack:
            raise NotFound(f"Defence pack {pack_id} not found")
        return pack

    @staticmethod
    def get_for_document(db: Session, document_id: str) -> DefencePack:
        pack = DefencePacks._for_document(db, coerce_uuid(document_id))
        if not pack:
            raise NotFound(f"No defence pack for document {document_id}")
        return pack

    @staticmethod
    def list(
        db: Session, base_document_id: str | None, limit: int, offset: int
    ) -> list[DefencePack]:  # type: ignore[override]
        stmt = select(DefencePack).order_by(DefencePack.created_at.desc())
        if base_document_id is not None:
            stmt = stmt.where(
                DefencePack.base_document_id == coerce_uuid(base_document_id)
            )
        return db.scalars(apply_pagination(stmt, limit, offset)).all()

    @staticmethod
    def download_url(db: Session, pack_id: str) -> str:
        pack = DefencePacks.get(db, pack_id)
        try:
            return storage.generate_download_url(
                settings.s3_defence_pack_bucket, pack.bundle_path
            )
        except StorageError as e:
            logger.exception("Failed to sign download URL for pack %s", pack.id)
            raise DependencyUnavailable(str(e)) from e


defence_packs = DefencePacks()
