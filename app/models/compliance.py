import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class IssueStatus(enum.Enum):
    draft = "draft"
    issued = "issued"
    superseded = "superseded"


class ActionStatus(enum.Enum):
    open = "open"
    in_progress = "in_progress"
    deferred = "deferred"
    closed = "closed"
    not_applicable = "not_applicable"


class ActionSourceType(enum.Enum):
    auto = "auto"
    manual = "manual"


class ActionPriority(enum.Enum):
    critical = "critical"
    high = "high"
    medium = "medium"
    low = "low"


LOCKED_ISSUE_STATUSES = frozenset({IssueStatus.issued, IssueStatus.superseded})
CARRY_FORWARD_STATUSES = frozenset(
    {ActionStatus.open, ActionStatus.in_progress, ActionStatus.deferred}
)


# ---------------------------------------------------------------------------
# Documents: one row per version, family linked by base_document_id
# ---------------------------------------------------------------------------


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint(
            "base_document_id",
            "version_number",
            name="uq_documents_family_version",
        ),
        Index("ix_documents_base_document_id", "base_document_id"),
        Index("ix_documents_issue_status", "issue_status"),
        # At most one draft per family
        Index(
            "uq_documents_family_draft",
            "base_document_id",
            unique=True,
            postgresql_where=text("issue_status = 'draft'"),
            sqlite_where=text("issue_status = 'draft'"),
        ),
        # At most one current issued version per family
        Index(
            "uq_documents_family_issued",
            "base_document_id",
            unique=True,
            postgresql_where=text("issue_status = 'issued'"),
            sqlite_where=text("issue_status = 'issued'"),
        ),
        CheckConstraint("version_number >= 1", name="ck_documents_version_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    base_document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False
    )
    version_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    document_type: Mapped[str] = mapped_column(String(80), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)

    issue_status: Mapped[IssueStatus] = mapped_column(
        Enum(IssueStatus),
        nullable=False,
        default=IssueStatus.draft,
        active_history=True,
    )
    issue_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    issued_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id")
    )
    superseded_by_document_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("documents.id")
    )
    superseded_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Derived per version; reset on every new version
    executive_summary: Mapped[str | None] = mapped_column(Text)
    executive_summary_author: Mapped[str | None] = mapped_column(Text)
    executive_summary_mode: Mapped[str] = mapped_column(
        String(20), nullable=False, default="ai"
    )

    # Written once by the render service after issue
    rendered_artifact_key: Mapped[str | None] = mapped_column(
        String(1024), active_history=True
    )
    rendered_artifact_checksum: Mapped[str | None] = mapped_column(String(64))
    rendered_artifact_size_bytes: Mapped[int | None] = mapped_column(BigInteger)
    rendered_artifact_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )

    created_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    modules = relationship(
        "ModuleInstance",
        back_populates="document",
        order_by="ModuleInstance.module_key",
    )
    actions = relationship(
        "Action",
        foreign_keys="Action.document_id",
        back_populates="document",
        order_by="Action.created_at",
    )
    attachments = relationship("Attachment", back_populates="document")
    creator = relationship("Person", foreign_keys=[created_by])
    issuer = relationship("Person", foreign_keys=[issued_by])
    superseded_by = relationship(
        "Document", remote_side="Document.id", foreign_keys=[superseded_by_document_id]
    )

    @property
    def is_locked(self) -> bool:
        return self.issue_status in LOCKED_ISSUE_STATUSES


# Fields that may still change on an issued/superseded row
DOCUMENT_TRANSITION_FIELDS = frozenset(
    {
        "issue_status",
        "issue_date",
        "issued_by",
        "superseded_by_document_id",
        "superseded_date",
        "updated_at",
    }
)
DOCUMENT_ARTIFACT_FIELDS = frozenset(
    {
        "rendered_artifact_key",
        "rendered_artifact_checksum",
        "rendered_artifact_size_bytes",
        "rendered_artifact_at",
    }
)


# ---------------------------------------------------------------------------
# Content modules (assessment sections written by the external forms)
# ---------------------------------------------------------------------------


class ModuleInstance(Base):
    __tablename__ = "module_instances"
    __table_args__ = (
        UniqueConstraint(
            "document_id", "module_key", name="uq_module_instances_doc_module"
        ),
        Index("ix_module_instances_document_id", "document_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("documents.id"), nullable=False
    )
    module_key: Mapped[str] = mapped_column(String(80), nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSON)
    outcome: Mapped[str | None] = mapped_column(String(80))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    document = relationship("Document", back_populates="modules")

    @property
    def is_populated(self) -> bool:
        return bool(self.payload)


# ---------------------------------------------------------------------------
# Actions / recommendations
# ---------------------------------------------------------------------------


class Action(Base):
    __tablename__ = "actions"
    __table_args__ = (
        UniqueConstraint("document_id", "trigger_key", name="uq_actions_doc_trigger"),
        Index("ix_actions_document_id", "document_id"),
        Index("ix_actions_origin_action_id", "origin_action_id"),
        Index("ix_actions_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("documents.id"), nullable=False
    )
    # Version that first raised this logical item; stable across carry-forwards
    source_document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("documents.id"), nullable=False
    )
    # Lineage root shared by every carried copy; null on the root itself
    origin_action_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("actions.id")
    )
    carried_from_document_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("documents.id")
    )
    reference_number: Mapped[str | None] = mapped_column(String(20))

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    recommended_action: Mapped[str | None] = mapped_column(Text)
    observation: Mapped[str | None] = mapped_column(Text)
    hazard: Mapped[str | None] = mapped_column(Text)
    module_key: Mapped[str | None] = mapped_column(String(80))
    priority: Mapped[ActionPriority] = mapped_column(
        Enum(ActionPriority), nullable=False, default=ActionPriority.medium
    )
    status: Mapped[ActionStatus] = mapped_column(
        Enum(ActionStatus), nullable=False, default=ActionStatus.open
    )

    source_type: Mapped[ActionSourceType] = mapped_column(
        Enum(ActionSourceType), nullable=False, default=ActionSourceType.manual
    )
    library_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("recommendation_rules.id")
    )
    trigger_key: Mapped[str | None] = mapped_column(String(400))
    trigger_context: Mapped[dict | None] = mapped_column(JSON)
    is_suppressed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    owner_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id")
    )
    target_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    closed_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id")
    )
    closure_note: Mapped[str | None] = mapped_column(Text)
    reopened_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reopened_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id")
    )
    reopen_note: Mapped[str | None] = mapped_column(Text)

    created_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    document = relationship(
        "Document", foreign_keys=[document_id], back_populates="actions"
    )
    owner = relationship("Person", foreign_keys=[owner_id])
    rule = relationship("RecommendationRule")

    @property
    def lineage_root_id(self) -> uuid.UUID:
        return self.origin_action_id or self.id


# Closure bookkeeping stays writable on actions of locked documents
ACTION_CLOSURE_FIELDS = frozenset(
    {"status", "closed_at", "closed_by", "closure_note", "updated_at"}
)


# ---------------------------------------------------------------------------
# Recommendation library (trigger rules)
# ---------------------------------------------------------------------------


class RecommendationRule(Base):
    __tablename__ = "recommendation_rules"
    __table_args__ = (
        CheckConstraint(
            "trigger_rating_threshold IN (1, 2)",
            name="ck_recommendation_rules_threshold",
        ),
        Index("ix_recommendation_rules_module", "source_module_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    source_module_key: Mapped[str] = mapped_column(String(80), nullable=False)
    source_factor_key: Mapped[str | None] = mapped_column(String(80))
    trigger_rating_threshold: Mapped[int] = mapped_column(
        Integer, nullable=False, default=2
    )
    default_title: Mapped[str] = mapped_column(String(500), nullable=False)
    default_observation: Mapped[str | None] = mapped_column(Text)
    default_action: Mapped[str | None] = mapped_column(Text)
    default_hazard: Mapped[str | None] = mapped_column(Text)
    default_priority: Mapped[ActionPriority] = mapped_column(
        Enum(ActionPriority), nullable=False, default=ActionPriority.medium
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


# ---------------------------------------------------------------------------
# Evidence metadata (files live in object storage)
# ---------------------------------------------------------------------------


class Attachment(Base):
    __tablename__ = "attachments"
    __table_args__ = (Index("ix_attachments_document_id", "document_id"),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("documents.id"), nullable=False
    )
    base_document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False
    )
    action_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("actions.id")
    )
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    file_type: Mapped[str] = mapped_column(String(255), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    storage_key: Mapped[str] = mapped_column(String(1024), nullable=False)
    caption: Mapped[str | None] = mapped_column(Text)
    uploaded_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id")
    )
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )

    document = relationship("Document", back_populates="attachments")


# ---------------------------------------------------------------------------
# Change summaries (one per issued version)
# ---------------------------------------------------------------------------


class ChangeSummary(Base):
    __tablename__ = "change_summaries"
    __table_args__ = (
        UniqueConstraint("document_id", name="uq_change_summaries_document"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("documents.id"), nullable=False
    )
    base_document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False
    )
    previous_document_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("documents.id")
    )
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    new_actions_count: Mapped[int] = mapped_column(Integer, default=0)
    closed_actions_count: Mapped[int] = mapped_column(Integer, default=0)
    reopened_actions_count: Mapped[int] = mapped_column(Integer, default=0)
    outstanding_actions_count: Mapped[int] = mapped_column(Integer, default=0)
    new_actions: Mapped[list | None] = mapped_column(JSON)
    closed_actions: Mapped[list | None] = mapped_column(JSON)
    has_material_changes: Mapped[bool] = mapped_column(Boolean, default=False)
    summary_markdown: Mapped[str | None] = mapped_column(Text)
    generated_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id")
    )
    generated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
    # Immutable, no updated_at

    @property
    def is_initial_issue(self) -> bool:
        return self.previous_document_id is None


# ---------------------------------------------------------------------------
# Defence packs (immutable, no updated_at)
# ---------------------------------------------------------------------------


class DefencePack(Base):
    __tablename__ = "defence_packs"
    __table_args__ = (
        UniqueConstraint("document_id", name="uq_defence_packs_document"),
        Index("ix_defence_packs_base_document_id", "base_document_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("documents.id"), nullable=False
    )
    base_document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False
    )
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    bundle_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    manifest: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )

    document = relationship("Document")
