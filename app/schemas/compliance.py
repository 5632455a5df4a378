from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.compliance import (
    ActionPriority,
    ActionSourceType,
    ActionStatus,
    IssueStatus,
)


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------


class DocumentBase(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    document_type: str = Field(min_length=1, max_length=80)
    description: str | None = None


class DocumentCreate(DocumentBase):
    created_by: UUID


class DocumentUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=500)
    document_type: str | None = Field(default=None, min_length=1, max_length=80)
    description: str | None = None
    executive_summary: str | None = None
    executive_summary_author: str | None = None
    executive_summary_mode: str | None = Field(default=None, max_length=20)


class DocumentRead(DocumentBase):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    base_document_id: UUID
    version_number: int
    issue_status: IssueStatus
    issue_date: datetime | None = None
    issued_by: UUID | None = None
    superseded_by_document_id: UUID | None = None
    superseded_date: datetime | None = None
    executive_summary: str | None = None
    executive_summary_author: str | None = None
    executive_summary_mode: str
    rendered_artifact_key: str | None = None
    rendered_artifact_checksum: str | None = None
    rendered_artifact_size_bytes: int | None = None
    rendered_artifact_at: datetime | None = None
    created_by: UUID
    created_at: datetime
    updated_at: datetime


class FamilyHealthRead(BaseModel):
    base_document_id: UUID
    total_versions: int
    draft_count: int
    issued_count: int
    superseded_count: int
    current_issued_id: UUID | None = None
    current_draft_id: UUID | None = None
    health_status: str


# ---------------------------------------------------------------------------
# Content modules
# ---------------------------------------------------------------------------


class ModuleSave(BaseModel):
    payload: dict[str, Any] | None = None
    outcome: str | None = Field(default=None, max_length=80)


class ModuleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    document_id: UUID
    module_key: str
    payload: dict[str, Any] | None = None
    outcome: str | None = None
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Issue / versioning
# ---------------------------------------------------------------------------


class IssueRequest(BaseModel):
    user_id: UUID


class IssueResult(BaseModel):
    document_id: UUID
    issued_at: datetime
    superseded_prior_id: UUID | None = None


class NewVersionRequest(BaseModel):
    user_id: UUID


class NewVersionResult(BaseModel):
    new_document_id: UUID
    version_number: int


class RenderedArtifactCreate(BaseModel):
    storage_key: str = Field(min_length=1, max_length=1024)
    checksum: str = Field(min_length=64, max_length=64)
    size_bytes: int = Field(ge=0)


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class ActionCreate(BaseModel):
    document_id: UUID
    title: str = Field(min_length=1, max_length=500)
    recommended_action: str | None = None
    observation: str | None = None
    hazard: str | None = None
    module_key: str | None = Field(default=None, max_length=80)
    priority: str = "medium"
    status: str = "open"
    owner_id: UUID | None = None
    target_date: datetime | None = None
    created_by: UUID | None = None


class ActionUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=500)
    recommended_action: str | None = None
    observation: str | None = None
    hazard: str | None = None
    priority: str | None = None
    status: str | None = None
    owner_id: UUID | None = None
    target_date: datetime | None = None


class ActionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    document_id: UUID
    source_document_id: UUID
    origin_action_id: UUID | None = None
    carried_from_document_id: UUID | None = None
    reference_number: str | None = None
    title: str
    recommended_action: str | None = None
    observation: str | None = None
    hazard: str | None = None
    module_key: str | None = None
    priority: ActionPriority
    status: ActionStatus
    source_type: ActionSourceType
    library_id: UUID | None = None
    trigger_key: str | None = None
    trigger_context: dict[str, Any] | None = None
    is_suppressed: bool
    owner_id: UUID | None = None
    target_date: datetime | None = None
    closed_at: datetime | None = None
    closed_by: UUID | None = None
    closure_note: str | None = None
    reopened_at: datetime | None = None
    reopened_by: UUID | None = None
    reopen_note: str | None = None
    created_by: UUID | None = None
    created_at: datetime
    updated_at: datetime


class CloseActionRequest(BaseModel):
    user_id: UUID
    notes: str | None = None


class CloseActionResult(BaseModel):
    closed_action_ids: list[UUID]
    lineage_root_id: UUID
    already_closed: bool = False


class ReopenActionRequest(BaseModel):
    user_id: UUID
    notes: str | None = None


# ---------------------------------------------------------------------------
# Recommendation rules / regeneration
# ---------------------------------------------------------------------------


class RatingInput(BaseModel):
    module_key: str = Field(min_length=1, max_length=80)
    factor_key: str | None = Field(default=None, max_length=80)
    rating: int


class RegenerateRequest(BaseModel):
    ratings: list[RatingInput]
    user_id: UUID | None = None


class RegenerateResult(BaseModel):
    created: list[UUID]
    refreshed: list[UUID]
    skipped: int


class RecommendationRuleBase(BaseModel):
    source_module_key: str = Field(min_length=1, max_length=80)
    source_factor_key: str | None = Field(default=None, max_length=80)
    trigger_rating_threshold: int = Field(default=2, ge=1, le=2)
    default_title: str = Field(min_length=1, max_length=500)
    default_observation: str | None = None
    default_action: str | None = None
    default_hazard: str | None = None
    default_priority: str = "medium"
    is_active: bool = True


class RecommendationRuleCreate(RecommendationRuleBase):
    pass


class RecommendationRuleUpdate(BaseModel):
    trigger_rating_threshold: int | None = Field(default=None, ge=1, le=2)
    default_title: str | None = Field(default=None, min_length=1, max_length=500)
    default_observation: str | None = None
    default_action: str | None = None
    default_hazard: str | None = None
    default_priority: str | None = None
    is_active: bool | None = None


class RecommendationRuleRead(RecommendationRuleBase):
    model_config = ConfigDict(from_attributes=True)

    default_priority: ActionPriority
    id: UUID
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Evidence
# ---------------------------------------------------------------------------


class AttachmentCreate(BaseModel):
    file_name: str = Field(min_length=1, max_length=500)
    file_type: str = Field(min_length=1, max_length=255)
    size_bytes: int = Field(default=0, ge=0)
    storage_key: str | None = Field(default=None, max_length=1024)
    caption: str | None = None
    action_id: UUID | None = None
    uploaded_by: UUID | None = None


class AttachmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    document_id: UUID
    base_document_id: UUID
    action_id: UUID | None = None
    file_name: str
    file_type: str
    size_bytes: int
    storage_key: str
    caption: str | None = None
    uploaded_by: UUID | None = None
    uploaded_at: datetime


# ---------------------------------------------------------------------------
# Change summary / defence pack
# ---------------------------------------------------------------------------


class ChangeSummaryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    document_id: UUID
    base_document_id: UUID
    previous_document_id: UUID | None = None
    version_number: int
    new_actions_count: int
    closed_actions_count: int
    reopened_actions_count: int
    outstanding_actions_count: int
    new_actions: list[dict[str, Any]] | None = None
    closed_actions: list[dict[str, Any]] | None = None
    has_material_changes: bool
    summary_markdown: str | None = None
    generated_by: UUID | None = None
    generated_at: datetime


class DefencePackBuildRequest(BaseModel):
    user_id: UUID | None = None


class DefencePackRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    document_id: UUID
    base_document_id: UUID
    version_number: int
    bundle_path: str
    checksum: str
    size_bytes: int
    manifest: dict[str, Any]
    created_by: UUID | None = None
    created_at: datetime


class DownloadURLResponse(BaseModel):
    download_url: str


class ValidationResultRead(BaseModel):
    valid: bool
    errors: list[str]
