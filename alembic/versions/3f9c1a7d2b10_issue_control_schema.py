"""issue control schema

Revision ID: 3f9c1a7d2b10
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "3f9c1a7d2b10"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # --- Enums ---
    bind = op.get_bind()
    issuestatus = postgresql.ENUM(
        "draft", "issued", "superseded", name="issuestatus", create_type=False
    )
    actionstatus = postgresql.ENUM(
        "open",
        "in_progress",
        "deferred",
        "closed",
        "not_applicable",
        name="actionstatus",
        create_type=False,
    )
    actionsourcetype = postgresql.ENUM(
        "auto", "manual", name="actionsourcetype", create_type=False
    )
    actionpriority = postgresql.ENUM(
        "critical", "high", "medium", "low", name="actionpriority", create_type=False
    )
    for enum in (issuestatus, actionstatus, actionsourcetype, actionpriority):
        postgresql.ENUM(*enum.enums, name=enum.name).create(bind, checkfirst=True)

    # --- Identity + audit ---
    op.create_table(
        "people",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("first_name", sa.String(length=80), nullable=False),
        sa.Column("last_name", sa.String(length=80), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_people_email"),
    )

    op.create_table(
        "audit_events",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("event_type", sa.String(length=80), nullable=False),
        sa.Column("entity_type", sa.String(length=80), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("actor_id", sa.UUID(), nullable=True),
        sa.Column("document_id", sa.UUID(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_events_document_id", "audit_events", ["document_id"])
    op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"])

    # --- Documents (one row per version) ---
    op.create_table(
        "documents",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("base_document_id", sa.UUID(), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("document_type", sa.String(length=80), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("issue_status", issuestatus, nullable=False),
        sa.Column("issue_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("issued_by", sa.UUID(), nullable=True),
        sa.Column("superseded_by_document_id", sa.UUID(), nullable=True),
        sa.Column("superseded_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("executive_summary", sa.Text(), nullable=True),
        sa.Column("executive_summary_author", sa.Text(), nullable=True),
        sa.Column("executive_summary_mode", sa.String(length=20), nullable=False),
        sa.Column("rendered_artifact_key", sa.String(length=1024), nullable=True),
        sa.Column("rendered_artifact_checksum", sa.String(length=64), nullable=True),
        sa.Column("rendered_artifact_size_bytes", sa.BigInteger(), nullable=True),
        sa.Column("rendered_artifact_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.UUID(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("version_number >= 1", name="ck_documents_version_positive"),
        sa.ForeignKeyConstraint(["issued_by"], ["people.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["people.id"]),
        sa.ForeignKeyConstraint(["superseded_by_document_id"], ["documents.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "base_document_id", "version_number", name="uq_documents_family_version"
        ),
    )
    op.create_index(
        "ix_documents_base_document_id", "documents", ["base_document_id"]
    )
    op.create_index("ix_documents_issue_status", "documents", ["issue_status"])
    # At most one draft and one issued version per family
    op.create_index(
        "uq_documents_family_draft",
        "documents",
        ["base_document_id"],
        unique=True,
        postgresql_where=sa.text("issue_status = 'draft'"),
        sqlite_where=sa.text("issue_status = 'draft'"),
    )
    op.create_index(
        "uq_documents_family_issued",
        "documents",
        ["base_document_id"],
        unique=True,
        postgresql_where=sa.text("issue_status = 'issued'"),
        sqlite_where=sa.text("issue_status = 'issued'"),
    )

    op.create_table(
        "module_instances",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("document_id", sa.UUID(), nullable=False),
        sa.Column("module_key", sa.String(length=80), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("outcome", sa.String(length=80), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "document_id", "module_key", name="uq_module_instances_doc_module"
        ),
    )
    op.create_index(
        "ix_module_instances_document_id", "module_instances", ["document_id"]
    )

    # --- Recommendation library ---
    op.create_table(
        "recommendation_rules",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("source_module_key", sa.String(length=80), nullable=False),
        sa.Column("source_factor_key", sa.String(length=80), nullable=True),
        sa.Column("trigger_rating_threshold", sa.Integer(), nullable=False),
        sa.Column("default_title", sa.String(length=500), nullable=False),
        sa.Column("default_observation", sa.Text(), nullable=True),
        sa.Column("default_action", sa.Text(), nullable=True),
        sa.Column("default_hazard", sa.Text(), nullable=True),
        sa.Column("default_priority", actionpriority, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "trigger_rating_threshold IN (1, 2)",
            name="ck_recommendation_rules_threshold",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_recommendation_rules_module", "recommendation_rules", ["source_module_key"]
    )

    # --- Actions (self-referential lineage FK) ---
    op.create_table(
        "actions",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("document_id", sa.UUID(), nullable=False),
        sa.Column("source_document_id", sa.UUID(), nullable=False),
        sa.Column("origin_action_id", sa.UUID(), nullable=True),
        sa.Column("carried_from_document_id", sa.UUID(), nullable=True),
        sa.Column("reference_number", sa.String(length=20), nullable=True),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("recommended_action", sa.Text(), nullable=True),
        sa.Column("observation", sa.Text(), nullable=True),
        sa.Column("hazard", sa.Text(), nullable=True),
        sa.Column("module_key", sa.String(length=80), nullable=True),
        sa.Column("priority", actionpriority, nullable=False),
        sa.Column("status", actionstatus, nullable=False),
        sa.Column("source_type", actionsourcetype, nullable=False),
        sa.Column("library_id", sa.UUID(), nullable=True),
        sa.Column("trigger_key", sa.String(length=400), nullable=True),
        sa.Column("trigger_context", sa.JSON(), nullable=True),
        sa.Column("is_suppressed", sa.Boolean(), nullable=False),
        sa.Column("owner_id", sa.UUID(), nullable=True),
        sa.Column("target_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_by", sa.UUID(), nullable=True),
        sa.Column("closure_note", sa.Text(), nullable=True),
        sa.Column("reopened_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reopened_by", sa.UUID(), nullable=True),
        sa.Column("reopen_note", sa.Text(), nullable=True),
        sa.Column("created_by", sa.UUID(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"]),
        sa.ForeignKeyConstraint(["source_document_id"], ["documents.id"]),
        sa.ForeignKeyConstraint(["carried_from_document_id"], ["documents.id"]),
        sa.ForeignKeyConstraint(["origin_action_id"], ["actions.id"]),
        sa.ForeignKeyConstraint(["library_id"], ["recommendation_rules.id"]),
        sa.ForeignKeyConstraint(["owner_id"], ["people.id"]),
        sa.ForeignKeyConstraint(["closed_by"], ["people.id"]),
        sa.ForeignKeyConstraint(["reopened_by"], ["people.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["people.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_id", "trigger_key", name="uq_actions_doc_trigger"),
    )
    op.create_index("ix_actions_document_id", "actions", ["document_id"])
    op.create_index("ix_actions_origin_action_id", "actions", ["origin_action_id"])
    op.create_index("ix_actions_status", "actions", ["status"])

    # --- Evidence ---
    op.create_table(
        "attachments",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("document_id", sa.UUID(), nullable=False),
        sa.Column("base_document_id", sa.UUID(), nullable=False),
        sa.Column("action_id", sa.UUID(), nullable=True),
        sa.Column("file_name", sa.String(length=500), nullable=False),
        sa.Column("file_type", sa.String(length=255), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("storage_key", sa.String(length=1024), nullable=False),
        sa.Column("caption", sa.Text(), nullable=True),
        sa.Column("uploaded_by", sa.UUID(), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"]),
        sa.ForeignKeyConstraint(["action_id"], ["actions.id"]),
        sa.ForeignKeyConstraint(["uploaded_by"], ["people.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_attachments_document_id", "attachments", ["document_id"])

    # --- Immutable records ---
    op.create_table(
        "change_summaries",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("document_id", sa.UUID(), nullable=False),
        sa.Column("base_document_id", sa.UUID(), nullable=False),
        sa.Column("previous_document_id", sa.UUID(), nullable=True),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("new_actions_count", sa.Integer(), nullable=True),
        sa.Column("closed_actions_count", sa.Integer(), nullable=True),
        sa.Column("reopened_actions_count", sa.Integer(), nullable=True),
        sa.Column("outstanding_actions_count", sa.Integer(), nullable=True),
        sa.Column("new_actions", sa.JSON(), nullable=True),
        sa.Column("closed_actions", sa.JSON(), nullable=True),
        sa.Column("has_material_changes", sa.Boolean(), nullable=True),
        sa.Column("summary_markdown", sa.Text(), nullable=True),
        sa.Column("generated_by", sa.UUID(), nullable=True),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"]),
        sa.ForeignKeyConstraint(["previous_document_id"], ["documents.id"]),
        sa.ForeignKeyConstraint(["generated_by"], ["people.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_id", name="uq_change_summaries_document"),
    )

    op.create_table(
        "defence_packs",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("document_id", sa.UUID(), nullable=False),
        sa.Column("base_document_id", sa.UUID(), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("bundle_path", sa.String(length=1024), nullable=False),
        sa.Column("checksum", sa.String(length=64), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("manifest", sa.JSON(), nullable=False),
        sa.Column("created_by", sa.UUID(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["people.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_id", name="uq_defence_packs_document"),
    )
    op.create_index(
        "ix_defence_packs_base_document_id", "defence_packs", ["base_document_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_defence_packs_base_document_id", table_name="defence_packs")
    op.drop_table("defence_packs")
    op.drop_table("change_summaries")
    op.drop_index("ix_attachments_document_id", table_name="attachments")
    op.drop_table("attachments")
    op.drop_index("ix_actions_status", table_name="actions")
    op.drop_index("ix_actions_origin_action_id", table_name="actions")
    op.drop_index("ix_actions_document_id", table_name="actions")
    op.drop_table("actions")
    op.drop_index("ix_recommendation_rules_module", table_name="recommendation_rules")
    op.drop_table("recommendation_rules")
    op.drop_index("ix_module_instances_document_id", table_name="module_instances")
    op.drop_table("module_instances")
    op.drop_index("uq_documents_family_issued", table_name="documents")
    op.drop_index("uq_documents_family_draft", table_name="documents")
    op.drop_index("ix_documents_issue_status", table_name="documents")
    op.drop_index("ix_documents_base_document_id", table_name="documents")
    op.drop_table("documents")
    op.drop_index("ix_audit_events_event_type", table_name="audit_events")
    op.drop_index("ix_audit_events_document_id", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_table("people")

    bind = op.get_bind()
    for name in ("actionpriority", "actionsourcetype", "actionstatus", "issuestatus"):
        sa.Enum(name=name).drop(bind, checkfirst=True)
