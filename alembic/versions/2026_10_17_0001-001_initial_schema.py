"""initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-17

All 14 tables as defined in app/models/database_models.py:
tenants, profiles, tenant_settings, knowledge_sources, knowledge_chunks,
voice_profiles, newsletters, newsletter_stats, api_keys, api_key_usage,
webhooks, webhook_deliveries, team_invitations, audit_logs.
"""
from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None

VECTOR_DIM = 1536


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=nullable)


def _tenant_fk(ondelete: str = "CASCADE", nullable: bool = False) -> sa.Column:
    return sa.Column(
        "tenant_id", sa.Integer, sa.ForeignKey("tenants.id", ondelete=ondelete), nullable=nullable, index=True
    )


def upgrade() -> None:
    # pgvector extension
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    # Enums are stored as VARCHAR(32) (native_enum=False on the models)

    # ── tenants ───────────────────────────────────────────────────────────
    op.create_table(
        "tenants",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=False, unique=True, index=True),
        sa.Column("subscription_tier", sa.String(32), nullable=False, server_default="free"),
        sa.Column("max_sources", sa.Integer, nullable=False, server_default="10"),
        sa.Column("max_newsletters_per_month", sa.Integer, nullable=False, server_default="5"),
        sa.Column("max_ai_generations_per_month", sa.Integer, nullable=False, server_default="50"),
        _timestamp("created_at"),
    )

    # ── profiles ──────────────────────────────────────────────────────────
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(255), primary_key=True),
        _tenant_fk(),
        sa.Column("email", sa.String(255), nullable=False, index=True),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("role", sa.String(32), nullable=False, server_default="editor"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
    )

    # ── tenant_settings ───────────────────────────────────────────────────
    op.create_table(
        "tenant_settings",
        sa.Column("tenant_id", sa.Integer, sa.ForeignKey("tenants.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("openai_api_key", sa.String(255), nullable=True),
        sa.Column("anthropic_api_key", sa.String(255), nullable=True),
        sa.Column("esp_provider", sa.String(32), nullable=False, server_default="sendgrid"),
        sa.Column("sendgrid_api_key", sa.String(255), nullable=True),
        sa.Column("mailchimp_api_key", sa.String(255), nullable=True),
        sa.Column("convertkit_api_key", sa.String(255), nullable=True),
        sa.Column("sender_email", sa.String(255), nullable=True),
        sa.Column("company_name", sa.String(255), nullable=True),
        _timestamp("updated_at"),
    )

    # ── knowledge_sources ─────────────────────────────────────────────────
    op.create_table(
        "knowledge_sources",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        _tenant_fk(),
        sa.Column("source_type", sa.String(32), nullable=False),
        sa.Column("title", sa.String(512), nullable=True),
        sa.Column("source_uri", sa.Text, nullable=True),
        sa.Column("content", sa.Text, nullable=True),
        sa.Column("file_path", sa.String(1024), nullable=True),
        sa.Column("mime_type", sa.String(255), nullable=True),
        sa.Column("file_size_bytes", sa.Integer, nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending", index=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("chunk_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("token_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    # ── knowledge_chunks ──────────────────────────────────────────────────
    op.create_table(
        "knowledge_chunks",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("source_id", sa.Integer, sa.ForeignKey("knowledge_sources.id", ondelete="CASCADE"), nullable=False, index=True),
        _tenant_fk(),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("chunk_index", sa.Integer, nullable=False),
        sa.Column("token_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("embedding", Vector(VECTOR_DIM), nullable=True),
        sa.Column("embedding_model", sa.String(128), nullable=True),
        sa.Column("metadata_json", sa.JSON, nullable=True),
        _timestamp("created_at"),
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_knowledge_chunks_embedding "
        "ON knowledge_chunks USING hnsw (embedding vector_cosine_ops)"
    )

    # ── voice_profiles ────────────────────────────────────────────────────
    op.create_table(
        "voice_profiles",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        _tenant_fk(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("voice_prompt", sa.Text, nullable=True),
        sa.Column("tone_markers", sa.JSON, nullable=True),
        sa.Column("vocabulary_preferences", sa.JSON, nullable=True),
        sa.Column("is_default", sa.Boolean, nullable=False, server_default=sa.false()),
        _timestamp("created_at"),
    )

    # ── newsletters ───────────────────────────────────────────────────────
    op.create_table(
        "newsletters",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        _tenant_fk(),
        sa.Column("title", sa.String(512), nullable=False),
        sa.Column("subject_line", sa.String(512), nullable=True),
        sa.Column("preview_text", sa.String(512), nullable=True),
        sa.Column("content_html", sa.Text, nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="draft", index=True),
        sa.Column("voice_profile_id", sa.Integer, sa.ForeignKey("voice_profiles.id", ondelete="SET NULL"), nullable=True),
        sa.Column("citations", sa.JSON, nullable=True),
        sa.Column("created_by", sa.String(255), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    # ── newsletter_stats ──────────────────────────────────────────────────
    op.create_table(
        "newsletter_stats",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("newsletter_id", sa.Integer, sa.ForeignKey("newsletters.id", ondelete="CASCADE"), nullable=False, unique=True, index=True),
        sa.Column("recipients", sa.Integer, nullable=False, server_default="0"),
        sa.Column("opens", sa.Integer, nullable=False, server_default="0"),
        sa.Column("unique_opens", sa.Integer, nullable=False, server_default="0"),
        sa.Column("clicks", sa.Integer, nullable=False, server_default="0"),
        sa.Column("unique_clicks", sa.Integer, nullable=False, server_default="0"),
        sa.Column("open_rate", sa.Float, nullable=False, server_default="0"),
        sa.Column("click_rate", sa.Float, nullable=False, server_default="0"),
        _timestamp("updated_at"),
    )

    # ── api_keys ──────────────────────────────────────────────────────────
    op.create_table(
        "api_keys",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        _tenant_fk(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("key_prefix", sa.String(16), nullable=False),
        sa.Column("key_hash", sa.String(64), nullable=False, unique=True, index=True),
        sa.Column("permissions", sa.JSON, nullable=False),
        sa.Column("rate_limit", sa.Integer, nullable=False, server_default="1000"),
        sa.Column("created_by", sa.String(255), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
    )

    # ── api_key_usage ─────────────────────────────────────────────────────
    op.create_table(
        "api_key_usage",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("api_key_id", sa.Integer, sa.ForeignKey("api_keys.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("endpoint", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, index=True),
    )

    # ── webhooks ──────────────────────────────────────────────────────────
    op.create_table(
        "webhooks",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        _tenant_fk(),
        sa.Column("url", sa.Text, nullable=False),
        sa.Column("secret", sa.String(128), nullable=False),
        sa.Column("events", sa.JSON, nullable=False),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
    )

    # ── webhook_deliveries ────────────────────────────────────────────────
    op.create_table(
        "webhook_deliveries",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("webhook_id", sa.Integer, sa.ForeignKey("webhooks.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("payload", sa.JSON, nullable=True),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("response_code", sa.Integer, nullable=True),
        sa.Column("response_body", sa.Text, nullable=True),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, index=True),
    )

    # ── team_invitations ──────────────────────────────────────────────────
    op.create_table(
        "team_invitations",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        _tenant_fk(),
        sa.Column("email", sa.String(255), nullable=False, index=True),
        sa.Column("role", sa.String(32), nullable=False, server_default="editor"),
        sa.Column("token", sa.String(128), nullable=False, unique=True, index=True),
        sa.Column("invited_by", sa.String(255), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
    )

    # ── audit_logs ────────────────────────────────────────────────────────
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        _tenant_fk(ondelete="SET NULL", nullable=True),
        sa.Column("user_id", sa.String(255), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("resource_type", sa.String(64), nullable=False),
        sa.Column("resource_id", sa.String(255), nullable=True),
        sa.Column("details", sa.JSON, nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text, nullable=True),
        _timestamp("created_at"),
    )


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("team_invitations")
    op.drop_table("webhook_deliveries")
    op.drop_table("webhooks")
    op.drop_table("api_key_usage")
    op.drop_table("api_keys")
    op.drop_table("newsletter_stats")
    op.drop_table("newsletters")
    op.drop_table("voice_profiles")
    op.execute("DROP INDEX IF EXISTS ix_knowledge_chunks_embedding")
    op.drop_table("knowledge_chunks")
    op.drop_table("knowledge_sources")
    op.drop_table("tenant_settings")
    op.drop_table("profiles")
    op.drop_table("tenants")
