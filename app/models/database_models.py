"""
SQLAlchemy ORM models for the Newsletter Wizard database.
Includes pgvector support for embeddings.
"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    Float,
    Boolean,
    Enum as SQLEnum,
    JSON,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from pgvector.sqlalchemy import Vector
from datetime import datetime, timezone
import enum

from app.database import Base
from app.config import settings


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def _enum_column(enum_cls, **kwargs) -> Column:
    """String-backed enum column storing member values."""
    return Column(
        SQLEnum(
            enum_cls,
            native_enum=False,
            values_callable=_enum_values,
            length=32,
            validate_strings=True,
        ),
        **kwargs,
    )


# Enums
class SubscriptionTier(str, enum.Enum):
    """Billing tiers; limits live in app.utils.helpers.TIER_LIMITS."""

    FREE = "free"
    CREATOR = "creator"
    PRO = "pro"
    BUSINESS = "business"


class TeamRole(str, enum.Enum):
    """Roles a workspace member can hold."""

    OWNER = "owner"
    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"


class SourceType(str, enum.Enum):
    """Where a knowledge source came from."""

    URL = "url"
    DOCUMENT = "document"
    MANUAL = "manual"


class SourceStatus(str, enum.Enum):
    """Processing lifecycle of a knowledge source."""

    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


class NewsletterStatus(str, enum.Enum):
    """Editorial lifecycle of a newsletter."""

    DRAFT = "draft"
    GENERATING = "generating"
    REVIEW = "review"
    SCHEDULED = "scheduled"
    SENDING = "sending"
    SENT = "sent"


class InvitationStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REVOKED = "revoked"


class DeliveryStatus(str, enum.Enum):
    DELIVERED = "delivered"
    FAILED = "failed"


# Models
class Tenant(Base):
    """A workspace. Every other row belongs to exactly one tenant."""

    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True, index=True)
    subscription_tier = _enum_column(SubscriptionTier, nullable=False, default=SubscriptionTier.FREE)
    max_sources = Column(Integer, nullable=False, default=10)
    max_newsletters_per_month = Column(Integer, nullable=False, default=5)
    max_ai_generations_per_month = Column(Integer, nullable=False, default=50)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    # Relationships
    profiles = relationship("Profile", back_populates="tenant", cascade="all, delete-orphan")
    tenant_settings = relationship(
        "TenantSettings", back_populates="tenant", uselist=False, cascade="all, delete-orphan"
    )
    sources = relationship("KnowledgeSource", back_populates="tenant", cascade="all, delete-orphan")
    newsletters = relationship("Newsletter", back_populates="tenant", cascade="all, delete-orphan")
    voice_profiles = relationship("VoiceProfile", back_populates="tenant", cascade="all, delete-orphan")
    api_keys = relationship("ApiKey", back_populates="tenant", cascade="all, delete-orphan")
    webhooks = relationship("Webhook", back_populates="tenant", cascade="all, delete-orphan")
    invitations = relationship("TeamInvitation", back_populates="tenant", cascade="all, delete-orphan")


class Profile(Base):
    """A user's membership in a tenant. The id is the upstream auth user id."""

    __tablename__ = "profiles"

    id = Column(String(255), primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String(255), nullable=False, index=True)
    full_name = Column(String(255), nullable=True)
    role = _enum_column(TeamRole, nullable=False, default=TeamRole.EDITOR)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    # Relationships
    tenant = relationship("Tenant", back_populates="profiles")


class TenantSettings(Base):
    """Per-tenant provider credentials and sender identity."""

    __tablename__ = "tenant_settings"

    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), primary_key=True)
    openai_api_key = Column(String(255), nullable=True)
    anthropic_api_key = Column(String(255), nullable=True)
    esp_provider = Column(String(32), nullable=False, default="sendgrid")
    sendgrid_api_key = Column(String(255), nullable=True)
    mailchimp_api_key = Column(String(255), nullable=True)
    convertkit_api_key = Column(String(255), nullable=True)
    sender_email = Column(String(255), nullable=True)
    company_name = Column(String(255), nullable=True)
    updated_at = Column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, server_default=func.now(), nullable=False
    )

    # Relationships
    tenant = relationship("Tenant", back_populates="tenant_settings")


class KnowledgeSource(Base):
    """A document, URL or pasted note that feeds newsletter generation."""

    __tablename__ = "knowledge_sources"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    source_type = _enum_column(SourceType, nullable=False)
    title = Column(String(512), nullable=True)
    source_uri = Column(Text, nullable=True)  # URL for url sources
    content = Column(Text, nullable=True)  # raw text for manual sources
    file_path = Column(String(1024), nullable=True)
    mime_type = Column(String(255), nullable=True)
    file_size_bytes = Column(Integer, nullable=True)
    status = _enum_column(SourceStatus, nullable=False, default=SourceStatus.PENDING, index=True)
    error_message = Column(Text, nullable=True)
    chunk_count = Column(Integer, nullable=False, default=0)
    token_count = Column(Integer, nullable=False, default=0)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, server_default=func.now(), nullable=False
    )

    # Relationships
    tenant = relationship("Tenant", back_populates="sources")
    chunks = relationship(
        "KnowledgeChunk",
        back_populates="source",
        cascade="all, delete-orphan",
        order_by="KnowledgeChunk.chunk_index",
    )


class KnowledgeChunk(Base):
    """Text chunk with embedding for semantic search."""

    __tablename__ = "knowledge_chunks"

    id = Column(Integer, primary_key=True, index=True)
    source_id = Column(Integer, ForeignKey("knowledge_sources.id", ondelete="CASCADE"), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    chunk_index = Column(Integer, nullable=False)  # Position in source
    token_count = Column(Integer, nullable=False, default=0)
    embedding = Column(Vector(settings.VECTOR_DIMENSION), nullable=True)
    embedding_model = Column(String(128), nullable=True)
    metadata_json = Column(JSON, nullable=True)  # header context
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    # Relationships
    source = relationship("KnowledgeSource", back_populates="chunks")


class VoiceProfile(Base):
    """Writing voice used to steer generated newsletters."""

    __tablename__ = "voice_profiles"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    voice_prompt = Column(Text, nullable=True)
    tone_markers = Column(JSON, nullable=True)  # formality, sentiment, energy, approach
    vocabulary_preferences = Column(JSON, nullable=True)  # common_phrases, preferred_words
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    # Relationships
    tenant = relationship("Tenant", back_populates="voice_profiles")


class Newsletter(Base):
    """A newsletter issue, from draft to sent."""

    __tablename__ = "newsletters"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(512), nullable=False)
    subject_line = Column(String(512), nullable=True)
    preview_text = Column(String(512), nullable=True)
    content_html = Column(Text, nullable=True)
    status = _enum_column(NewsletterStatus, nullable=False, default=NewsletterStatus.DRAFT, index=True)
    voice_profile_id = Column(Integer, ForeignKey("voice_profiles.id", ondelete="SET NULL"), nullable=True)
    citations = Column(JSON, nullable=True)
    created_by = Column(String(255), nullable=True)
    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, server_default=func.now(), nullable=False
    )

    # Relationships
    tenant = relationship("Tenant", back_populates="newsletters")
    stats = relationship(
        "NewsletterStats", back_populates="newsletter", uselist=False, cascade="all, delete-orphan"
    )


class NewsletterStats(Base):
    """Delivery and engagement numbers reported back by the ESP."""

    __tablename__ = "newsletter_stats"

    id = Column(Integer, primary_key=True, index=True)
    newsletter_id = Column(
        Integer, ForeignKey("newsletters.id", ondelete="CASCADE"), nullable=False, unique=True, index=True
    )
    recipients = Column(Integer, nullable=False, default=0)
    opens = Column(Integer, nullable=False, default=0)
    unique_opens = Column(Integer, nullable=False, default=0)
    clicks = Column(Integer, nullable=False, default=0)
    unique_clicks = Column(Integer, nullable=False, default=0)
    open_rate = Column(Float, nullable=False, default=0.0)
    click_rate = Column(Float, nullable=False, default=0.0)
    updated_at = Column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, server_default=func.now(), nullable=False
    )

    # Relationships
    newsletter = relationship("Newsletter", back_populates="stats")


class ApiKey(Base):
    """External API credential. Only the SHA-256 hash of the key is stored."""

    __tablename__ = "api_keys"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    key_prefix = Column(String(16), nullable=False)
    key_hash = Column(String(64), nullable=False, unique=True, index=True)
    permissions = Column(JSON, nullable=False, default=list)
    rate_limit = Column(Integer, nullable=False, default=settings.API_KEY_DEFAULT_RATE_LIMIT)
    created_by = Column(String(255), nullable=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    # Relationships
    tenant = relationship("Tenant", back_populates="api_keys")
    usage = relationship("ApiKeyUsage", back_populates="api_key", cascade="all, delete-orphan")


class ApiKeyUsage(Base):
    """One row per authenticated API call, used for the sliding rate-limit window."""

    __tablename__ = "api_key_usage"

    id = Column(Integer, primary_key=True, index=True)
    api_key_id = Column(Integer, ForeignKey("api_keys.id", ondelete="CASCADE"), nullable=False, index=True)
    endpoint = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)

    # Relationships
    api_key = relationship("ApiKey", back_populates="usage")


class Webhook(Base):
    """Outbound HTTPS endpoint subscribed to tenant events."""

    __tablename__ = "webhooks"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    url = Column(Text, nullable=False)
    secret = Column(String(128), nullable=False)
    events = Column(JSON, nullable=False, default=list)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    # Relationships
    tenant = relationship("Tenant", back_populates="webhooks")
    deliveries = relationship("WebhookDelivery", back_populates="webhook", cascade="all, delete-orphan")


class WebhookDelivery(Base):
    """A single delivery attempt."""

    __tablename__ = "webhook_deliveries"

    id = Column(Integer, primary_key=True, index=True)
    webhook_id = Column(Integer, ForeignKey("webhooks.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(String(64), nullable=False)
    payload = Column(JSON, nullable=True)
    status = _enum_column(DeliveryStatus, nullable=False)
    response_code = Column(Integer, nullable=True)
    response_body = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)

    # Relationships
    webhook = relationship("Webhook", back_populates="deliveries")


class TeamInvitation(Base):
    """Pending e-mail invitation into a tenant."""

    __tablename__ = "team_invitations"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String(255), nullable=False, index=True)
    role = _enum_column(TeamRole, nullable=False, default=TeamRole.EDITOR)
    token = Column(String(128), nullable=False, unique=True, index=True)
    invited_by = Column(String(255), nullable=True)
    status = _enum_column(InvitationStatus, nullable=False, default=InvitationStatus.PENDING)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    # Relationships
    tenant = relationship("Tenant", back_populates="invitations")


class AuditLog(Base):
    """Append-only record of security-relevant actions. Survives tenant deletion."""

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="SET NULL"), nullable=True, index=True)
    user_id = Column(String(255), nullable=True)
    action = Column(String(128), nullable=False)
    resource_type = Column(String(64), nullable=False)
    resource_id = Column(String(255), nullable=True)
    details = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
