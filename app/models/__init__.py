"""Database and schema models for Newsletter Wizard."""
from app.models.database_models import (
    Tenant,
    Profile,
    TenantSettings,
    KnowledgeSource,
    KnowledgeChunk,
    VoiceProfile,
    Newsletter,
    NewsletterStats,
    ApiKey,
    ApiKeyUsage,
    Webhook,
    WebhookDelivery,
    TeamInvitation,
    AuditLog,
    SubscriptionTier,
    TeamRole,
    SourceType,
    SourceStatus,
    NewsletterStatus,
)
from app.models.schemas import (
    TenantResponse,
    ProfileResponse,
    SourceResponse,
    ChunkResponse,
    NewsletterResponse,
    ApiKeyResponse,
    WebhookResponse,
    HealthCheckResponse,
)

__all__ = [
    # Database models
    "Tenant",
    "Profile",
    "TenantSettings",
    "KnowledgeSource",
    "KnowledgeChunk",
    "VoiceProfile",
    "Newsletter",
    "NewsletterStats",
    "ApiKey",
    "ApiKeyUsage",
    "Webhook",
    "WebhookDelivery",
    "TeamInvitation",
    "AuditLog",
    "SubscriptionTier",
    "TeamRole",
    "SourceType",
    "SourceStatus",
    "NewsletterStatus",
    # Pydantic schemas
    "TenantResponse",
    "ProfileResponse",
    "SourceResponse",
    "ChunkResponse",
    "NewsletterResponse",
    "ApiKeyResponse",
    "WebhookResponse",
    "HealthCheckResponse",
]
