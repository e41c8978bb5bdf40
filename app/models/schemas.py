"""
Pydantic schemas for request/response validation.
"""
from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime

from app.models.database_models import (
    DeliveryStatus,
    InvitationStatus,
    NewsletterStatus,
    SourceStatus,
    SourceType,
    SubscriptionTier,
    TeamRole,
)


# ---------------------------------------------------------------------------
# Workspace / account
# ---------------------------------------------------------------------------

class TenantResponse(BaseModel):
    """Schema for tenant details."""

    id: int
    name: str
    slug: str
    subscription_tier: SubscriptionTier
    max_sources: int
    max_newsletters_per_month: int
    max_ai_generations_per_month: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProfileResponse(BaseModel):
    """Schema for a workspace member."""

    id: str
    tenant_id: int
    email: str
    full_name: Optional[str] = None
    role: TeamRole
    is_active: bool = True
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WorkspaceCreateResponse(BaseModel):
    success: bool = True
    already_exists: bool
    tenant_id: int


class WorkspaceResponse(BaseModel):
    """GET /api/workspace/me."""

    profile: ProfileResponse
    tenant: TenantResponse


class AccountDeleteRequest(BaseModel):
    confirmation: str
    reason: Optional[str] = None
    comment: Optional[str] = None


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class SettingsResponse(BaseModel):
    """Tenant settings with every credential masked."""

    tenant_id: int
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    esp_provider: str = "sendgrid"
    sendgrid_api_key: Optional[str] = None
    mailchimp_api_key: Optional[str] = None
    convertkit_api_key: Optional[str] = None
    sender_email: Optional[str] = None
    company_name: Optional[str] = None


class SettingsUpdateRequest(BaseModel):
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    esp_provider: Optional[str] = None
    sendgrid_api_key: Optional[str] = None
    mailchimp_api_key: Optional[str] = None
    convertkit_api_key: Optional[str] = None
    sender_email: Optional[str] = None
    company_name: Optional[str] = None


# ---------------------------------------------------------------------------
# Knowledge sources
# ---------------------------------------------------------------------------

class SourceCreateRequest(BaseModel):
    """Schema for creating a URL or manual source."""

    source_type: SourceType
    url: Optional[str] = None
    content: Optional[str] = None
    title: Optional[str] = Field(None, max_length=512)


class SourceResponse(BaseModel):
    """Schema for knowledge source details."""

    id: int
    tenant_id: int
    source_type: SourceType
    title: Optional[str] = None
    source_uri: Optional[str] = None
    file_path: Optional[str] = None
    mime_type: Optional[str] = None
    file_size_bytes: Optional[int] = None
    status: SourceStatus
    error_message: Optional[str] = None
    chunk_count: int = 0
    token_count: int = 0
    processed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProcessSourceResponse(BaseModel):
    """Response for POST /api/sources/{id}/process."""

    success: bool = True
    chunks: int
    tokens: int
    embeddings_generated: int
    headers_found: int


class SourceCreatedResponse(BaseModel):
    source: SourceResponse
    processing: Optional[ProcessSourceResponse] = None


class ChunkResponse(BaseModel):
    """A stored chunk without its embedding."""

    id: int
    source_id: int
    chunk_index: int
    content: str
    token_count: int
    embedding_model: Optional[str] = None
    metadata_json: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

class RagSearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    limit: int = Field(10, ge=1, le=50)

    @field_validator("query")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("query must not be blank")
        return value


class RagSearchResult(BaseModel):
    """A single retrieved chunk."""

    chunk_id: int
    source_id: int
    source_title: str
    content: str
    similarity: float


class RagSearchResponse(BaseModel):
    results: List[RagSearchResult]
    vector_search: bool


class DateRange(BaseModel):
    start: Optional[str] = None
    end: Optional[str] = None


class GlobalSearchFilters(BaseModel):
    types: Optional[List[str]] = None
    status: Optional[str] = None
    date_range: Optional[DateRange] = None


class GlobalSearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    filters: GlobalSearchFilters = Field(default_factory=GlobalSearchFilters)
    limit: int = Field(20, ge=1, le=100)


class GlobalSearchResult(BaseModel):
    type: str
    id: int
    title: Optional[str] = None
    snippet: str
    relevance: float
    date: datetime
    status: Optional[str] = None


class GlobalSearchResponse(BaseModel):
    results: List[GlobalSearchResult]
    total: int
    suggestions: List[str]


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------

class ApiKeyCreateRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    permissions: Optional[List[str]] = None
    rate_limit: Optional[int] = Field(None, ge=1)


class ApiKeyResponse(BaseModel):
    """Key metadata; the key itself is never returned after creation."""

    id: int
    name: str
    key_prefix: str
    permissions: List[str]
    rate_limit: int
    last_used_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ApiKeyCreatedResponse(ApiKeyResponse):
    full_key: str
    message: str = "Store this key securely. It will not be shown again."


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------

class WebhookCreateRequest(BaseModel):
    url: str
    events: Optional[List[str]] = None


class WebhookUpdateRequest(BaseModel):
    url: Optional[str] = None
    events: Optional[List[str]] = None
    enabled: Optional[bool] = None


class WebhookResponse(BaseModel):
    """Webhook without its signing secret."""

    id: int
    url: str
    events: List[str]
    enabled: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WebhookCreatedResponse(WebhookResponse):
    secret: str


class WebhookDeliveryResponse(BaseModel):
    id: int
    webhook_id: int
    event_type: str
    status: DeliveryStatus
    response_code: Optional[int] = None
    attempts: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WebhookTriggerRequest(BaseModel):
    tenant_id: Optional[int] = None
    event_type: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Voice profiles
# ---------------------------------------------------------------------------

class VoiceProfileCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    voice_prompt: Optional[str] = None
    tone_markers: Optional[Dict[str, Any]] = None
    vocabulary_preferences: Optional[Dict[str, Any]] = None
    is_default: bool = False


class VoiceProfileResponse(BaseModel):
    id: int
    name: str
    voice_prompt: Optional[str] = None
    tone_markers: Optional[Dict[str, Any]] = None
    vocabulary_preferences: Optional[Dict[str, Any]] = None
    is_default: bool = False
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Newsletters
# ---------------------------------------------------------------------------

class ContextChunk(BaseModel):
    """A RAG result passed back in as generation context."""

    chunk_id: Optional[Any] = None
    source_id: Optional[int] = None
    source_title: Optional[str] = None
    content: str = ""
    similarity: Optional[float] = None


class GenerateContentRequest(BaseModel):
    topic: str = Field(..., min_length=1)
    context: Optional[List[ContextChunk]] = None
    voice_profile_id: Optional[int] = None
    use_knowledge_base: bool = False
    save: bool = False


class Citation(BaseModel):
    chunk_id: Any
    text: str


class GenerateContentResponse(BaseModel):
    title: str
    subject_line: str
    content_html: str
    citations: List[Citation]
    ai_generated: bool
    newsletter_id: Optional[int] = None


class NewsletterCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=512)
    subject_line: Optional[str] = Field(None, max_length=512)
    preview_text: Optional[str] = Field(None, max_length=512)
    content_html: Optional[str] = None
    voice_profile_id: Optional[int] = None
    scheduled_at: Optional[datetime] = None


class NewsletterUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=512)
    subject_line: Optional[str] = Field(None, max_length=512)
    preview_text: Optional[str] = Field(None, max_length=512)
    content_html: Optional[str] = None
    status: Optional[NewsletterStatus] = None
    voice_profile_id: Optional[int] = None
    scheduled_at: Optional[datetime] = None


class NewsletterStatsResponse(BaseModel):
    recipients: int = 0
    opens: int = 0
    unique_opens: int = 0
    clicks: int = 0
    unique_clicks: int = 0
    open_rate: float = 0.0
    click_rate: float = 0.0

    model_config = ConfigDict(from_attributes=True)


class NewsletterResponse(BaseModel):
    """Schema for newsletter details."""

    id: int
    tenant_id: int
    title: str
    subject_line: Optional[str] = None
    preview_text: Optional[str] = None
    content_html: Optional[str] = None
    status: NewsletterStatus
    voice_profile_id: Optional[int] = None
    citations: Optional[List[Dict[str, Any]]] = None
    created_by: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NewsletterStatsUpdate(BaseModel):
    recipients: int = Field(0, ge=0)
    opens: int = Field(0, ge=0)
    unique_opens: int = Field(0, ge=0)
    clicks: int = Field(0, ge=0)
    unique_clicks: int = Field(0, ge=0)


class QualityCheckRequest(BaseModel):
    content_html: str = ""
    subject_line: str = ""


class QualityCheckResponse(BaseModel):
    readability_score: int
    spam_score: int
    spam_words_found: List[str]
    missing_alt_text: List[str]
    links_found: List[str]
    subject_length_ok: bool
    subject_length: int
    overall_score: int
    overall_grade: str


class SendNewsletterRequest(BaseModel):
    recipients: List[str] = Field(default_factory=list)
    is_test: bool = False
    list_id: Optional[str] = None


class SendNewsletterResponse(BaseModel):
    success: bool = True
    provider: str
    recipients_count: int
    is_test: bool


class SendTimeSlot(BaseModel):
    day: int
    day_name: str
    hour: int
    confidence: float
    reason: str
    avg_open_rate: Optional[float] = None


class SendTimeResponse(BaseModel):
    recommended_slots: List[SendTimeSlot]
    based_on_data: bool
    sample_size: int


# ---------------------------------------------------------------------------
# Social posts
# ---------------------------------------------------------------------------

class SocialPostsRequest(BaseModel):
    newsletter_content: str = Field(..., min_length=1)
    newsletter_title: Optional[str] = None


class SocialPostsResponse(BaseModel):
    success: bool = True
    posts: Dict[str, Any]
    ai_generated: bool


class SocialRemixRequest(BaseModel):
    content: str = Field(..., min_length=1)
    target_platform: str = Field(..., min_length=1)


class SocialRemixResponse(BaseModel):
    remixed_content: str
    platform: str


# ---------------------------------------------------------------------------
# Team
# ---------------------------------------------------------------------------

class InviteRequest(BaseModel):
    email: str
    role: str = "editor"


class InviteResponse(BaseModel):
    success: bool = True
    already_invited: bool
    invitation_id: int


class InvitationResponse(BaseModel):
    id: int
    email: str
    role: TeamRole
    status: InvitationStatus
    created_at: datetime
    expires_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RoleChangeRequest(BaseModel):
    role: str


class InvitationTokenRequest(BaseModel):
    token: str = ""


class InvitationDetails(BaseModel):
    valid: bool
    email: str
    role: str
    tenant_name: Optional[str] = None


class AcceptInvitationResponse(BaseModel):
    success: bool = True
    tenant_id: int
    role: TeamRole
    already_member: bool


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------

class AuditLogRequest(BaseModel):
    action: str = Field(..., min_length=1, max_length=128)
    resource_type: str = Field(..., min_length=1, max_length=64)
    resource_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    user_id: Optional[str] = None


class AuditLogResponse(BaseModel):
    id: int
    tenant_id: Optional[int] = None
    user_id: Optional[str] = None
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

class HealthCheckResponse(BaseModel):
    """Schema for health check endpoint."""

    status: str
    database: str
    ai_provider: str
    timestamp: datetime
    version: str = "1.0.0"
