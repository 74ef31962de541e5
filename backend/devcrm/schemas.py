"""Pydantic schemas for request/response payloads.

All API payloads use camelCase keys on the wire (`displayName`, `dropRate`)
while Python code works with snake_case attributes. `ApiModel` carries the
alias configuration; every schema in this module derives from it.
"""

from datetime import datetime, date
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, EmailStr, Field, constr, field_validator
from pydantic.alias_generators import to_camel

from .models import FunnelStageKey, IdentifierKindEnum, PluginEventStatusEnum, PluginRunStatusEnum, UserRoleEnum


class ApiModel(BaseModel):
    """Base model: camelCase aliases, accepts snake_case too, reads ORM objects."""

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "from_attributes": True,
    }


# ============================================================================
# Generic responses
# ============================================================================

class ErrorDetail(ApiModel):
    field: str
    message: str


class ErrorResponse(ApiModel):
    """Standard error response format."""

    error: str = Field(description="Error message", examples=["Campaign not found"])
    details: Optional[List[ErrorDetail]] = Field(default=None, description="Field-level validation errors")

    model_config = {
        **ApiModel.model_config,
        "json_schema_extra": {
            "example": {"error": "Validation failed", "details": [{"field": "name", "message": "Field required"}]}
        },
    }


class SuccessResponse(ApiModel):
    message: str = Field(description="Success message", examples=["Logged out"])


class HealthResponse(ApiModel):
    status: str = Field(description="Service health status", examples=["ok"])


# ============================================================================
# Auth
# ============================================================================

class RegisterRequest(ApiModel):
    """Payload for tenant + first admin registration."""

    email: EmailStr = Field(description="Admin email address", examples=["alice@example.com"])
    password: constr(min_length=8) = Field(description="Password (minimum 8 characters)")
    display_name: Optional[constr(max_length=255)] = Field(default=None, description="Display name")
    tenant_name: constr(strip_whitespace=True, min_length=1, max_length=255) = Field(
        description="Name of the tenant to create", examples=["Acme DevRel"]
    )


class LoginRequest(ApiModel):
    email: EmailStr = Field(description="User email address")
    password: str = Field(description="User password")


class UserOut(ApiModel):
    """Public representation of a user."""

    id: UUID
    tenant_id: UUID
    email: EmailStr
    display_name: Optional[str] = None
    role: UserRoleEnum
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class LoginResponse(ApiModel):
    user: UserOut
    message: str = "Login successful"


# ============================================================================
# API tokens
# ============================================================================

class ApiTokenCreate(ApiModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=100)
    scopes: List[str]
    expires_at: Optional[datetime] = None


class ApiTokenOut(ApiModel):
    """Token metadata. The plaintext token is never part of this payload."""

    id: UUID
    name: str
    token_prefix: str
    scopes: List[str]
    status: Literal["active", "expired", "revoked"]
    created_by: UUID
    last_used_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ApiTokenCreated(ApiTokenOut):
    token: str = Field(description="Plaintext token; shown only once")


class ApiTokenList(ApiModel):
    tokens: List[ApiTokenOut]
    total: int
    page: int
    per_page: int


# ============================================================================
# Funnel stages & activity types
# ============================================================================

class FunnelStageOut(ApiModel):
    stage_key: FunnelStageKey
    order_no: int
    title: str


class ActivityTypeCreate(ApiModel):
    action: constr(strip_whitespace=True, min_length=1, max_length=100)
    stage_key: Optional[FunnelStageKey] = None
    icon_name: Optional[constr(min_length=1, max_length=255)] = None
    color_class: Optional[constr(min_length=1, max_length=255)] = None


class ActivityTypeUpdate(ApiModel):
    """Partial update. Sending `stageKey: null` removes the action from the funnel."""

    stage_key: Optional[FunnelStageKey] = None
    icon_name: Optional[constr(min_length=1, max_length=255)] = None
    color_class: Optional[constr(min_length=1, max_length=255)] = None


class ActivityTypeOut(ApiModel):
    id: UUID
    action: str
    stage_key: Optional[FunnelStageKey] = None
    icon_name: str
    color_class: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ActivityTypeList(ApiModel):
    activity_types: List[ActivityTypeOut]
    total: int


class ActionList(ApiModel):
    actions: List[str]


# ============================================================================
# Funnel analytics
# ============================================================================

class StageStats(ApiModel):
    """Snapshot statistics of one funnel stage."""

    stage_key: FunnelStageKey
    title: str
    order_no: int
    unique_developers: int
    total_activities: int
    previous_stage_count: Optional[int] = Field(default=None, description="Null for the first stage")
    drop_rate: Optional[float] = Field(default=None, description="Percentage in [0, 100]; null when undefined")


class FunnelStatsOut(ApiModel):
    stages: List[StageStats]
    total_developers: int
    overall_conversion_rate: float
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None


class TimeSeriesStage(ApiModel):
    stage_key: FunnelStageKey
    unique_developers: int
    drop_rate: Optional[float] = None


class TimeSeriesPoint(ApiModel):
    date: str = Field(description="Bucket start date (YYYY-MM-DD)", examples=["2025-01-06"])
    stages: List[TimeSeriesStage]


class FunnelTimelineOut(ApiModel):
    granularity: Literal["day", "week", "month"]
    from_date: date
    to_date: date
    timeline: List[TimeSeriesPoint]


class StageDropRate(ApiModel):
    stage_key: FunnelStageKey
    previous_stage_count: Optional[int] = None
    unique_developers: int
    drop_rate: Optional[float] = None


# ============================================================================
# Organizations & developers
# ============================================================================

class OrganizationCreate(ApiModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=255)
    domain_primary: Optional[str] = None
    attributes: Optional[Dict[str, Any]] = None


class OrganizationOut(ApiModel):
    id: UUID
    name: str
    domain_primary: Optional[str] = None
    attributes: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None


class OrganizationList(ApiModel):
    organizations: List[OrganizationOut]
    total: int


class DeveloperCreate(ApiModel):
    display_name: Optional[constr(max_length=255)] = None
    primary_email: Optional[EmailStr] = None
    org_id: Optional[UUID] = None
    consent_analytics: bool = True
    tags: List[str] = Field(default_factory=list)


class DeveloperUpdate(ApiModel):
    display_name: Optional[constr(max_length=255)] = None
    primary_email: Optional[EmailStr] = None
    org_id: Optional[UUID] = None
    consent_analytics: Optional[bool] = None
    tags: Optional[List[str]] = None


class DeveloperOut(ApiModel):
    id: UUID
    display_name: Optional[str] = None
    primary_email: Optional[str] = None
    org_id: Optional[UUID] = None
    consent_analytics: bool = True
    tags: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("tags", mode="before")
    @classmethod
    def _none_tags(cls, v):
        return v or []


class DeveloperList(ApiModel):
    developers: List[DeveloperOut]
    total: int


class DeveloperStats(ApiModel):
    developer_id: UUID
    total_activities: int
    stages: Dict[str, int] = Field(description="Activity count per funnel stage key")
    unmapped_activities: int
    first_activity_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None


class IdentifierCreate(ApiModel):
    kind: IdentifierKindEnum
    value: constr(strip_whitespace=True, min_length=1, max_length=255)
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    attributes: Optional[Dict[str, Any]] = None


class IdentifierOut(ApiModel):
    id: UUID
    developer_id: UUID
    kind: IdentifierKindEnum
    value_normalized: str
    confidence: float
    attributes: Optional[Dict[str, Any]] = None
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None


class IdentifierList(ApiModel):
    identifiers: List[IdentifierOut]


class MergeRequest(ApiModel):
    from_developer_id: UUID
    reason: Optional[constr(max_length=500)] = None


class DuplicateCandidate(ApiModel):
    developer_id: UUID
    display_name: Optional[str] = None
    primary_email: Optional[str] = None
    confidence: float
    matched_on: List[str]


class DuplicateList(ApiModel):
    candidates: List[DuplicateCandidate]


# ============================================================================
# Activities
# ============================================================================

class ActivityCreate(ApiModel):
    developer_id: Optional[UUID] = None
    account_id: Optional[UUID] = None
    anon_id: Optional[constr(min_length=1, max_length=255)] = None
    resource_id: Optional[UUID] = None
    action: constr(strip_whitespace=True, min_length=1, max_length=100)
    occurred_at: datetime
    source: constr(strip_whitespace=True, min_length=1, max_length=100)
    source_ref: Optional[str] = None
    category: Optional[str] = None
    group_key: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    value: Optional[Decimal] = None
    dedup_key: Optional[constr(min_length=1, max_length=255)] = None


class ActivityUpdate(ApiModel):
    developer_id: Optional[UUID] = None
    account_id: Optional[UUID] = None
    anon_id: Optional[constr(min_length=1, max_length=255)] = None
    resource_id: Optional[UUID] = None
    action: Optional[constr(strip_whitespace=True, min_length=1, max_length=100)] = None
    occurred_at: Optional[datetime] = None
    source: Optional[constr(strip_whitespace=True, min_length=1, max_length=100)] = None
    source_ref: Optional[str] = None
    category: Optional[str] = None
    group_key: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    value: Optional[Decimal] = None


class ActivityOut(ApiModel):
    id: UUID
    developer_id: Optional[UUID] = None
    account_id: Optional[UUID] = None
    anon_id: Optional[str] = None
    resource_id: Optional[UUID] = None
    action: str
    occurred_at: datetime
    recorded_at: Optional[datetime] = None
    ingested_at: Optional[datetime] = None
    source: str
    source_ref: Optional[str] = None
    category: Optional[str] = None
    group_key: Optional[str] = None
    # ORM attribute is `metadata_` (SQLAlchemy reserves `metadata`)
    metadata: Optional[Dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("metadata_", "metadata")
    )
    confidence: float
    value: Optional[Decimal] = None
    dedup_key: Optional[str] = None


class ActivityList(ApiModel):
    activities: List[ActivityOut]
    total: int


# ============================================================================
# Campaigns, budgets, resources, ROI
# ============================================================================

class CampaignCreate(ApiModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=255)
    channel: Optional[constr(max_length=100)] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    budget_total: Optional[Decimal] = Field(default=None, ge=0)
    attributes: Optional[Dict[str, Any]] = None


class CampaignUpdate(ApiModel):
    name: Optional[constr(strip_whitespace=True, min_length=1, max_length=255)] = None
    channel: Optional[constr(max_length=100)] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    budget_total: Optional[Decimal] = Field(default=None, ge=0)
    attributes: Optional[Dict[str, Any]] = None


class CampaignOut(ApiModel):
    id: UUID
    name: str
    channel: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    budget_total: Optional[Decimal] = None
    attributes: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CampaignList(ApiModel):
    campaigns: List[CampaignOut]
    total: int


class BudgetCreate(ApiModel):
    category: constr(strip_whitespace=True, min_length=1, max_length=100)
    amount: Decimal = Field(ge=0)
    currency: Optional[constr(min_length=3, max_length=3)] = None
    spent_at: date
    source: Optional[str] = None
    memo: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None


class BudgetOut(ApiModel):
    id: UUID
    campaign_id: UUID
    category: str
    amount: Decimal
    currency: str
    spent_at: date
    source: Optional[str] = None
    memo: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None


class BudgetList(ApiModel):
    budgets: List[BudgetOut]
    total: int


class ResourceOut(ApiModel):
    id: UUID
    category: str
    group_key: Optional[str] = None
    title: Optional[str] = None
    url: Optional[str] = None
    external_id: Optional[str] = None
    campaign_id: Optional[UUID] = None
    attributes: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None


class ResourceList(ApiModel):
    resources: List[ResourceOut]
    total: int


class AttributionCreate(ApiModel):
    activity_id: UUID
    weight: float = Field(default=1.0, gt=0)


class AttributedActivityOut(ActivityOut):
    weight: float


class AttributedActivityList(ApiModel):
    activities: List[AttributedActivityOut]
    total: int


class CampaignROI(ApiModel):
    """ROI of a campaign. Money totals are plain decimal strings ("1000", "1234.5")."""

    campaign_id: UUID
    campaign_name: str
    total_cost: str
    total_value: str
    activity_count: int
    developer_count: int
    roi: Optional[float] = Field(default=None, description="Percentage; null when total cost is 0")
    calculated_at: datetime


class ShortlinkCreate(ApiModel):
    target_url: constr(strip_whitespace=True, min_length=1, max_length=2048)
    key: Optional[constr(min_length=4, max_length=20, pattern=r"^[A-Za-z0-9_-]+$")] = None
    campaign_id: Optional[UUID] = None
    resource_id: Optional[UUID] = None
    attributes: Optional[Dict[str, Any]] = None


class ShortlinkUpdate(ApiModel):
    target_url: Optional[constr(strip_whitespace=True, min_length=1, max_length=2048)] = None
    key: Optional[constr(min_length=4, max_length=20, pattern=r"^[A-Za-z0-9_-]+$")] = None
    campaign_id: Optional[UUID] = None
    resource_id: Optional[UUID] = None
    attributes: Optional[Dict[str, Any]] = None


class ShortlinkOut(ApiModel):
    id: UUID
    key: str
    target_url: str
    short_url: str
    campaign_id: Optional[UUID] = None
    resource_id: Optional[UUID] = None
    attributes: Optional[Dict[str, Any]] = None
    click_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ShortlinkList(ApiModel):
    shortlinks: List[ShortlinkOut]
    total: int


# ============================================================================
# Overview
# ============================================================================

class OverviewStats(ApiModel):
    total_developers: int
    total_activities: int
    total_campaigns: int
    average_roi: Optional[float] = Field(default=None, serialization_alias="averageROI")


class OverviewStatsOut(ApiModel):
    stats: OverviewStats


class TimelineDataPoint(ApiModel):
    date: str
    activities: int
    developers: int


class OverviewTimelineOut(ApiModel):
    timeline: List[TimelineDataPoint]


# ============================================================================
# Plugins
# ============================================================================

ConfigFieldType = Literal["string", "textarea", "secret", "number", "boolean", "url", "email", "select"]


class ConfigFieldValidation(ApiModel):
    min: Optional[float] = None
    max: Optional[float] = None
    min_length: Optional[int] = Field(default=None, ge=0)
    max_length: Optional[int] = Field(default=None, ge=0)
    pattern: Optional[str] = None


class ConfigFieldOption(ApiModel):
    label: str
    value: Any


class ConfigField(ApiModel):
    """One field of a plugin's configuration schema."""

    key: constr(min_length=1, max_length=100)
    label: str
    type: ConfigFieldType
    required: bool = False
    default: Any = None
    help: Optional[str] = None
    placeholder: Optional[str] = None
    options: Optional[List[ConfigFieldOption]] = None
    validation: Optional[ConfigFieldValidation] = None


class PluginInstall(ApiModel):
    key: constr(strip_whitespace=True, min_length=1, max_length=100, pattern=r"^[a-z0-9][a-z0-9_\-]*$")
    name: constr(strip_whitespace=True, min_length=1, max_length=255)
    config_schema: List[ConfigField] = Field(default_factory=list)
    enabled: bool = True


class PluginOut(ApiModel):
    id: UUID
    key: str
    name: str
    enabled: bool
    has_config: bool = False
    config_schema: List[ConfigField] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PluginList(ApiModel):
    plugins: List[PluginOut]


class PluginConfigOut(ApiModel):
    plugin_id: UUID
    key: str
    config_schema: List[ConfigField]
    config: Dict[str, Any] = Field(description="Stored values; secrets are masked as {'_exists': true}")


class PluginConfigUpdate(ApiModel):
    config: Dict[str, Any]


class PluginRunRequest(ApiModel):
    job_name: constr(strip_whitespace=True, min_length=1, max_length=100)


class PluginRunAccepted(ApiModel):
    run_id: UUID
    status: PluginRunStatusEnum


class PluginRunOut(ApiModel):
    id: UUID
    plugin_id: UUID
    job_name: str
    status: PluginRunStatusEnum
    started_at: datetime
    completed_at: Optional[datetime] = None
    events_processed: int
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("metadata_", "metadata")
    )
    duration_ms: Optional[int] = None


class PluginRunSummary(ApiModel):
    total: int
    success: int
    failed: int
    running: int
    pending: int
    avg_events_processed: float
    avg_duration_ms: Optional[float] = None


class PluginRunList(ApiModel):
    runs: List[PluginRunOut]
    total: int
    summary: PluginRunSummary


class PluginLogEntry(ApiModel):
    run_id: UUID
    job_name: str
    status: PluginRunStatusEnum
    started_at: datetime
    completed_at: Optional[datetime] = None
    events_processed: int
    error_message: Optional[str] = None


class PluginLogList(ApiModel):
    logs: List[PluginLogEntry]
    total: int


class PluginEventCreate(ApiModel):
    event_type: constr(strip_whitespace=True, min_length=1, max_length=100)
    raw_data: Dict[str, Any] = Field(default_factory=dict)


class PluginEventOut(ApiModel):
    id: UUID
    plugin_id: UUID
    event_type: str
    status: PluginEventStatusEnum
    ingested_at: datetime
    processed_at: Optional[datetime] = None
    error_message: Optional[str] = None


class PluginEventDetail(PluginEventOut):
    raw_data: Dict[str, Any]


class PluginEventList(ApiModel):
    events: List[PluginEventOut]
    total: int
    page: int
    per_page: int
    total_pages: int


class PluginEventStats(ApiModel):
    total: int
    processed: int
    failed: int
    pending: int
    latest_ingested_at: Optional[datetime] = None
    oldest_ingested_at: Optional[datetime] = None
