"""SQLAlchemy ORM models and enums.

This module defines the CRM schema using UUID primary keys and explicit
relationships. Every tenant-owned table carries a `tenant_id` column; the
application scopes all queries by it (see `devcrm/tenancy.py`).
Authentication secrets are stored in a separate `auth_credentials` table to
keep the `users` table clean.
"""

import uuid
from datetime import datetime
import enum

from sqlalchemy import Column, String, DateTime, Date, Enum, Integer, ForeignKey, Numeric, JSON, Text, Boolean, UniqueConstraint, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, declarative_base


# Single Base used by the entire application
Base = declarative_base()


# Enums ---------------------------------------------------------

class UserRoleEnum(str, enum.Enum):
    admin = "admin"
    member = "member"


class FunnelStageKey(str, enum.Enum):
    """The four fixed developer-journey phases, in funnel order."""
    awareness = "awareness"
    engagement = "engagement"
    adoption = "adoption"
    advocacy = "advocacy"


class IdentifierKindEnum(str, enum.Enum):
    email = "email"
    domain = "domain"
    phone = "phone"
    mlid = "mlid"
    click_id = "click_id"
    key_fp = "key_fp"


class PluginRunStatusEnum(str, enum.Enum):
    pending = "pending"
    running = "running"
    success = "success"
    failed = "failed"


class PluginEventStatusEnum(str, enum.Enum):
    pending = "pending"
    processed = "processed"
    failed = "failed"


def _enum_column(enum_cls, **kwargs):
    return Column(Enum(enum_cls, values_callable=lambda obj: [e.value for e in obj]), **kwargs)


# Core models ----------------------------------------------------

class Tenant(Base):
    """Tenant represents an isolated customer account.

    All CRM data (developers, activities, campaigns, plugins) belongs to
    exactly one tenant and is never visible to another.
    """
    __tablename__ = "tenants"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    users = relationship("User", back_populates="tenant", cascade="all, delete-orphan")

    # This is used to display the model in the admin interface.
    def __str__(self):
        return self.name


class User(Base):
    """A person who can sign in to a tenant's dashboard.

    Users authenticate via email/password. Email is unique per tenant.
    """
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String, index=True, nullable=False)
    display_name = Column(String, nullable=True)
    role = _enum_column(UserRoleEnum, nullable=False, default=UserRoleEnum.member)
    disabled = Column(Boolean, nullable=False, default=False)
    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tenant = relationship("Tenant", back_populates="users")

    # 1:1 credential for local password-based auth
    credential = relationship("AuthCredential", back_populates="user", uselist=False, cascade="all, delete-orphan")

    def __str__(self):
        return f"{self.display_name or self.email} ({self.email})"


class AuthCredential(Base):
    __tablename__ = "auth_credentials"

    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="credential")

    def __str__(self):
        return f"Credential for {self.user.email if self.user else 'Unknown'}"


class ApiToken(Base):
    """Bearer token for non-browser clients (webhooks, scripts).

    Only the sha256 of the token is stored; `token_prefix` is kept for display.
    A token acts for its tenant within `scopes` until revoked or expired.
    """
    __tablename__ = "api_tokens"
    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_api_tokens_tenant_name"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    token_prefix = Column(String(16), nullable=False)
    token_hash = Column(String(64), nullable=False, unique=True)
    scopes = Column(JSON, nullable=False, default=list)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    last_used_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    revoked_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __str__(self):
        return f"{self.name} ({self.token_prefix}...)"


# Developers & identity -------------------------------------------

class Organization(Base):
    """Company or community that developers belong to."""
    __tablename__ = "organizations"
    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_organizations_tenant_name"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    domain_primary = Column(String, nullable=True)
    attributes = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    developers = relationship("Developer", back_populates="organization")

    def __str__(self):
        return self.name


class Developer(Base):
    """A tracked individual identity.

    WHAT: Person whose activities move through the funnel
    WHY: Unique-developer counts drive every funnel and ROI statistic
    REFERENCES:
      - devcrm/services/developers.py: CRUD
      - devcrm/services/identity.py: identifiers, resolution and merge
    """
    __tablename__ = "developers"
    __table_args__ = (UniqueConstraint("tenant_id", "primary_email", name="uq_developers_tenant_email"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    display_name = Column(String, nullable=True)
    primary_email = Column(String, nullable=True)  # stored lower-cased
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True)
    consent_analytics = Column(Boolean, nullable=False, default=True)
    tags = Column(JSON, nullable=True, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    organization = relationship("Organization", back_populates="developers")
    identifiers = relationship("DeveloperIdentifier", back_populates="developer", cascade="all, delete-orphan")
    accounts = relationship("Account", back_populates="developer")

    def __str__(self):
        return self.display_name or self.primary_email or str(self.id)


class DeveloperIdentifier(Base):
    """Normalized identifier (email, phone, domain, ...) claimed by a developer.

    A (tenant, kind, value) triple belongs to at most one developer. A claim
    from a second developer is a conflict that requires a manual merge.
    """
    __tablename__ = "developer_identifiers"
    __table_args__ = (
        UniqueConstraint("tenant_id", "kind", "value_normalized", name="uq_developer_identifiers_tenant_kind_value"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    developer_id = Column(UUID(as_uuid=True), ForeignKey("developers.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = _enum_column(IdentifierKindEnum, nullable=False)
    value_normalized = Column(String, nullable=False)
    confidence = Column(Numeric(4, 3), nullable=False, default=1.0)
    attributes = Column(JSON, nullable=True)
    first_seen = Column(DateTime, default=datetime.utcnow)
    last_seen = Column(DateTime, default=datetime.utcnow)

    developer = relationship("Developer", back_populates="identifiers")

    def __str__(self):
        return f"{self.kind}: {self.value_normalized}"


class DeveloperMergeLog(Base):
    """Audit trail of developer merges.

    `from_developer_id` is not a foreign key: the source developer is deleted
    by the merge and the log must outlive it.
    """
    __tablename__ = "developer_merge_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    into_developer_id = Column(UUID(as_uuid=True), ForeignKey("developers.id", ondelete="CASCADE"), nullable=False)
    from_developer_id = Column(UUID(as_uuid=True), nullable=False)
    reason = Column(String, nullable=True)
    evidence = Column(JSON, nullable=True)
    merged_at = Column(DateTime, default=datetime.utcnow)
    merged_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


class Account(Base):
    """External account (GitHub, Slack, X, ...) optionally linked to a developer."""
    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("tenant_id", "provider", "external_user_id", name="uq_accounts_tenant_provider_external"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    developer_id = Column(UUID(as_uuid=True), ForeignKey("developers.id", ondelete="SET NULL"), nullable=True, index=True)
    provider = Column(String, nullable=False)
    external_user_id = Column(String, nullable=False)
    handle = Column(String, nullable=True)
    email = Column(String, nullable=True)
    profile_url = Column(String, nullable=True)
    confidence = Column(Numeric(4, 3), nullable=False, default=0.8)
    attributes = Column(JSON, nullable=True)
    first_seen = Column(DateTime, nullable=True)
    last_seen = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    developer = relationship("Developer", back_populates="accounts")

    def __str__(self):
        return f"{self.provider}:{self.handle or self.external_user_id}"


# Campaigns -------------------------------------------------------

class Campaign(Base):
    """A named marketing/outreach effort.

    Owns budgets (cost lines) and is linked to activities through
    `activity_campaigns` for ROI calculation.
    """
    __tablename__ = "campaigns"
    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_campaigns_tenant_name"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    channel = Column(String, nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    budget_total = Column(Numeric(), nullable=True)
    attributes = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    budgets = relationship("Budget", back_populates="campaign", cascade="all, delete-orphan")
    activity_links = relationship("ActivityCampaign", back_populates="campaign", cascade="all, delete-orphan")
    resources = relationship("Resource", back_populates="campaign")
    shortlinks = relationship("Shortlink", back_populates="campaign")

    def __str__(self):
        return self.name


class Budget(Base):
    """Cost line item belonging to exactly one campaign."""
    __tablename__ = "budgets"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    campaign_id = Column(UUID(as_uuid=True), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True)
    category = Column(String, nullable=False)  # "ad", "event", "swag", ...
    amount = Column(Numeric(), nullable=False)
    currency = Column(String(3), nullable=False, default="JPY")
    spent_at = Column(Date, nullable=False)
    source = Column(String, nullable=True)
    memo = Column(Text, nullable=True)
    meta = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    campaign = relationship("Campaign", back_populates="budgets")

    def __str__(self):
        return f"{self.category}: {self.amount} {self.currency}"


class Resource(Base):
    """Trackable asset (blog post, event page, repo) optionally tied to a campaign."""
    __tablename__ = "resources"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    category = Column(String, nullable=False)
    group_key = Column(String, nullable=True)
    title = Column(String, nullable=True)
    url = Column(String, nullable=True)
    external_id = Column(String, nullable=True)
    campaign_id = Column(UUID(as_uuid=True), ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True, index=True)
    attributes = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    campaign = relationship("Campaign", back_populates="resources")

    def __str__(self):
        return self.title or self.url or str(self.id)


class Shortlink(Base):
    """Short tracking URL (`/c/{key}`) that redirects to `target_url`.

    Each redirect records a `click` activity with source "shortlink" and
    `source_ref` set to the shortlink id; click counts are derived from those.
    Keys are globally unique since the redirect is resolved before any tenant is known.
    """
    __tablename__ = "shortlinks"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    key = Column(String(20), nullable=False, unique=True)
    target_url = Column(Text, nullable=False)
    campaign_id = Column(UUID(as_uuid=True), ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True, index=True)
    resource_id = Column(UUID(as_uuid=True), ForeignKey("resources.id", ondelete="SET NULL"), nullable=True)
    attributes = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    campaign = relationship("Campaign", back_populates="shortlinks")

    def __str__(self):
        return f"/c/{self.key} -> {self.target_url}"


# Activities & funnel ---------------------------------------------

class Activity(Base):
    """An event performed by a developer, account or anonymous visitor.

    WHAT: Append-mostly event log (clicks, signups, posts, ...)
    WHY: Source of truth for funnel stage membership and campaign value
    REFERENCES:
      - devcrm/services/activities.py: CRUD and validation
      - devcrm/services/funnel.py: stage statistics
      - devcrm/services/roi.py: campaign value
    """
    __tablename__ = "activities"
    __table_args__ = (
        UniqueConstraint("tenant_id", "dedup_key", name="uq_activities_tenant_dedup_key"),
        Index("ix_activities_tenant_occurred_at", "tenant_id", "occurred_at"),
        Index("ix_activities_tenant_action", "tenant_id", "action"),
        Index("ix_activities_tenant_source_ref", "tenant_id", "source", "source_ref"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    developer_id = Column(UUID(as_uuid=True), ForeignKey("developers.id", ondelete="SET NULL"), nullable=True, index=True)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True)
    anon_id = Column(String, nullable=True)
    resource_id = Column(UUID(as_uuid=True), ForeignKey("resources.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(100), nullable=False)
    occurred_at = Column(DateTime, nullable=False)
    recorded_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    source = Column(String, nullable=False)
    source_ref = Column(String, nullable=True)
    category = Column(String, nullable=True)
    group_key = Column(String, nullable=True)
    metadata_ = Column("metadata", JSON, nullable=True)
    confidence = Column(Numeric(4, 3), nullable=False, default=1.0)
    value = Column(Numeric(), nullable=True)  # Monetary value used for ROI
    dedup_key = Column(String, nullable=True)
    ingested_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    developer = relationship("Developer")
    campaign_links = relationship("ActivityCampaign", back_populates="activity", cascade="all, delete-orphan")

    def __str__(self):
        return f"{self.action} @ {self.occurred_at}"


class ActivityCampaign(Base):
    """Attribution of an activity to a campaign, with a weight."""
    __tablename__ = "activity_campaigns"
    __table_args__ = (
        UniqueConstraint("tenant_id", "activity_id", "campaign_id", name="uq_activity_campaigns_tenant_activity_campaign"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    activity_id = Column(UUID(as_uuid=True), ForeignKey("activities.id", ondelete="CASCADE"), nullable=False)
    campaign_id = Column(UUID(as_uuid=True), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True)
    weight = Column(Numeric(6, 3), nullable=False, default=1.0)
    created_at = Column(DateTime, default=datetime.utcnow)

    activity = relationship("Activity", back_populates="campaign_links")
    campaign = relationship("Campaign", back_populates="activity_links")


class FunnelStage(Base):
    """Static reference data: the four funnel stages and their order."""
    __tablename__ = "funnel_stages"

    stage_key = Column(String, primary_key=True)
    order_no = Column(Integer, nullable=False, unique=True)
    title = Column(String, nullable=False)

    def __str__(self):
        return self.title


class ActivityType(Base):
    """Tenant-scoped activity action settings.

    Doubles as the action→stage map: an activity counts toward the funnel
    stage of the activity type with the same action. A null `stage_key`
    means the action is tracked but not part of the funnel.
    """
    __tablename__ = "activity_types"
    __table_args__ = (UniqueConstraint("tenant_id", "action", name="uq_activity_types_tenant_action"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(String(100), nullable=False)
    stage_key = Column(String, ForeignKey("funnel_stages.stage_key"), nullable=True)
    icon_name = Column(String(255), nullable=False, default="heroicons:bolt")
    color_class = Column(String(255), nullable=False, default="text-gray-600 bg-gray-100 border-gray-200")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __str__(self):
        return f"{self.action} -> {self.stage_key or '-'}"


# Plugins ---------------------------------------------------------

class Plugin(Base):
    """Installed integration for a tenant.

    `config` holds the tenant's settings with secret fields Fernet-encrypted;
    `config_schema` describes the fields and is used to validate and mask them.
    """
    __tablename__ = "plugins"
    __table_args__ = (UniqueConstraint("tenant_id", "key", name="uq_plugins_tenant_key"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    key = Column(String, nullable=False)
    name = Column(String, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    config = Column(JSON, nullable=True)
    config_schema = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    runs = relationship("PluginRun", back_populates="plugin", cascade="all, delete-orphan")
    events = relationship("PluginEventRaw", back_populates="plugin", cascade="all, delete-orphan")

    def __str__(self):
        return f"{self.name} ({self.key})"


class PluginRun(Base):
    """Execution history of a plugin job."""
    __tablename__ = "plugin_runs"
    __table_args__ = (Index("ix_plugin_runs_plugin_started_at", "plugin_id", "started_at"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    plugin_id = Column(UUID(as_uuid=True), ForeignKey("plugins.id", ondelete="CASCADE"), nullable=False)
    job_name = Column(String, nullable=False)
    status = _enum_column(PluginRunStatusEnum, nullable=False, default=PluginRunStatusEnum.pending)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    events_processed = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    metadata_ = Column("metadata", JSON, nullable=True)

    plugin = relationship("Plugin", back_populates="runs")

    def __str__(self):
        return f"{self.job_name} [{self.status}]"


class PluginEventRaw(Base):
    """Immutable raw payload received from a plugin, before conversion to an activity."""
    __tablename__ = "plugin_events_raw"
    __table_args__ = (Index("ix_plugin_events_raw_plugin_status", "plugin_id", "status"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    plugin_id = Column(UUID(as_uuid=True), ForeignKey("plugins.id", ondelete="CASCADE"), nullable=False)
    event_type = Column(String, nullable=False)
    raw_data = Column(JSON, nullable=False, default=dict)
    ingested_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    processed_at = Column(DateTime, nullable=True)
    status = _enum_column(PluginEventStatusEnum, nullable=False, default=PluginEventStatusEnum.pending)
    error_message = Column(Text, nullable=True)

    plugin = relationship("Plugin", back_populates="events")

    def __str__(self):
        return f"{self.event_type} - {self.status} - {self.ingested_at}"
