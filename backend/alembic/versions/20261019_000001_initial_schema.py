"""Initial CRM schema

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19

WHAT:
    Creates every table of the CRM (tenants, users, developers, identity,
    activities, campaigns, activity types, plugins) and seeds the four
    funnel stages.

REFERENCES:
    - devcrm/models.py
    - devcrm/services/activity_types.py:FUNNEL_STAGES
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '20261019_000001'
down_revision = None
branch_labels = None
depends_on = None


UUID = postgresql.UUID(as_uuid=True)

user_role = sa.Enum('admin', 'member', name='userroleenum')
identifier_kind = sa.Enum('email', 'domain', 'phone', 'mlid', 'click_id', 'key_fp', name='identifierkindenum')
run_status = sa.Enum('pending', 'running', 'success', 'failed', name='pluginrunstatusenum')
event_status = sa.Enum('pending', 'processed', 'failed', name='plugineventstatusenum')


def _id():
    return sa.Column('id', UUID, primary_key=True)


def _tenant():
    return sa.Column('tenant_id', UUID, sa.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        'tenants',
        _id(),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'users',
        _id(),
        _tenant(),
        sa.Column('email', sa.String(), nullable=False, index=True),
        sa.Column('display_name', sa.String(), nullable=True),
        sa.Column('role', user_role, nullable=False),
        sa.Column('disabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('last_login_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'email', name='uq_users_tenant_email'),
    )

    op.create_table(
        'auth_credentials',
        sa.Column('user_id', UUID, sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'organizations',
        _id(),
        _tenant(),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('domain_primary', sa.String(), nullable=True),
        sa.Column('attributes', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'name', name='uq_organizations_tenant_name'),
    )

    op.create_table(
        'developers',
        _id(),
        _tenant(),
        sa.Column('display_name', sa.String(), nullable=True),
        sa.Column('primary_email', sa.String(), nullable=True),
        sa.Column('org_id', UUID, sa.ForeignKey('organizations.id', ondelete='SET NULL'), nullable=True),
        sa.Column('consent_analytics', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('tags', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'primary_email', name='uq_developers_tenant_email'),
    )

    op.create_table(
        'developer_identifiers',
        _id(),
        _tenant(),
        sa.Column('developer_id', UUID, sa.ForeignKey('developers.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('kind', identifier_kind, nullable=False),
        sa.Column('value_normalized', sa.String(), nullable=False),
        sa.Column('confidence', sa.Numeric(4, 3), nullable=False),
        sa.Column('attributes', sa.JSON(), nullable=True),
        sa.Column('first_seen', sa.DateTime(), nullable=True),
        sa.Column('last_seen', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('tenant_id', 'kind', 'value_normalized', name='uq_developer_identifiers_tenant_kind_value'),
    )

    op.create_table(
        'developer_merge_logs',
        _id(),
        _tenant(),
        sa.Column('into_developer_id', UUID, sa.ForeignKey('developers.id', ondelete='CASCADE'), nullable=False),
        # Source developer is deleted by the merge, so no FK
        sa.Column('from_developer_id', UUID, nullable=False),
        sa.Column('reason', sa.String(), nullable=True),
        sa.Column('evidence', sa.JSON(), nullable=True),
        sa.Column('merged_at', sa.DateTime(), nullable=True),
        sa.Column('merged_by', UUID, sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
    )

    op.create_table(
        'accounts',
        _id(),
        _tenant(),
        sa.Column('developer_id', UUID, sa.ForeignKey('developers.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('provider', sa.String(), nullable=False),
        sa.Column('external_user_id', sa.String(), nullable=False),
        sa.Column('handle', sa.String(), nullable=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('profile_url', sa.String(), nullable=True),
        sa.Column('confidence', sa.Numeric(4, 3), nullable=False),
        sa.Column('attributes', sa.JSON(), nullable=True),
        sa.Column('first_seen', sa.DateTime(), nullable=True),
        sa.Column('last_seen', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'provider', 'external_user_id', name='uq_accounts_tenant_provider_external'),
    )

    op.create_table(
        'campaigns',
        _id(),
        _tenant(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('channel', sa.String(), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('budget_total', sa.Numeric(), nullable=True),
        sa.Column('attributes', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'name', name='uq_campaigns_tenant_name'),
    )

    op.create_table(
        'budgets',
        _id(),
        _tenant(),
        sa.Column('campaign_id', UUID, sa.ForeignKey('campaigns.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('category', sa.String(), nullable=False),
        sa.Column('amount', sa.Numeric(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('spent_at', sa.Date(), nullable=False),
        sa.Column('source', sa.String(), nullable=True),
        sa.Column('memo', sa.Text(), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'resources',
        _id(),
        _tenant(),
        sa.Column('category', sa.String(), nullable=False),
        sa.Column('group_key', sa.String(), nullable=True),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('url', sa.String(), nullable=True),
        sa.Column('external_id', sa.String(), nullable=True),
        sa.Column('campaign_id', UUID, sa.ForeignKey('campaigns.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('attributes', sa.JSON(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'activities',
        _id(),
        sa.Column('tenant_id', UUID, sa.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False),
        sa.Column('developer_id', UUID, sa.ForeignKey('developers.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('account_id', UUID, sa.ForeignKey('accounts.id', ondelete='SET NULL'), nullable=True),
        sa.Column('anon_id', sa.String(), nullable=True),
        sa.Column('resource_id', UUID, sa.ForeignKey('resources.id', ondelete='SET NULL'), nullable=True),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('occurred_at', sa.DateTime(), nullable=False),
        sa.Column('recorded_at', sa.DateTime(), nullable=False),
        sa.Column('source', sa.String(), nullable=False),
        sa.Column('source_ref', sa.String(), nullable=True),
        sa.Column('category', sa.String(), nullable=True),
        sa.Column('group_key', sa.String(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('confidence', sa.Numeric(4, 3), nullable=False),
        sa.Column('value', sa.Numeric(), nullable=True),
        sa.Column('dedup_key', sa.String(), nullable=True),
        sa.Column('ingested_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('tenant_id', 'dedup_key', name='uq_activities_tenant_dedup_key'),
    )
    op.create_index('ix_activities_tenant_occurred_at', 'activities', ['tenant_id', 'occurred_at'])
    op.create_index('ix_activities_tenant_action', 'activities', ['tenant_id', 'action'])

    op.create_table(
        'activity_campaigns',
        _id(),
        _tenant(),
        sa.Column('activity_id', UUID, sa.ForeignKey('activities.id', ondelete='CASCADE'), nullable=False),
        sa.Column('campaign_id', UUID, sa.ForeignKey('campaigns.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('weight', sa.Numeric(6, 3), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('tenant_id', 'activity_id', 'campaign_id', name='uq_activity_campaigns_tenant_activity_campaign'),
    )

    funnel_stages = op.create_table(
        'funnel_stages',
        sa.Column('stage_key', sa.String(), primary_key=True),
        sa.Column('order_no', sa.Integer(), nullable=False, unique=True),
        sa.Column('title', sa.String(), nullable=False),
    )
    op.bulk_insert(
        funnel_stages,
        [
            {'stage_key': 'awareness', 'order_no': 1, 'title': 'Awareness'},
            {'stage_key': 'engagement', 'order_no': 2, 'title': 'Engagement'},
            {'stage_key': 'adoption', 'order_no': 3, 'title': 'Adoption'},
            {'stage_key': 'advocacy', 'order_no': 4, 'title': 'Advocacy'},
        ],
    )

    op.create_table(
        'activity_types',
        _id(),
        _tenant(),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('stage_key', sa.String(), sa.ForeignKey('funnel_stages.stage_key'), nullable=True),
        sa.Column('icon_name', sa.String(255), nullable=False),
        sa.Column('color_class', sa.String(255), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'action', name='uq_activity_types_tenant_action'),
    )

    op.create_table(
        'plugins',
        _id(),
        _tenant(),
        sa.Column('key', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('config', sa.JSON(), nullable=True),
        sa.Column('config_schema', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'key', name='uq_plugins_tenant_key'),
    )

    op.create_table(
        'plugin_runs',
        _id(),
        _tenant(),
        sa.Column('plugin_id', UUID, sa.ForeignKey('plugins.id', ondelete='CASCADE'), nullable=False),
        sa.Column('job_name', sa.String(), nullable=False),
        sa.Column('status', run_status, nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('events_processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
    )
    op.create_index('ix_plugin_runs_plugin_started_at', 'plugin_runs', ['plugin_id', 'started_at'])

    op.create_table(
        'plugin_events_raw',
        _id(),
        _tenant(),
        sa.Column('plugin_id', UUID, sa.ForeignKey('plugins.id', ondelete='CASCADE'), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('raw_data', sa.JSON(), nullable=False),
        sa.Column('ingested_at', sa.DateTime(), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('status', event_status, nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
    )
    op.create_index('ix_plugin_events_raw_plugin_status', 'plugin_events_raw', ['plugin_id', 'status'])


def downgrade() -> None:
    op.drop_index('ix_plugin_events_raw_plugin_status', table_name='plugin_events_raw')
    op.drop_table('plugin_events_raw')
    op.drop_index('ix_plugin_runs_plugin_started_at', table_name='plugin_runs')
    op.drop_table('plugin_runs')
    op.drop_table('plugins')
    op.drop_table('activity_types')
    op.drop_table('funnel_stages')
    op.drop_table('activity_campaigns')
    op.drop_index('ix_activities_tenant_action', table_name='activities')
    op.drop_index('ix_activities_tenant_occurred_at', table_name='activities')
    op.drop_table('activities')
    op.drop_table('resources')
    op.drop_table('budgets')
    op.drop_table('campaigns')
    op.drop_table('accounts')
    op.drop_table('developer_merge_logs')
    op.drop_table('developer_identifiers')
    op.drop_table('developers')
    op.drop_table('organizations')
    op.drop_table('auth_credentials')
    op.drop_table('users')
    op.drop_table('tenants')

    for enum_type in (event_status, run_status, identifier_kind, user_role):
        enum_type.drop(op.get_bind(), checkfirst=True)
