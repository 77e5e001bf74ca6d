"""initial_schema

Revision ID: 000000000001
Revises: 
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '000000000001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

APPEND_ONLY_TABLES = ("ledger_entries", "job_events")


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'properties',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('address_key', sa.String(length=400), nullable=False, comment='Normalized ADDRESS|CITY|ST|ZIP natural key'),
        sa.Column('address', sa.String(length=255), nullable=False, comment='Standardized street address'),
        sa.Column('city', sa.String(length=100), nullable=True),
        sa.Column('state', sa.String(length=2), nullable=True),
        sa.Column('zip_code', sa.String(length=10), nullable=True),
        sa.Column('county', sa.String(length=100), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('address_key'),
    )
    op.create_index('idx_properties_city_state', 'properties', ['city', 'state'])
    op.create_index('idx_properties_zip_code', 'properties', ['zip_code'])

    op.create_table(
        'violations',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('property_id', sa.String(length=36), nullable=False, comment='References properties table'),
        sa.Column('source_job_id', sa.String(length=36), nullable=True, comment='Ingestion job that created the violation'),
        sa.Column('case_id', sa.String(length=100), nullable=True),
        sa.Column('violation_type', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('opened_date', sa.Date(), nullable=True),
        sa.Column('last_updated', sa.Date(), nullable=True),
        sa.Column('days_open', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_violations_property_id', 'violations', ['property_id'])
    op.create_index('idx_violations_case_id', 'violations', ['case_id'])
    op.create_index('idx_violations_opened_date', 'violations', ['opened_date'])

    op.create_table(
        'ingestion_jobs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('owner_id', sa.String(length=64), nullable=False),
        sa.Column('source_handle', sa.String(length=500), nullable=False),
        sa.Column('filename', sa.String(length=255), nullable=True),
        sa.Column('parent_job_id', sa.String(length=36), nullable=True, comment='Upload that was split into this job'),
        sa.Column('fallback_city', sa.String(length=100), nullable=True),
        sa.Column('fallback_state', sa.String(length=2), nullable=True),
        sa.Column('fallback_county', sa.String(length=100), nullable=True),
        sa.Column('status', sa.Enum('QUEUED', 'PARSING', 'PROCESSING', 'DEDUPING', 'FINALIZING', 'COMPLETE',
                                    'FAILED', name='ingestion_status', native_enum=False, length=20), nullable=False),
        sa.Column('total_rows', sa.Integer(), nullable=False),
        sa.Column('processed_rows', sa.Integer(), nullable=False),
        sa.Column('failed_rows', sa.Integer(), nullable=False),
        sa.Column('properties_created', sa.Integer(), nullable=False),
        sa.Column('violations_created', sa.Integer(), nullable=False),
        sa.Column('warnings', JSONType, nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('processed_rows >= 0 AND processed_rows <= total_rows', name='check_processed_rows_range'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_ingestion_jobs_owner', 'ingestion_jobs', ['owner_id'])
    op.create_index('idx_ingestion_jobs_status', 'ingestion_jobs', ['status'])
    op.create_index('idx_ingestion_jobs_parent', 'ingestion_jobs', ['parent_job_id'])

    op.create_table(
        'staging_rows',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('job_id', sa.String(length=36), nullable=False),
        sa.Column('row_num', sa.Integer(), nullable=False),
        sa.Column('raw', JSONType, nullable=False),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('city', sa.String(length=100), nullable=True),
        sa.Column('state', sa.String(length=2), nullable=True),
        sa.Column('zip_code', sa.String(length=10), nullable=True),
        sa.Column('address_key', sa.String(length=400), nullable=True),
        sa.Column('case_id', sa.String(length=100), nullable=True),
        sa.Column('violation_type', sa.String(length=255), nullable=True),
        sa.Column('violation_status', sa.String(length=50), nullable=True),
        sa.Column('opened_date', sa.Date(), nullable=True),
        sa.Column('last_updated', sa.Date(), nullable=True),
        sa.Column('property_id', sa.String(length=36), nullable=True),
        sa.Column('processed', sa.Boolean(), nullable=False),
        sa.Column('row_error', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['job_id'], ['ingestion_jobs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('job_id', 'row_num', name='uq_staging_rows_job_row'),
    )
    op.create_index('idx_staging_rows_job_key', 'staging_rows', ['job_id', 'address_key'])

    op.create_table(
        'enrichment_runs',
        sa.Column('run_id', sa.String(length=36), nullable=False),
        sa.Column('owner_id', sa.String(length=64), nullable=False),
        sa.Column('settings_snapshot', JSONType, nullable=False),
        sa.Column('total', sa.Integer(), nullable=False),
        sa.Column('queued', sa.Integer(), nullable=False),
        sa.Column('succeeded', sa.Integer(), nullable=False),
        sa.Column('failed', sa.Integer(), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('queued >= 0', name='check_queued_non_negative'),
        sa.CheckConstraint('succeeded + failed + queued = total', name='check_counts_balance'),
        sa.PrimaryKeyConstraint('run_id'),
    )
    op.create_index('idx_enrichment_runs_owner_active', 'enrichment_runs', ['owner_id', 'finished_at'])

    op.create_table(
        'enrichment_outcomes',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('run_id', sa.String(length=36), nullable=False),
        sa.Column('property_id', sa.String(length=36), nullable=False),
        sa.Column('status', sa.Enum('SUCCESS', 'NO_MATCH', 'VENDOR_ERROR', 'TIMEOUT', 'CANCELLED',
                                    name='outcome_status', native_enum=False, length=20), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('contacts_found', sa.Integer(), nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['run_id'], ['enrichment_runs.run_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('run_id', 'property_id', name='uq_enrichment_outcomes_run_property'),
    )

    op.create_table(
        'property_contacts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('property_id', sa.String(length=36), nullable=False),
        sa.Column('run_id', sa.String(length=36), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=40), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('source', sa.String(length=50), nullable=False),
        sa.Column('raw_payload', JSONType, nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_property_contacts_property', 'property_contacts', ['property_id'])

    op.create_table(
        'credit_accounts',
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('user_id'),
    )

    op.create_table(
        'ledger_entries',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=50), nullable=False),
        sa.Column('correlation_id', sa.String(length=64), nullable=True),
        sa.Column('property_id', sa.String(length=36), nullable=True),
        sa.Column('idempotency_key', sa.String(length=200), nullable=True,
                  comment='Set for refunds: refund:{run_id}:{property_id}'),
        sa.Column('meta', JSONType, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('delta <> 0', name='check_delta_non_zero'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key'),
    )
    op.create_index('idx_ledger_entries_user', 'ledger_entries', ['user_id', 'created_at'])
    op.create_index('idx_ledger_entries_correlation', 'ledger_entries', ['correlation_id'])

    op.create_table(
        'consent_records',
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('consented_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('client_hash', sa.String(length=64), nullable=False),
        sa.Column('user_agent', sa.String(length=500), nullable=True),
        sa.PrimaryKeyConstraint('user_id'),
    )

    op.create_table(
        'job_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('job_id', sa.String(length=36), nullable=False),
        sa.Column('type', sa.Enum('QUEUED', 'STARTED', 'REFUNDED', 'DONE',
                                  name='job_event_type', native_enum=False, length=20), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('payload', JSONType, nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_job_events_job_ts', 'job_events', ['job_id', 'timestamp', 'id'])

    # Reject UPDATE/DELETE on append-only tables at the database level too
    if op.get_bind().dialect.name == "postgresql":
        op.execute("""
            CREATE OR REPLACE FUNCTION reject_append_only_change() RETURNS trigger AS $$
            BEGIN
                RAISE EXCEPTION '% is append-only', TG_TABLE_NAME;
            END;
            $$ LANGUAGE plpgsql
        """)
        for table in APPEND_ONLY_TABLES:
            op.execute(
                f"CREATE TRIGGER {table}_append_only BEFORE UPDATE OR DELETE ON {table} "
                f"FOR EACH ROW EXECUTE FUNCTION reject_append_only_change()"
            )


def downgrade() -> None:
    if op.get_bind().dialect.name == "postgresql":
        for table in APPEND_ONLY_TABLES:
            op.execute(f"DROP TRIGGER IF EXISTS {table}_append_only ON {table}")
        op.execute("DROP FUNCTION IF EXISTS reject_append_only_change()")

    op.drop_index('idx_job_events_job_ts', table_name='job_events')
    op.drop_table('job_events')
    op.drop_table('consent_records')
    op.drop_index('idx_ledger_entries_correlation', table_name='ledger_entries')
    op.drop_index('idx_ledger_entries_user', table_name='ledger_entries')
    op.drop_table('ledger_entries')
    op.drop_table('credit_accounts')
    op.drop_index('idx_property_contacts_property', table_name='property_contacts')
    op.drop_table('property_contacts')
    op.drop_table('enrichment_outcomes')
    op.drop_index('idx_enrichment_runs_owner_active', table_name='enrichment_runs')
    op.drop_table('enrichment_runs')
    op.drop_index('idx_staging_rows_job_key', table_name='staging_rows')
    op.drop_table('staging_rows')
    op.drop_index('idx_ingestion_jobs_parent', table_name='ingestion_jobs')
    op.drop_index('idx_ingestion_jobs_status', table_name='ingestion_jobs')
    op.drop_index('idx_ingestion_jobs_owner', table_name='ingestion_jobs')
    op.drop_table('ingestion_jobs')
    op.drop_index('idx_violations_opened_date', table_name='violations')
    op.drop_index('idx_violations_case_id', table_name='violations')
    op.drop_index('idx_violations_property_id', table_name='violations')
    op.drop_table('violations')
    op.drop_index('idx_properties_zip_code', table_name='properties')
    op.drop_index('idx_properties_city_state', table_name='properties')
    op.drop_table('properties')
