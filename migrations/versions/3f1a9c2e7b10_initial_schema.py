"""initial_schema

Revision ID: 3f1a9c2e7b10
Revises:
Create Date: 2026-03-02 08:14:09.412771+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3f1a9c2e7b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # 1. reference data (no FKs except heis -> regions)
    op.create_table('regions',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('code', sa.String(length=20), nullable=False),
    sa.Column('name', sa.String(length=200), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('code')
    )

    op.create_table('heis',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('uii', sa.String(length=50), nullable=False),
    sa.Column('code', sa.String(length=50), nullable=True),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('region_id', sa.UUID(), nullable=True),
    sa.Column('status', sa.String(length=20), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['region_id'], ['regions.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('uii')
    )
    op.create_index('idx_heis_region', 'heis', ['region_id'], unique=False)
    op.create_index('idx_heis_status', 'heis', ['status'], unique=False)

    op.create_table('programs',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('code', sa.String(length=20), nullable=False),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('status', sa.String(length=20), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('code')
    )

    op.create_table('semesters',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('code', sa.String(length=10), nullable=False),
    sa.Column('name', sa.String(length=100), nullable=False),
    sa.Column('sort_order', sa.Integer(), nullable=True),
    sa.Column('is_active', sa.Boolean(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('code')
    )

    op.create_table('academic_years',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('code', sa.String(length=20), nullable=False),
    sa.Column('start_year', sa.Integer(), nullable=False),
    sa.Column('end_year', sa.Integer(), nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint('end_year >= start_year', name='chk_academic_year_order'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('code')
    )

    op.create_table('document_locations',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('sort_order', sa.Integer(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('name')
    )

    # 2. users (FK to heis + regions)
    op.create_table('users',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('email', sa.String(length=255), nullable=False),
    sa.Column('name', sa.String(length=200), nullable=False),
    sa.Column('role', sa.String(length=50), nullable=False),
    sa.Column('hei_id', sa.UUID(), nullable=True),
    sa.Column('region_id', sa.UUID(), nullable=True),
    sa.Column('is_active', sa.Boolean(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('deleted_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['hei_id'], ['heis.id'], ),
    sa.ForeignKeyConstraint(['region_id'], ['regions.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('email')
    )
    op.create_index('idx_users_email', 'users', ['email'], unique=False)
    op.create_index('idx_users_role', 'users', ['role'], unique=False)
    op.create_index('idx_users_hei', 'users', ['hei_id'], unique=False)
    op.create_index('idx_users_region', 'users', ['region_id'], unique=False)

    # 3. liquidations + 1:1 / 1:N children
    op.create_table('liquidations',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('control_no', sa.String(length=50), nullable=False),
    sa.Column('hei_id', sa.UUID(), nullable=False),
    sa.Column('program_id', sa.UUID(), nullable=False),
    sa.Column('academic_year_id', sa.UUID(), nullable=False),
    sa.Column('semester_id', sa.UUID(), nullable=True),
    sa.Column('batch_no', sa.String(length=50), nullable=True),
    sa.Column('created_by', sa.UUID(), nullable=False),
    sa.Column('status', sa.String(length=50), nullable=False),
    sa.Column('liquidation_status', sa.String(length=50), nullable=False),
    sa.Column('document_status', sa.String(length=50), nullable=False),
    sa.Column('remarks', sa.Text(), nullable=True),
    sa.Column('date_submitted', sa.DateTime(), nullable=True),
    sa.Column('reviewed_by', sa.UUID(), nullable=True),
    sa.Column('reviewed_at', sa.DateTime(), nullable=True),
    sa.Column('accountant_reviewed_by', sa.UUID(), nullable=True),
    sa.Column('accountant_reviewed_at', sa.DateTime(), nullable=True),
    sa.Column('coa_endorsed_by', sa.UUID(), nullable=True),
    sa.Column('coa_endorsed_at', sa.DateTime(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.Column('deleted_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint(
        "status IN ('draft', 'for_initial_review', 'returned_to_hei', "
        "'endorsed_to_accounting', 'returned_to_rc', 'endorsed_to_coa', "
        "'approved', 'rejected')",
        name='workflow_status'),
    sa.ForeignKeyConstraint(['academic_year_id'], ['academic_years.id'], ),
    sa.ForeignKeyConstraint(['accountant_reviewed_by'], ['users.id'], ),
    sa.ForeignKeyConstraint(['coa_endorsed_by'], ['users.id'], ),
    sa.ForeignKeyConstraint(['created_by'], ['users.id'], ),
    sa.ForeignKeyConstraint(['hei_id'], ['heis.id'], ),
    sa.ForeignKeyConstraint(['program_id'], ['programs.id'], ),
    sa.ForeignKeyConstraint(['reviewed_by'], ['users.id'], ),
    sa.ForeignKeyConstraint(['semester_id'], ['semesters.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('control_no', name='liquidations_control_no_key')
    )
    op.create_index('idx_liquidations_hei', 'liquidations', ['hei_id'], unique=False)
    op.create_index('idx_liquidations_program', 'liquidations', ['program_id'], unique=False)
    op.create_index('idx_liquidations_status', 'liquidations', ['status'], unique=False)
    op.create_index('idx_liquidations_created_by', 'liquidations', ['created_by'], unique=False)

    op.create_table('liquidation_financials',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('liquidation_id', sa.UUID(), nullable=False),
    sa.Column('amount_received', sa.Numeric(precision=14, scale=2), nullable=True),
    sa.Column('amount_disbursed', sa.Numeric(precision=14, scale=2), nullable=True),
    sa.Column('amount_liquidated', sa.Numeric(precision=14, scale=2), nullable=True),
    sa.Column('amount_refunded', sa.Numeric(precision=14, scale=2), nullable=True),
    sa.Column('number_of_grantees', sa.Integer(), nullable=True),
    sa.Column('date_fund_released', sa.Date(), nullable=True),
    sa.Column('due_date', sa.Date(), nullable=True),
    sa.Column('fund_source', sa.String(length=255), nullable=True),
    sa.Column('purpose', sa.Text(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint('amount_received >= 0', name='chk_fin_received'),
    sa.CheckConstraint('amount_liquidated >= 0', name='chk_fin_liquidated'),
    sa.CheckConstraint('amount_refunded >= 0', name='chk_fin_refunded'),
    sa.ForeignKeyConstraint(['liquidation_id'], ['liquidations.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('liquidation_id')
    )

    op.create_table('liquidation_beneficiaries',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('liquidation_id', sa.UUID(), nullable=False),
    sa.Column('student_no', sa.String(length=50), nullable=True),
    sa.Column('last_name', sa.String(length=100), nullable=False),
    sa.Column('first_name', sa.String(length=100), nullable=False),
    sa.Column('middle_name', sa.String(length=100), nullable=True),
    sa.Column('extension_name', sa.String(length=20), nullable=True),
    sa.Column('award_no', sa.String(length=100), nullable=True),
    sa.Column('date_disbursed', sa.Date(), nullable=True),
    sa.Column('amount', sa.Numeric(precision=14, scale=2), nullable=True),
    sa.Column('remarks', sa.Text(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint('amount >= 0', name='chk_beneficiary_amount'),
    sa.ForeignKeyConstraint(['liquidation_id'], ['liquidations.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_beneficiaries_liquidation', 'liquidation_beneficiaries', ['liquidation_id'], unique=False)

    op.create_table('liquidation_documents',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('liquidation_id', sa.UUID(), nullable=False),
    sa.Column('document_type', sa.String(length=100), nullable=True),
    sa.Column('file_name', sa.String(length=255), nullable=False),
    sa.Column('file_path', sa.String(length=500), nullable=True),
    sa.Column('file_type', sa.String(length=100), nullable=True),
    sa.Column('file_size', sa.BigInteger(), nullable=True),
    sa.Column('gdrive_link', sa.String(length=1000), nullable=True),
    sa.Column('is_gdrive', sa.Boolean(), nullable=True),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('uploaded_by', sa.UUID(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['liquidation_id'], ['liquidations.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['uploaded_by'], ['users.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_documents_liquidation', 'liquidation_documents', ['liquidation_id'], unique=False)

    # 4. append-only trail tables
    op.create_table('liquidation_reviews',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('liquidation_id', sa.UUID(), nullable=False),
    sa.Column('review_type', sa.String(length=50), nullable=False),
    sa.Column('performed_by', sa.UUID(), nullable=False),
    sa.Column('performed_by_name', sa.String(length=200), nullable=False),
    sa.Column('remarks', sa.Text(), nullable=True),
    sa.Column('documents_for_compliance', sa.Text(), nullable=True),
    sa.Column('performed_at', sa.DateTime(), nullable=False),
    sa.Column('seq', sa.BigInteger(), sa.Identity(always=False), nullable=False),
    sa.ForeignKeyConstraint(['liquidation_id'], ['liquidations.id'], ondelete='RESTRICT'),
    sa.ForeignKeyConstraint(['performed_by'], ['users.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('seq')
    )
    op.create_index('idx_reviews_liquidation', 'liquidation_reviews', ['liquidation_id', 'performed_at'], unique=False)

    op.create_table('liquidation_transmittals',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('liquidation_id', sa.UUID(), nullable=False),
    sa.Column('transmittal_reference_no', sa.String(length=255), nullable=False),
    sa.Column('receiver_name', sa.String(length=255), nullable=True),
    sa.Column('document_location_id', sa.UUID(), nullable=True),
    sa.Column('number_of_folders', sa.Integer(), nullable=True),
    sa.Column('folder_location_number', sa.String(length=255), nullable=True),
    sa.Column('group_transmittal', sa.String(length=255), nullable=True),
    sa.Column('other_file_location', sa.String(length=255), nullable=True),
    sa.Column('endorsed_by', sa.UUID(), nullable=False),
    sa.Column('endorsed_at', sa.DateTime(), nullable=False),
    sa.ForeignKeyConstraint(['document_location_id'], ['document_locations.id'], ),
    sa.ForeignKeyConstraint(['endorsed_by'], ['users.id'], ),
    sa.ForeignKeyConstraint(['liquidation_id'], ['liquidations.id'], ondelete='RESTRICT'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('transmittal_reference_no', name='liquidation_transmittals_transmittal_reference_no_key')
    )
    op.create_index('idx_transmittals_liquidation', 'liquidation_transmittals', ['liquidation_id', 'endorsed_at'], unique=False)

    op.create_table('transmittal_location_events',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('transmittal_id', sa.UUID(), nullable=False),
    sa.Column('location_name', sa.String(length=255), nullable=False),
    sa.Column('previous_location', sa.String(length=255), nullable=True),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.Column('changed_by', sa.UUID(), nullable=True),
    sa.Column('changed_at', sa.DateTime(), nullable=False),
    sa.ForeignKeyConstraint(['changed_by'], ['users.id'], ),
    sa.ForeignKeyConstraint(['transmittal_id'], ['liquidation_transmittals.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_location_events_transmittal', 'transmittal_location_events', ['transmittal_id', 'changed_at'], unique=False)

    op.create_table('liquidation_compliance',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('liquidation_id', sa.UUID(), nullable=False),
    sa.Column('documents_required', sa.Text(), nullable=False),
    sa.Column('compliance_status', sa.String(length=50), nullable=False),
    sa.Column('concerns_emailed_at', sa.DateTime(), nullable=True),
    sa.Column('compliance_submitted_at', sa.DateTime(), nullable=True),
    sa.Column('amount_with_complete_docs', sa.Numeric(precision=14, scale=2), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['liquidation_id'], ['liquidations.id'], ondelete='RESTRICT'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_compliance_liquidation', 'liquidation_compliance', ['liquidation_id', 'created_at'], unique=False)

    # 5. control-number counters
    op.create_table('control_number_sequences',
    sa.Column('prefix', sa.String(length=20), nullable=False),
    sa.Column('year', sa.Integer(), nullable=False),
    sa.Column('last_value', sa.Integer(), nullable=False),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint('last_value >= 0', name='chk_control_seq_non_negative'),
    sa.PrimaryKeyConstraint('prefix', 'year', name='pk_control_number_sequences')
    )

    # 6. activity log + notifications
    op.create_table('activity_logs',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('actor_id', sa.UUID(), nullable=True),
    sa.Column('actor_name', sa.String(length=200), nullable=True),
    sa.Column('action', sa.String(length=100), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('entity_type', sa.String(length=50), nullable=False),
    sa.Column('entity_id', sa.UUID(), nullable=True),
    sa.Column('module', sa.String(length=50), nullable=True),
    sa.Column('before_state', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('after_state', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('changed_fields', postgresql.ARRAY(sa.Text()), nullable=True),
    sa.Column('request_id', sa.String(length=64), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['actor_id'], ['users.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_activity_entity', 'activity_logs', ['entity_type', 'entity_id'], unique=False)
    op.create_index('idx_activity_actor', 'activity_logs', ['actor_id'], unique=False)
    op.create_index('idx_activity_created', 'activity_logs', [sa.text('created_at DESC')], unique=False)

    op.create_table('notifications',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('user_id', sa.UUID(), nullable=False),
    sa.Column('actor_id', sa.UUID(), nullable=True),
    sa.Column('actor_name', sa.String(length=200), nullable=True),
    sa.Column('action', sa.String(length=100), nullable=False),
    sa.Column('description', sa.Text(), nullable=False),
    sa.Column('subject_type', sa.String(length=50), nullable=True),
    sa.Column('subject_id', sa.UUID(), nullable=True),
    sa.Column('subject_label', sa.String(length=255), nullable=True),
    sa.Column('module', sa.String(length=50), nullable=True),
    sa.Column('read_at', sa.DateTime(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['actor_id'], ['users.id'], ),
    sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_notifications_user', 'notifications', ['user_id', 'read_at'], unique=False)


def downgrade() -> None:
    op.drop_table('notifications')
    op.drop_table('activity_logs')
    op.drop_table('control_number_sequences')
    op.drop_table('liquidation_compliance')
    op.drop_table('transmittal_location_events')
    op.drop_table('liquidation_transmittals')
    op.drop_table('liquidation_reviews')
    op.drop_table('liquidation_documents')
    op.drop_table('liquidation_beneficiaries')
    op.drop_table('liquidation_financials')
    op.drop_table('liquidations')
    op.drop_table('users')
    op.drop_table('document_locations')
    op.drop_table('academic_years')
    op.drop_table('semesters')
    op.drop_table('programs')
    op.drop_table('heis')
    op.drop_table('regions')
