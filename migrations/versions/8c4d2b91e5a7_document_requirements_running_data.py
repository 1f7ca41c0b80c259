"""document_requirements_running_data

Revision ID: 8c4d2b91e5a7
Revises: 3f1a9c2e7b10
Create Date: 2026-10-16 03:41:27.118204+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '8c4d2b91e5a7'
down_revision: Union[str, None] = '3f1a9c2e7b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table('document_requirements',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('program_id', sa.UUID(), nullable=False),
    sa.Column('code', sa.String(length=50), nullable=False),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('upload_message', sa.Text(), nullable=True),
    sa.Column('sort_order', sa.Integer(), nullable=True),
    sa.Column('is_required', sa.Boolean(), nullable=True),
    sa.Column('is_active', sa.Boolean(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['program_id'], ['programs.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('program_id', 'code', name='uq_document_requirements_program_code')
    )
    op.create_index('idx_document_requirements_program', 'document_requirements', ['program_id', 'sort_order'], unique=False)

    op.add_column('liquidation_documents', sa.Column('document_requirement_id', sa.UUID(), nullable=True))
    op.create_foreign_key(
        'liquidation_documents_document_requirement_id_fkey',
        'liquidation_documents', 'document_requirements',
        ['document_requirement_id'], ['id'], ondelete='SET NULL',
    )
    op.create_unique_constraint(
        'uq_documents_liquidation_requirement',
        'liquidation_documents', ['liquidation_id', 'document_requirement_id'],
    )

    op.create_table('liquidation_running_data',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('liquidation_id', sa.UUID(), nullable=False),
    sa.Column('grantees_liquidated', sa.Integer(), nullable=True),
    sa.Column('amount_complete_docs', sa.Numeric(precision=14, scale=2), nullable=True),
    sa.Column('amount_refunded', sa.Numeric(precision=14, scale=2), nullable=True),
    sa.Column('refund_or_no', sa.String(length=100), nullable=True),
    sa.Column('total_amount_liquidated', sa.Numeric(precision=14, scale=2), nullable=True),
    sa.Column('transmittal_ref_no', sa.String(length=255), nullable=True),
    sa.Column('group_transmittal_ref_no', sa.String(length=255), nullable=True),
    sa.Column('sort_order', sa.Integer(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint('grantees_liquidated >= 0', name='chk_running_grantees'),
    sa.CheckConstraint('amount_complete_docs >= 0', name='chk_running_complete_docs'),
    sa.CheckConstraint('amount_refunded >= 0', name='chk_running_refunded'),
    sa.CheckConstraint('total_amount_liquidated >= 0', name='chk_running_liquidated'),
    sa.ForeignKeyConstraint(['liquidation_id'], ['liquidations.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_running_data_liquidation', 'liquidation_running_data', ['liquidation_id', 'sort_order'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_running_data_liquidation', table_name='liquidation_running_data')
    op.drop_table('liquidation_running_data')
    op.drop_constraint('uq_documents_liquidation_requirement', 'liquidation_documents', type_='unique')
    op.drop_constraint('liquidation_documents_document_requirement_id_fkey', 'liquidation_documents', type_='foreignkey')
    op.drop_column('liquidation_documents', 'document_requirement_id')
    op.drop_index('idx_document_requirements_program', table_name='document_requirements')
    op.drop_table('document_requirements')
