"""Initial portal schema: profiles, projects and assistance requests

Revision ID: 3b7f2c91a4d0
Revises:
Create Date: 2025-11-24 10:12:31.508114

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB


# revision identifiers, used by Alembic.
revision: str = '3b7f2c91a4d0'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create clientes (profiles) table; id is the identity provider subject
    op.create_table(
        'clientes',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('contract', JSONB(), nullable=True),
    )
    op.create_index('ix_clientes_role', 'clientes', ['role'])

    # Create projects table
    op.create_table(
        'projects',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('clientuid', sa.String(36), nullable=False),
        sa.Column('status', sa.String(50), nullable=False, server_default='Pagamento Feito'),
        sa.Column('price', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('payment_condition', sa.Text(), nullable=False, server_default=''),
        sa.Column('delivery_date', sa.Date(), nullable=True),
        sa.Column('files', JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index('ix_projects_clientuid', 'projects', ['clientuid'])
    op.create_index('ix_projects_created_at', 'projects', ['created_at'])

    # Create assistanceRequests table
    op.create_table(
        'assistanceRequests',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('projectId', sa.String(36), nullable=False),
        sa.Column('clientUid', sa.String(36), nullable=False),
        sa.Column('clientName', sa.String(255), nullable=False, server_default=''),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('status', sa.String(20), nullable=False, server_default='Aberto'),
        sa.Column('response', sa.Text(), nullable=False, server_default=''),
        sa.Column('photos', JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['projectId'], ['projects.id']),
    )
    op.create_index('ix_assistanceRequests_projectId', 'assistanceRequests', ['projectId'])
    op.create_index('ix_assistanceRequests_clientUid', 'assistanceRequests', ['clientUid'])
    op.create_index('ix_assistanceRequests_created_at', 'assistanceRequests', ['created_at'])


def downgrade() -> None:
    # Drop tables in reverse order to respect foreign key constraints
    op.drop_table('assistanceRequests')
    op.drop_table('projects')
    op.drop_table('clientes')
