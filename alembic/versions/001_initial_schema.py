"""Initial schema with registrants table

Revision ID: 001_initial
Revises:
Create Date: 2026-10-16

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'registrants',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('net_id', sa.String(100), nullable=False),
        sa.Column('major', sa.String(255), nullable=False),
        sa.Column('graduation_year', sa.Integer(), nullable=False),
        sa.Column('is_matched', sa.Boolean(), nullable=False, server_default=sa.false()),
        # No foreign key: dangling partner references are healed on read
        sa.Column('matched_with', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
    )

    op.create_index('ix_registrants_email', 'registrants', ['email'], unique=True)
    op.create_index('ix_registrants_net_id', 'registrants', ['net_id'], unique=True)
    op.create_index('ix_registrants_is_matched_major', 'registrants', ['is_matched', 'major'])


def downgrade() -> None:
    op.drop_index('ix_registrants_is_matched_major', table_name='registrants')
    op.drop_index('ix_registrants_net_id', table_name='registrants')
    op.drop_index('ix_registrants_email', table_name='registrants')
    op.drop_table('registrants')
