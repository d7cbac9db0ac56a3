"""members and credentials

Revision ID: c20251123100000
Revises:
Create Date: 2025-11-23 10:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'c20251123100000'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    existing = set(inspector.get_table_names())

    if 'member' not in existing:
        op.create_table(
            'member',
            sa.Column('id', sa.String(length=36), primary_key=True),
            sa.Column('first_name', sa.String(length=100), nullable=False),
            sa.Column('last_name', sa.String(length=100), nullable=False),
            sa.Column('role', sa.String(length=100), nullable=False),
            sa.Column('join_date', sa.Date(), nullable=False),
            sa.Column('blood_type', sa.String(length=10)),
            sa.Column('curp', sa.String(length=18)),
            sa.Column('emergency_contact', sa.String(length=30)),
            sa.Column('photo_url', sa.Text()),
            sa.Column('status', sa.String(length=10), nullable=False, server_default='ACTIVE'),
            sa.Column('street', sa.String(length=200)),
            sa.Column('house_number', sa.String(length=50)),
            sa.Column('colony', sa.String(length=200)),
            sa.Column('city', sa.String(length=200)),
            sa.Column('postal_code', sa.String(length=10)),
            sa.Column('created_at', sa.DateTime()),
            sa.Column('updated_at', sa.DateTime()),
        )

    if 'credential' not in existing:
        op.create_table(
            'credential',
            sa.Column('id', sa.String(length=36), primary_key=True),
            sa.Column('member_id', sa.String(length=36),
                      sa.ForeignKey('member.id', ondelete='CASCADE'), nullable=False),
            sa.Column('token', sa.String(length=64), nullable=False, unique=True),
            sa.Column('issue_date', sa.Date(), nullable=False),
            sa.Column('expiration_date', sa.Date(), nullable=False),
            sa.Column('status', sa.String(length=10), nullable=False, server_default='ACTIVE'),
            sa.Column('created_at', sa.DateTime()),
        )
        op.create_index('ix_credential_member_id', 'credential', ['member_id'])


def downgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    existing = set(inspector.get_table_names())

    if 'credential' in existing:
        op.drop_index('ix_credential_member_id', table_name='credential')
        op.drop_table('credential')
    if 'member' in existing:
        op.drop_table('member')
