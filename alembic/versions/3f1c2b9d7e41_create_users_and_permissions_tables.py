"""create users and permissions tables

Revision ID: 3f1c2b9d7e41
Revises:
Create Date: 2026-10-18 10:12:41.318204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f1c2b9d7e41'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

USER_ROLES = (
    'CUSTOMER', 'ADMIN', 'PHARMACY_STAFF', 'PHARMACIST', 'DELIVERY_PERSON',
    'SUPER_ADMIN', 'MANAGER', 'SUPPORT', 'VIEWER',
)


def upgrade() -> None:
    """Upgrade schema."""
    userrole = sa.Enum(*USER_ROLES, name='userrole')

    op.create_table('user',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('sid', sa.String(length=22), nullable=False),
        sa.Column('username', sa.String(length=100), nullable=False),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('first_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('role', userrole, nullable=False),
        sa.Column('password_hash', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('last_login', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_user_sid'), 'user', ['sid'], unique=True)
    op.create_index(op.f('ix_user_username'), 'user', ['username'], unique=True)
    op.create_index(op.f('ix_user_email'), 'user', ['email'], unique=True)
    op.create_index(op.f('ix_user_phone'), 'user', ['phone'], unique=False)

    op.create_table('permission',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('sid', sa.String(length=22), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('category', sa.String(length=50), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_permission_sid'), 'permission', ['sid'], unique=True)
    op.create_index(op.f('ix_permission_name'), 'permission', ['name'], unique=True)

    op.create_table('rolepermission',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('sid', sa.String(length=22), nullable=False),
        sa.Column('role', userrole, nullable=False),
        sa.Column('permission_sid', sa.String(length=22), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['permission_sid'], ['permission.sid'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('role', 'permission_sid', name='uq_rolepermission_role_permission')
    )
    op.create_index(op.f('ix_rolepermission_sid'), 'rolepermission', ['sid'], unique=True)
    op.create_index(op.f('ix_rolepermission_role'), 'rolepermission', ['role'], unique=False)

    op.create_table('userpermission',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('sid', sa.String(length=22), nullable=False),
        sa.Column('user_sid', sa.String(length=22), nullable=False),
        sa.Column('permission_sid', sa.String(length=22), nullable=False),
        sa.Column('granted', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_sid'], ['user.sid'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['permission_sid'], ['permission.sid'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_sid', 'permission_sid', name='uq_userpermission_user_permission')
    )
    op.create_index(op.f('ix_userpermission_sid'), 'userpermission', ['sid'], unique=True)
    op.create_index(op.f('ix_userpermission_user_sid'), 'userpermission', ['user_sid'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f('ix_userpermission_user_sid'), table_name='userpermission')
    op.drop_index(op.f('ix_userpermission_sid'), table_name='userpermission')
    op.drop_table('userpermission')

    op.drop_index(op.f('ix_rolepermission_role'), table_name='rolepermission')
    op.drop_index(op.f('ix_rolepermission_sid'), table_name='rolepermission')
    op.drop_table('rolepermission')

    op.drop_index(op.f('ix_permission_name'), table_name='permission')
    op.drop_index(op.f('ix_permission_sid'), table_name='permission')
    op.drop_table('permission')

    op.drop_index(op.f('ix_user_phone'), table_name='user')
    op.drop_index(op.f('ix_user_email'), table_name='user')
    op.drop_index(op.f('ix_user_username'), table_name='user')
    op.drop_index(op.f('ix_user_sid'), table_name='user')
    op.drop_table('user')

    sa.Enum(name='userrole').drop(op.get_bind(), checkfirst=True)
