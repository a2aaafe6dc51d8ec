"""pls_schema

Revision ID: 001_pls_schema
Revises:
Create Date: 2026-10-19

Creates:
- user_profiles (uid <-> e-mail directory used for project sharing)
- pls_projects (project document as JSONB, owner/members for access control)

Guarded with table-existence checks so it is safe to run after
Base.metadata.create_all() already created the tables.
"""
import logging

import sqlalchemy as sa
from alembic import op
from sqlalchemy import text
from sqlalchemy.dialects import postgresql

revision = '001_pls_schema'
down_revision = None
branch_labels = None
depends_on = None

logger = logging.getLogger("alembic.001")


def _table_exists(conn, table_name: str) -> bool:
    result = conn.execute(
        text(
            "SELECT EXISTS("
            "  SELECT 1 FROM information_schema.tables"
            "  WHERE table_name = :tname"
            ")"
        ),
        {"tname": table_name},
    )
    return bool(result.scalar())


def upgrade() -> None:
    conn = op.get_bind()

    if not _table_exists(conn, 'user_profiles'):
        op.create_table(
            'user_profiles',
            sa.Column('id', sa.String(128), primary_key=True),
            sa.Column('email', sa.String(255), nullable=False, unique=True),
            sa.Column('display_name', sa.String(255), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        logger.info("Created user_profiles")

    if not _table_exists(conn, 'pls_projects'):
        op.create_table(
            'pls_projects',
            sa.Column('id', postgresql.UUID(as_uuid=False), primary_key=True),
            sa.Column('owner_id', sa.String(128), nullable=False),
            sa.Column('members', postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
            sa.Column('name', sa.String(255), nullable=False),
            sa.Column('cost_of_works', sa.Numeric(18, 2), server_default='0'),
            sa.Column('document', postgresql.JSONB(), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index('ix_pls_projects_owner', 'pls_projects', ['owner_id'])
        op.create_index('ix_pls_projects_members', 'pls_projects', ['members'], postgresql_using='gin')
        logger.info("Created pls_projects")


def downgrade() -> None:
    conn = op.get_bind()

    if _table_exists(conn, 'pls_projects'):
        op.drop_index('ix_pls_projects_members', table_name='pls_projects')
        op.drop_index('ix_pls_projects_owner', table_name='pls_projects')
        op.drop_table('pls_projects')
    if _table_exists(conn, 'user_profiles'):
        op.drop_table('user_profiles')
