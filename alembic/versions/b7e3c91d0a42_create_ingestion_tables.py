"""create repos, content and ingestion_jobs tables

Revision ID: b7e3c91d0a42
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = 'b7e3c91d0a42'
down_revision = None
branch_labels = None
depends_on = None

_id_type = sa.BigInteger().with_variant(sa.Integer(), 'sqlite')
_string_list = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade():
    op.create_table(
        'repos',
        sa.Column('id', _id_type, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=False),
        sa.Column('owner', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('full_name'),
    )
    op.create_index('ix_repos_owner', 'repos', ['owner'])

    op.create_table(
        'pull_requests',
        sa.Column('id', sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column('repository_id', _id_type, nullable=False),
        sa.Column('number', sa.Integer(), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('body', sa.Text(), nullable=True),
        sa.Column('author', sa.String(length=255), nullable=False),
        sa.Column('state', sa.String(length=50), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('merged_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('files_changed', _string_list, nullable=False),
        sa.Column('labels', _string_list, nullable=False),
        sa.ForeignKeyConstraint(['repository_id'], ['repos.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('repository_id', 'number', name='uq_pull_requests_repo_number'),
    )
    op.create_index('idx_pull_requests_repo_created', 'pull_requests', ['repository_id', 'created_at'])
    op.create_index('idx_pull_requests_repo_author', 'pull_requests', ['repository_id', 'author'])

    op.create_table(
        'issues',
        sa.Column('id', sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column('repository_id', _id_type, nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('body', sa.Text(), nullable=True),
        sa.Column('author', sa.String(length=255), nullable=False),
        sa.Column('state', sa.String(length=50), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('closed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('labels', _string_list, nullable=False),
        sa.ForeignKeyConstraint(['repository_id'], ['repos.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_issues_repo_created', 'issues', ['repository_id', 'created_at'])
    op.create_index('idx_issues_repo_author', 'issues', ['repository_id', 'author'])

    op.create_table(
        'commits',
        sa.Column('sha', sa.String(length=40), nullable=False),
        sa.Column('repository_id', _id_type, nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('author', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('files_changed', _string_list, nullable=False),
        sa.ForeignKeyConstraint(['repository_id'], ['repos.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('sha'),
    )
    op.create_index('idx_commits_repo_created', 'commits', ['repository_id', 'created_at'])
    op.create_index('idx_commits_repo_author', 'commits', ['repository_id', 'author'])

    op.create_table(
        'ingestion_jobs',
        sa.Column('id', _id_type, nullable=False),
        sa.Column('repository_id', _id_type, nullable=False),
        sa.Column('status', sa.String(length=50), server_default='pending', nullable=False),
        sa.Column('requested_by', sa.String(length=255), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('started_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('finished_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['repository_id'], ['repos.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_ingestion_jobs_repository_id', 'ingestion_jobs', ['repository_id'])


def downgrade():
    op.drop_table('ingestion_jobs')
    op.drop_table('commits')
    op.drop_table('issues')
    op.drop_table('pull_requests')
    op.drop_index('ix_repos_owner', table_name='repos')
    op.drop_table('repos')
