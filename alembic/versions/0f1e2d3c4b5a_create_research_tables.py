"""create_research_tables

Revision ID: 0f1e2d3c4b5a
Revises:
Create Date: 2026-10-12 10:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0f1e2d3c4b5a'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Jobs, articles, job logs, graphs and graph snapshots."""
    op.create_table(
        'research_jobs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('owner_id', sa.Text(), nullable=False),
        sa.Column('topic', sa.Text(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False, server_default='pending'),
        sa.Column('progress', sa.Float(), nullable=False, server_default='0'),
        sa.Column('articles_found', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('articles_processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('graph_id', sa.Text(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('options_json', sa.Text(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('updated_at', sa.Float(), nullable=False),
        sa.Column('completed_at', sa.Float(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_research_jobs_owner_created', 'research_jobs', ['owner_id', 'created_at'], unique=False)

    op.create_table(
        'articles',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('job_id', sa.String(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('title', sa.Text(), nullable=False, server_default=''),
        sa.Column('abstract', sa.Text(), nullable=False, server_default=''),
        sa.Column('authors_json', sa.Text(), nullable=False, server_default='[]'),
        sa.Column('year', sa.Integer(), nullable=True),
        sa.Column('doi', sa.Text(), nullable=False, server_default=''),
        sa.Column('source', sa.Text(), nullable=False, server_default=''),
        sa.Column('source_id', sa.Text(), nullable=False, server_default=''),
        sa.Column('url', sa.Text(), nullable=False, server_default=''),
        sa.Column('citation_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('relevance_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('screening_status', sa.Text(), nullable=False, server_default='pending'),
        sa.Column('screening_reason', sa.Text(), nullable=False, server_default=''),
        sa.Column('extraction_status', sa.Text(), nullable=False, server_default='pending'),
        sa.Column('extraction_error', sa.Text(), nullable=False, server_default=''),
        sa.Column('entities_json', sa.Text(), nullable=False, server_default='[]'),
        sa.Column('relations_json', sa.Text(), nullable=False, server_default='[]'),
        sa.Column('pdf_status', sa.Text(), nullable=False, server_default='none'),
        sa.Column('pdf_path', sa.Text(), nullable=True),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('updated_at', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['job_id'], ['research_jobs.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_articles_job_screening', 'articles', ['job_id', 'screening_status'], unique=False)

    op.create_table(
        'job_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('job_id', sa.String(), nullable=False),
        sa.Column('level', sa.Text(), nullable=False, server_default='info'),
        sa.Column('message', sa.Text(), nullable=False, server_default=''),
        sa.Column('data_json', sa.Text(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['job_id'], ['research_jobs.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_job_logs_job_id_id', 'job_logs', ['job_id', 'id'], unique=False)

    op.create_table(
        'graphs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('owner_id', sa.Text(), nullable=False),
        sa.Column('job_id', sa.Text(), nullable=True),
        sa.Column('name', sa.Text(), nullable=False, server_default=''),
        sa.Column('directed', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('nodes_json', sa.Text(), nullable=False, server_default='[]'),
        sa.Column('edges_json', sa.Text(), nullable=False, server_default='[]'),
        sa.Column('metrics_json', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('updated_at', sa.Float(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_graphs_owner', 'graphs', ['owner_id'], unique=False)

    op.create_table(
        'graph_snapshots',
        sa.Column('graph_id', sa.String(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('nodes_json', sa.Text(), nullable=False, server_default='[]'),
        sa.Column('edges_json', sa.Text(), nullable=False, server_default='[]'),
        sa.Column('metrics_json', sa.Text(), nullable=True),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['graph_id'], ['graphs.id']),
        sa.PrimaryKeyConstraint('graph_id', 'version'),
    )


def downgrade() -> None:
    op.drop_table('graph_snapshots')
    op.drop_index('idx_graphs_owner', table_name='graphs')
    op.drop_table('graphs')
    op.drop_index('idx_job_logs_job_id_id', table_name='job_logs')
    op.drop_table('job_logs')
    op.drop_index('idx_articles_job_screening', table_name='articles')
    op.drop_table('articles')
    op.drop_index('idx_research_jobs_owner_created', table_name='research_jobs')
    op.drop_table('research_jobs')
