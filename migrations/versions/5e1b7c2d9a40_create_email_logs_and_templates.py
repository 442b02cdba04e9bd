"""Create email_logs and email_templates

Revision ID: 5e1b7c2d9a40
Revises:
Create Date: 2026-10-19 12:00:00.000000
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5e1b7c2d9a40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'email_logs',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('timestamp', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('status', sa.Text(), nullable=True),
        sa.Column('recipient', sa.Text(), nullable=True),
        sa.Column('sender', sa.Text(), nullable=True),
        sa.Column('subject', sa.Text(), nullable=True),
        sa.Column('provider', sa.Text(), nullable=True),
        sa.Column('response', sa.Text(), nullable=True),
        sa.Column('error', sa.JSON(), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
    )
    # Newest-first listing + status filter
    op.create_index('ix_email_logs_timestamp', 'email_logs', ['timestamp'], unique=False)
    op.create_index('ix_email_logs_status', 'email_logs', ['status'], unique=False)

    op.create_table(
        'email_templates',
        sa.Column('id', sa.Text(), primary_key=True),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('subject', sa.Text(), nullable=False),
        sa.Column('html', sa.Text(), nullable=False),
        sa.Column('defaults', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False),
    )


def downgrade():
    op.drop_table('email_templates')
    op.drop_index('ix_email_logs_status', table_name='email_logs')
    op.drop_index('ix_email_logs_timestamp', table_name='email_logs')
    op.drop_table('email_logs')
