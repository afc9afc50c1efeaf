"""create templates and jobs

Revision ID: 3c1f0a9d2b7e
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "3c1f0a9d2b7e"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # template registry
    op.create_table(
        "templates",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("image_path", sa.String(length=255), nullable=True),
        sa.Column("authors", sa.String(length=255), nullable=True),
        sa.Column("visible", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("vm_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("deployments", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index("ix_templates_name", "templates", ["name"], unique=True)
    op.create_index("ix_templates_id", "templates", ["id"])

    # async pod jobs
    op.create_table(
        "jobs",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )


def downgrade():
    op.drop_table("jobs")
    op.drop_index("ix_templates_id", table_name="templates")
    op.drop_index("ix_templates_name", table_name="templates")
    op.drop_table("templates")
