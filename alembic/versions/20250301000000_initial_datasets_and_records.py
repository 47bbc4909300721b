"""Datasets and vulnerability records.

Revision ID: 20250301000000
Revises:
Create Date: 2025-03-01

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20250301000000"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "datasets",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("file_name", sa.String(length=512), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("record_count", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_datasets_created_at"),
        "datasets",
        ["created_at"],
        unique=False,
    )

    op.create_table(
        "vulnerability_records",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("dataset_id", sa.String(length=36), nullable=False),
        sa.Column("source_row", sa.Integer(), nullable=False),
        sa.Column("cve_id", sa.String(length=255), nullable=False),
        sa.Column("product", sa.String(length=1024), nullable=False),
        sa.Column("component", sa.String(length=1024), nullable=False, server_default=""),
        sa.Column("original_severity", sa.String(length=16), nullable=False),
        sa.Column("original_vector", sa.String(length=512), nullable=False, server_default=""),
        sa.Column("original_score", sa.Float(), nullable=True),
        sa.Column("disposition_summary", sa.Text(), nullable=False, server_default=""),
        sa.Column("rationale", sa.Text(), nullable=False, server_default=""),
        sa.Column(
            "raw_data",
            sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql"),
            nullable=True,
        ),
        sa.Column("expert_severity", sa.String(length=16), nullable=True),
        sa.Column("expert_vector", sa.String(length=512), nullable=True),
        sa.Column("expert_score", sa.Float(), nullable=True),
        sa.Column("expert_justification", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["dataset_id"], ["datasets.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_vulnerability_records_dataset_id"),
        "vulnerability_records",
        ["dataset_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_vulnerability_records_cve_id"),
        "vulnerability_records",
        ["cve_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_vulnerability_records_cve_id"), table_name="vulnerability_records")
    op.drop_index(op.f("ix_vulnerability_records_dataset_id"), table_name="vulnerability_records")
    op.drop_table("vulnerability_records")
    op.drop_index(op.f("ix_datasets_created_at"), table_name="datasets")
    op.drop_table("datasets")
