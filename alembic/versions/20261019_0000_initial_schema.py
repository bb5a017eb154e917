"""Initial schema for RadLIMS database.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the lab registry, samples and both sample ledgers."""
    op.create_table(
        "lab",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "sample",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("lab", sa.String(length=32), nullable=False),
        sa.Column("item_name", sa.String(length=255), nullable=False),
        sa.Column("sample_type", sa.String(length=16), nullable=False),
        sa.Column("sample_amount", sa.String(length=64), nullable=True),
        sa.Column("collection_location", sa.String(length=255), nullable=True),
        sa.Column("collection_timestamp", sa.DateTime(), nullable=True),
        sa.Column("collector", sa.String(length=255), nullable=True),
        sa.Column("collector_contact", sa.String(length=64), nullable=True),
        sa.Column("collecting_organization", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("analysis_results", sa.JSON(), nullable=True),
        sa.Column("photo_refs", sa.JSON(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["lab"], ["lab.code"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )
    op.create_index("ix_sample_status", "sample", ["status"])
    op.create_index("ix_sample_lab", "sample", ["lab"])

    op.create_table(
        "sample_history",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("sample_id", sa.String(length=32), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("actor", sa.String(length=255), nullable=False),
        sa.Column("actor_id", sa.String(length=64), nullable=False),
        sa.Column("actor_role", sa.String(length=32), nullable=False),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("location_lat", sa.Float(), nullable=True),
        sa.Column("location_lon", sa.Float(), nullable=True),
        sa.Column("signature_name", sa.String(length=255), nullable=True),
        sa.Column("signature_timestamp", sa.String(length=32), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("photo_refs", sa.JSON(), nullable=False),
        sa.ForeignKeyConstraint(["sample_id"], ["sample.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sample_id", "seq", name="uq_sample_history_seq"),
    )
    op.create_index("ix_sample_history_sample_id", "sample_history", ["sample_id"])

    op.create_table(
        "sample_modification",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("sample_id", sa.String(length=32), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("editor", sa.String(length=255), nullable=False),
        sa.Column("editor_id", sa.String(length=64), nullable=False),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("changes", sa.JSON(), nullable=False),
        sa.ForeignKeyConstraint(["sample_id"], ["sample.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sample_id", "seq", name="uq_sample_modification_seq"),
    )
    op.create_index(
        "ix_sample_modification_sample_id", "sample_modification", ["sample_id"]
    )


def downgrade() -> None:
    """Drop all RadLIMS tables."""
    op.drop_index("ix_sample_modification_sample_id", table_name="sample_modification")
    op.drop_table("sample_modification")
    op.drop_index("ix_sample_history_sample_id", table_name="sample_history")
    op.drop_table("sample_history")
    op.drop_index("ix_sample_lab", table_name="sample")
    op.drop_index("ix_sample_status", table_name="sample")
    op.drop_table("sample")
    op.drop_table("lab")
