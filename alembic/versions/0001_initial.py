"""initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "company_documents",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("document_id", sa.String(64), nullable=False, unique=True),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("storage_path", sa.String(), nullable=False),
        sa.Column("storage_backend", sa.String(16), nullable=False, server_default="local"),
        sa.Column("file_size", sa.Integer(), nullable=True),
        sa.Column("content_type", sa.String(128), nullable=False, server_default="application/pdf"),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("extracted_text", sa.Text(), nullable=True),
        sa.Column("extracted_data", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("uploaded_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.Column("processed_at", sa.TIMESTAMP(timezone=True), nullable=True),
    )
    op.create_index("ix_company_documents_owner_id", "company_documents", ["owner_id"])

    op.create_table(
        "company_profiles",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("owner_id", sa.String(64), nullable=False, unique=True),
        sa.Column("company_name", sa.String(255), nullable=True),
        sa.Column("company_description", sa.Text(), nullable=True),
        sa.Column("business_type", sa.String(255), nullable=True),
        sa.Column("company_activities", sa.JSON(), nullable=False),
        sa.Column("main_industries", sa.JSON(), nullable=False),
        sa.Column("specializations", sa.JSON(), nullable=False),
        sa.Column("keywords", sa.JSON(), nullable=False),
        sa.Column("query_override", sa.Text(), nullable=True),
        sa.Column("query_data", sa.Text(), nullable=True),
        sa.Column("completeness", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "tenders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("external_id", sa.String(255), nullable=True),
        sa.Column("bid_number", sa.String(255), nullable=False, unique=True),
        sa.Column("source", sa.String(64), nullable=False, server_default="etimad"),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("agency", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("category", sa.String(255), nullable=False, server_default="General"),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("value_min", sa.Float(), nullable=True),
        sa.Column("value_max", sa.Float(), nullable=True),
        sa.Column("deadline", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="open"),
        sa.Column("external_url", sa.Text(), nullable=True),
        sa.Column("match_score", sa.Float(), nullable=True),
        sa.Column("raw_data", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("external_id", "source", name="uq_tenders_external_source"),
    )
    op.create_index("ix_tenders_ranking", "tenders", ["match_score", "deadline"])

    op.create_table(
        "tender_matches",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tender_id", sa.Integer(), sa.ForeignKey("tenders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("match_score", sa.Float(), nullable=False),
        sa.Column("match_details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("tender_id", "owner_id", name="uq_tender_matches_tender_owner"),
    )
    op.create_index("ix_tender_matches_owner_id", "tender_matches", ["owner_id"])


def downgrade():
    op.drop_index("ix_tender_matches_owner_id", table_name="tender_matches")
    op.drop_table("tender_matches")
    op.drop_index("ix_tenders_ranking", table_name="tenders")
    op.drop_table("tenders")
    op.drop_table("company_profiles")
    op.drop_index("ix_company_documents_owner_id", table_name="company_documents")
    op.drop_table("company_documents")
