# tendermatch/models.py
import uuid

from sqlalchemy import (
    Column, Integer, String, Text, TIMESTAMP, Float, JSON, ForeignKey, UniqueConstraint, Index,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()

DOCUMENT_STATUSES = ("pending", "processing", "completed", "error")


def _new_document_id() -> str:
    return uuid.uuid4().hex


class CompanyDocument(Base):
    __tablename__ = "company_documents"
    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(String(64), nullable=False, unique=True, default=_new_document_id)
    owner_id = Column(String(64), nullable=False, index=True)
    file_name = Column(String(255), nullable=False)
    storage_path = Column(String, nullable=False)                     # local path or "<bucket>/<object>"
    storage_backend = Column(String(16), nullable=False, default="local")
    file_size = Column(Integer, default=0)  # bytes
    content_type = Column(String(128), nullable=False, default="application/pdf")
    status = Column(String(16), nullable=False, default="pending")
    extracted_text = Column(Text, nullable=True)
    extracted_data = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    uploaded_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    processed_at = Column(TIMESTAMP(timezone=True), nullable=True)


class CompanyProfile(Base):
    __tablename__ = "company_profiles"
    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(64), nullable=False, unique=True)
    company_name = Column(String(255), nullable=True)
    company_description = Column(Text, nullable=True)
    business_type = Column(String(255), nullable=True)
    company_activities = Column(JSON, nullable=False, default=list)
    main_industries = Column(JSON, nullable=False, default=list)
    specializations = Column(JSON, nullable=False, default=list)
    keywords = Column(JSON, nullable=False, default=list)
    query_override = Column(Text, nullable=True)
    query_data = Column(Text, nullable=True)
    completeness = Column(Integer, nullable=False, default=0)
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())


class Tender(Base):
    __tablename__ = "tenders"
    id = Column(Integer, primary_key=True, autoincrement=True)
    external_id = Column(String(255), nullable=True)
    bid_number = Column(String(255), nullable=False, unique=True)
    source = Column(String(64), nullable=False, default="etimad")
    title = Column(Text, nullable=False)
    agency = Column(Text, nullable=False)
    description = Column(Text, nullable=False, default="")
    category = Column(String(255), nullable=False, default="General")
    location = Column(String(255), nullable=True)
    value_min = Column(Float, nullable=True)
    value_max = Column(Float, nullable=True)
    deadline = Column(TIMESTAMP(timezone=True), nullable=False)
    status = Column(String(32), nullable=False, default="open")
    external_url = Column(Text, nullable=True)
    match_score = Column(Float, nullable=True)
    raw_data = Column(JSON, nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("external_id", "source", name="uq_tenders_external_source"),
        Index("ix_tenders_ranking", "match_score", "deadline"),
    )


class TenderMatch(Base):
    __tablename__ = "tender_matches"
    id = Column(Integer, primary_key=True, autoincrement=True)
    tender_id = Column(Integer, ForeignKey("tenders.id", ondelete="CASCADE"), nullable=False)
    owner_id = Column(String(64), nullable=False, index=True)
    match_score = Column(Float, nullable=False)
    match_details = Column(JSON, nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("tender_id", "owner_id", name="uq_tender_matches_tender_owner"),
    )
