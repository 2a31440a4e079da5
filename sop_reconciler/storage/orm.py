"""
ORM tables for documents, bilingual SOP records, content blocks and QA history.
"""

from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from .database import Base


class SourceDocument(Base):
    __tablename__ = "sop_documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    filename = Column(String(255), nullable=False)
    file_url = Column(String(1024), nullable=False)
    file_type = Column(String(20), nullable=False)
    file_size = Column(Integer, nullable=True)
    status = Column(String(20), nullable=False, default="uploaded", index=True)
    raw_content = Column(Text, nullable=True)
    parsed_content = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    uploaded_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<SourceDocument(id={self.id}, filename={self.filename!r}, status={self.status!r})>"


class SOP(Base):
    __tablename__ = "sops"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(Integer, ForeignKey("sop_documents.id", ondelete="SET NULL"), nullable=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=False, default="")
    department = Column(String(200), nullable=False, default="", index=True)
    category = Column(String(200), nullable=False, default="", index=True)
    version = Column(String(20), nullable=False, default="1.0")
    language = Column(String(10), nullable=False, index=True)
    content = Column(JSON, nullable=False, default=dict)
    status = Column(String(20), nullable=False, default="approved")
    created_by = Column(Integer, nullable=True)
    translation_pair_id = Column(Integer, ForeignKey("sops.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<SOP(id={self.id}, title={self.title!r}, language={self.language!r})>"


class ContentBlock(Base):
    __tablename__ = "sop_content_blocks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sop_id = Column(Integer, ForeignKey("sops.id", ondelete="CASCADE"), nullable=False, index=True)
    block_type = Column(String(20), nullable=False, default="step")
    content = Column(Text, nullable=False)
    block_order = Column(Integer, nullable=False)
    # "metadata" is reserved on declarative classes
    block_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<ContentBlock(id={self.id}, sop_id={self.sop_id}, order={self.block_order})>"


class QAHistory(Base):
    __tablename__ = "sop_qa_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=True)
    question = Column(Text, nullable=False)
    answer = Column(Text, nullable=False)
    related_sops = Column(JSON, nullable=True)
    language = Column(String(10), nullable=False)
    found_results = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
