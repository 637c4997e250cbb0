# inkpipe/models.py
#!/usr/bin/env python3

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, func

from inkpipe.database import Base


class FileRecord(Base):
    __tablename__ = "files"

    id = Column(Integer, primary_key=True, index=True)

    # Identifier of the owning user (opaque, from the token verifier)
    owner_id = Column(String, nullable=False, index=True)

    # Object-store key, e.g. uploads/<owner>/<uuid>-receipt.jpg
    storage_key = Column(String, unique=True, nullable=False)

    # URL the inference API can fetch the asset from
    public_url = Column(String, nullable=False)

    # MIME type, decides the extraction strategy
    media_type = Column(String, nullable=False)

    original_name = Column(String, nullable=False)

    # uploaded, pending, processing, completed, error (see utils/file_status.py)
    status = Column(String, nullable=False, default="pending", index=True)

    extracted_text = Column(Text, nullable=True)
    tokens_used = Column(Integer, nullable=True)
    error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (Index("ix_files_status_created_at", "status", "created_at"),)


class ProcessingLog(Base):
    __tablename__ = "processing_logs"

    id = Column(Integer, primary_key=True, index=True)
    file_id = Column(Integer, ForeignKey("files.id"), index=True)
    step_name = Column(String)  # e.g. "claim", "extract", "debit_tokens"
    status = Column(String)  # "in_progress" / "success" / "failure"
    message = Column(Text)
    timestamp = Column(DateTime(timezone=True), server_default=func.now())


class UserUsage(Base):
    __tablename__ = "user_usage"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, unique=True, nullable=False)
    token_usage = Column(Integer, nullable=False, default=0)
    max_token_usage = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ApiToken(Base):
    __tablename__ = "api_tokens"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)

    # SHA-256 of the bearer token; the token itself is never stored
    token_hash = Column(String, unique=True, nullable=False)

    label = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    revoked_at = Column(DateTime(timezone=True), nullable=True)
