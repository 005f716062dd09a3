"""
Database Models for SubStitch
SQLAlchemy models for persistent storage
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, Boolean, Text, DateTime, JSON, ForeignKey, Index
from sqlalchemy.orm import relationship, declarative_base

Base = declarative_base()


def _iso(value):
    return value.isoformat() if value else None


class TranslationTaskModel(Base):
    """Translation task persistence model"""
    __tablename__ = "translation_tasks"

    id = Column(String(36), primary_key=True)
    video_id = Column(String(255), nullable=False, index=True)
    status = Column(String(20), nullable=False, index=True)

    # Progress
    total_segments = Column(Integer, default=0)
    completed_segments = Column(Integer, default=0)
    current_segment = Column(Integer, default=0)
    progress_percentage = Column(Integer, default=0)
    current_phase = Column(Text, default="")

    # Liveness and timing
    last_heartbeat = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    paused_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)

    # Translation context (title, model, languages, flags, keywords)
    context = Column(JSON, default=dict)

    # Transcript in and out (JSON list of {start, end, text})
    source_entries = Column(JSON, nullable=False)
    result = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now)

    # Relationships
    segments = relationship(
        "SegmentTaskModel", back_populates="task",
        cascade="all, delete-orphan", order_by="SegmentTaskModel.segment_index",
    )
    notifications = relationship("TaskNotificationModel", back_populates="task", cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        """Convert to dictionary for API response"""
        return {
            "id": self.id,
            "video_id": self.video_id,
            "status": self.status,
            "total_segments": self.total_segments,
            "completed_segments": self.completed_segments,
            "current_segment": self.current_segment,
            "progress_percentage": self.progress_percentage,
            "current_phase": self.current_phase,
            "last_heartbeat": _iso(self.last_heartbeat),
            "started_at": _iso(self.started_at),
            "paused_at": _iso(self.paused_at),
            "completed_at": _iso(self.completed_at),
            "error_message": self.error_message,
            "context": self.context or {},
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class SegmentTaskModel(Base):
    """Per-segment translation progress"""
    __tablename__ = "segment_tasks"

    id = Column(String(36), primary_key=True)
    task_id = Column(String(36), ForeignKey("translation_tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    segment_index = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False)
    subtitle_count = Column(Integer, default=0)
    character_count = Column(Integer, default=0)
    estimated_tokens = Column(Integer, default=0)
    retry_count = Column(Integer, default=0)
    source_entries = Column(JSON, nullable=False)
    partial_result = Column(JSON, nullable=True)
    processing_time_ms = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    task = relationship("TranslationTaskModel", back_populates="segments")

    def to_dict(self) -> dict:
        """Convert to dictionary"""
        return {
            "id": self.id,
            "task_id": self.task_id,
            "segment_index": self.segment_index,
            "status": self.status,
            "subtitle_count": self.subtitle_count,
            "character_count": self.character_count,
            "estimated_tokens": self.estimated_tokens,
            "retry_count": self.retry_count,
            "processing_time_ms": self.processing_time_ms,
            "error_message": self.error_message,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }


class TaskNotificationModel(Base):
    """Task lifecycle notification"""
    __tablename__ = "task_notifications"

    id = Column(String(36), primary_key=True)
    task_id = Column(String(36), ForeignKey("translation_tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(20), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, default="")
    is_read = Column(Boolean, default=False, nullable=False)
    sent_at = Column(DateTime, default=datetime.now)

    task = relationship("TranslationTaskModel", back_populates="notifications")

    def to_dict(self) -> dict:
        """Convert to dictionary"""
        return {
            "id": self.id,
            "task_id": self.task_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "is_read": self.is_read,
            "sent_at": _iso(self.sent_at),
        }


class TranslationCacheModel(Base):
    """Finished translation kept for reuse by later tasks on the same video"""
    __tablename__ = "translation_cache"
    __table_args__ = (
        Index("ix_translation_cache_key", "video_id", "content_hash", "config_hash", unique=True),
    )

    id = Column(String(36), primary_key=True)
    video_id = Column(String(255), nullable=False, index=True)
    content_hash = Column(String(64), nullable=False)
    config_hash = Column(String(64), nullable=False)
    target_lang = Column(String(20), nullable=False)
    model = Column(String(100), default="")
    entries = Column(JSON, nullable=False)
    access_count = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.now, index=True)
    last_accessed_at = Column(DateTime, nullable=True)

    def to_dict(self) -> dict:
        """Convert to dictionary"""
        return {
            "id": self.id,
            "video_id": self.video_id,
            "content_hash": self.content_hash,
            "config_hash": self.config_hash,
            "target_lang": self.target_lang,
            "model": self.model,
            "access_count": self.access_count,
            "created_at": _iso(self.created_at),
            "last_accessed_at": _iso(self.last_accessed_at),
        }
