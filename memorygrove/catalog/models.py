"""
Database models for the Memory Grove catalog.

Only the tables the ingestion pipeline reads or writes are modelled here:
memories (groups of images sharing a date range), images (processed
media assets) and notifications.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (  # type: ignore
    DateTime, Float, ForeignKey, Index, Integer, String, Text
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship  # type: ignore


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class Memory(Base):
    """
    A group of images sharing a derived date range.

    start_date/end_date are recomputed from member capture times every
    time an image joins the memory; end_date - start_date never exceeds
    the configured maximum duration.
    """
    __tablename__ = "memories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    context_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    start_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    images: Mapped[List["Image"]] = relationship(
        "Image", back_populates="memory")


class Image(Base):
    """
    A fully processed image and its derivatives.

    Immutable after insert except for memory reassignment and taken_at,
    which memory date clustering may rewrite for outliers. The capture
    time as extracted is kept in original_taken_at.
    """
    __tablename__ = "images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    original_path: Mapped[str] = mapped_column(Text, nullable=False)
    webp_path: Mapped[str] = mapped_column(Text, nullable=False)
    thumb_big_path: Mapped[str] = mapped_column(Text, nullable=False)
    thumb_small_path: Mapped[str] = mapped_column(Text, nullable=False)
    original_format: Mapped[Optional[str]] = mapped_column(
        String(16), nullable=True)

    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Content category (landscape, single-person, couple, food)
    type: Mapped[str] = mapped_column(String(32), nullable=False)

    memory_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("memories.id"), nullable=True, index=True)
    context_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_by_user_id: Mapped[int] = mapped_column(Integer, nullable=False)

    taken_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    original_taken_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False)

    hash_original: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True)
    hash_webp: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False)

    memory: Mapped[Optional["Memory"]] = relationship(
        "Memory", back_populates="images")

    __table_args__ = (
        Index('idx_images_context_id', 'context_id'),
        Index('idx_images_taken_at', 'taken_at'),
        Index('idx_images_hash_original', 'hash_original'),
    )


class Notification(Base):
    """In-app notification row (delivery is handled elsewhere)."""
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(16), default="unread", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False)
