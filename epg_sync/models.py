"""
SQLAlchemy ORM Models for EPG Sync Service

This module defines the database models for channels and programs.
"""
from datetime import datetime, timezone
from sqlalchemy import JSON, BigInteger, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models"""
    pass


class Channel(Base):
    """Channel row; ``id`` is the internal id handed out on first insert"""
    __tablename__ = "channels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    input_id: Mapped[str] = mapped_column(String, nullable=False)
    external_id: Mapped[str] = mapped_column(String, nullable=False)
    display_name: Mapped[str] = mapped_column(String, nullable=False)
    display_number: Mapped[str | None] = mapped_column(String, nullable=True)
    repeatable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    provider_data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(timezone.utc))

    # AUTOINCREMENT keeps SQLite from reusing ids of deleted rows
    __table_args__ = (
        UniqueConstraint("input_id", "external_id", name="uq_channel_input_external"),
        {"sqlite_autoincrement": True},
    )

    def __repr__(self) -> str:
        return f"<Channel(id={self.id}, external_id={self.external_id}, display_name={self.display_name})>"


class Program(Base):
    """Program row, times stored as UTC milliseconds"""
    __tablename__ = "programs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    channel_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("channels.id", ondelete="CASCADE"),
        nullable=False
    )
    start_time_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    end_time_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    episode_title: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    poster_art_url: Mapped[str | None] = mapped_column(String, nullable=True)
    provider_data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(timezone.utc))

    # Constraints
    __table_args__ = (
        UniqueConstraint("channel_id", "start_time_ms", name="uq_program_channel_start"),
        Index("idx_programs_end_time", "end_time_ms"),
        {"sqlite_autoincrement": True},
    )

    def __repr__(self) -> str:
        return f"<Program(id={self.id}, title={self.title}, channel={self.channel_id})>"
