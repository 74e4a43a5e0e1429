from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from publivote.database import Base

# ---------------------------------------------------------------------------
# Association table: Publication <-> Tag (many-to-many)
#
# No ON DELETE CASCADE: dependent rows are removed explicitly, in order,
# by the publication service.
# ---------------------------------------------------------------------------
publications_tags = Table(
    "publications_tags",
    Base.metadata,
    Column("publication_id", Integer, ForeignKey("publications.id"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id"), primary_key=True),
)


# ---------------------------------------------------------------------------
# User
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    code_phone: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    interests: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    role_id: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    publications: Mapped[List["Publication"]] = relationship(
        "Publication", back_populates="author", lazy="noload"
    )


# ---------------------------------------------------------------------------
# Lookup tables
# ---------------------------------------------------------------------------
class City(Base):
    __tablename__ = "cities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False)


class PublicationType(Base):
    __tablename__ = "publication_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)

    publications: Mapped[List["Publication"]] = relationship(
        "Publication", secondary=publications_tags, back_populates="tags", lazy="noload"
    )


# ---------------------------------------------------------------------------
# Publication
# ---------------------------------------------------------------------------
class Publication(Base):
    __tablename__ = "publications"

    __table_args__ = (
        Index("ix_publications_user_id_created_at", "user_id", "created_at"),
        Index("ix_publications_type_created_at", "publication_type_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(300), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    reference_link: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    city_id: Mapped[int] = mapped_column(Integer, ForeignKey("cities.id"), nullable=False)
    publication_type_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("publication_types.id"), nullable=False
    )

    # All lazy="noload"; services pick joinedload/selectinload explicitly.
    author: Mapped["User"] = relationship("User", back_populates="publications", lazy="noload")
    city: Mapped["City"] = relationship("City", lazy="noload")
    publication_type: Mapped["PublicationType"] = relationship("PublicationType", lazy="noload")
    tags: Mapped[List["Tag"]] = relationship(
        "Tag", secondary=publications_tags, back_populates="publications", lazy="noload"
    )
    images: Mapped[List["PublicationImage"]] = relationship(
        "PublicationImage",
        back_populates="publication",
        lazy="noload",
        order_by="PublicationImage.order",
    )


# ---------------------------------------------------------------------------
# Vote: at most one per (user, publication)
# ---------------------------------------------------------------------------
class Vote(Base):
    __tablename__ = "votes"

    __table_args__ = (
        UniqueConstraint("user_id", "publication_id", name="uq_votes_user_publication"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    publication_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("publications.id"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


# ---------------------------------------------------------------------------
# PublicationImage: ``order`` identifies an image within its publication
# ---------------------------------------------------------------------------
class PublicationImage(Base):
    __tablename__ = "publications_images"

    __table_args__ = (
        UniqueConstraint("publication_id", "order", name="uq_publications_images_order"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    publication_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("publications.id"), nullable=False, index=True
    )
    order: Mapped[int] = mapped_column(Integer, nullable=False)
    image_key: Mapped[str] = mapped_column(String(500), nullable=False)
    content_type: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    publication: Mapped["Publication"] = relationship(
        "Publication", back_populates="images", lazy="noload"
    )


# ---------------------------------------------------------------------------
# OrphanedObject: stored keys whose delete failed during a cascade
# ---------------------------------------------------------------------------
class OrphanedObject(Base):
    __tablename__ = "orphaned_objects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    object_key: Mapped[str] = mapped_column(String(500), nullable=False, unique=True)
    publication_id: Mapped[int] = mapped_column(Integer, nullable=False)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
