"""
Code Journal Backend — Submission SQLAlchemy Models
====================================================

What:  ORM models for submissions, their files, comments and category tags,
       plus the author / reviewer / category join tables.
Why:   The relational half of the submission storage subsystem. The file
       bodies, sidecars and submission metadata live on disk
       (see services/filesystem.py).
How:   Join relationships are view-only; the relational store inserts join
       rows explicitly so that author order is kept in `position`.
Who:   Used by the relational store, repository services and Alembic.

Table Design:
    submissions ─┬─< files ──< comments (self-referencing parent_id)
                 ├─< authors_submission   >── global_users
                 ├─< reviewers_submission >── global_users
                 └─< categories_submission >── categories
"""

import enum
from typing import List, Optional

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from codejournal.database import Base, TimestampMixin, utcnow
from codejournal.models.user import GlobalUser


class ApprovalStatus(str, enum.Enum):
    """Tri-state approval flag of a submission."""

    UNSET = "unset"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not ApprovalStatus.UNSET


def _timestamp_columns() -> List[Column]:
    return [
        Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
        Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow),
        Column("deleted_at", DateTime(timezone=True), nullable=True),
    ]


# ── Join Tables ───────────────────────────────────────────────────────────
authors_submission = Table(
    "authors_submission",
    Base.metadata,
    Column("submission_id", ForeignKey("submissions.id"), primary_key=True),
    Column("global_user_id", ForeignKey("global_users.id"), primary_key=True),
    Column("position", Integer, nullable=False, default=0),
    *_timestamp_columns(),
)

reviewers_submission = Table(
    "reviewers_submission",
    Base.metadata,
    Column("submission_id", ForeignKey("submissions.id"), primary_key=True),
    Column("global_user_id", ForeignKey("global_users.id"), primary_key=True),
    Column("position", Integer, nullable=False, default=0),
    *_timestamp_columns(),
)

categories_submission = Table(
    "categories_submission",
    Base.metadata,
    Column("submission_id", ForeignKey("submissions.id"), primary_key=True),
    Column("category_tag", ForeignKey("categories.tag"), primary_key=True),
    *_timestamp_columns(),
)


class Category(TimestampMixin, Base):
    """A tag; created lazily on first use and never implicitly deleted."""

    __tablename__ = "categories"

    tag: Mapped[str] = mapped_column(String(32), primary_key=True)

    def __repr__(self) -> str:
        return f"<Category(tag='{self.tag}')>"


class Submission(TimestampMixin, Base):
    """
    A unit of work under review.

    The abstract and the reviews are not columns: they live in the
    submission metadata JSON on disk.
    """

    __tablename__ = "submissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    license: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    approval: Mapped[ApprovalStatus] = mapped_column(
        SAEnum(
            ApprovalStatus,
            native_enum=False,
            length=16,
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
        default=ApprovalStatus.UNSET,
    )

    files: Mapped[List["File"]] = relationship(
        lazy="selectin",
        order_by="File.id",
        primaryjoin="and_(Submission.id == File.submission_id, File.deleted_at.is_(None))",
        viewonly=True,
    )
    authors: Mapped[List[GlobalUser]] = relationship(
        secondary=authors_submission,
        lazy="selectin",
        order_by=authors_submission.c.position,
        viewonly=True,
    )
    reviewers: Mapped[List[GlobalUser]] = relationship(
        secondary=reviewers_submission,
        lazy="selectin",
        order_by=reviewers_submission.c.position,
        viewonly=True,
    )
    categories: Mapped[List[Category]] = relationship(
        secondary=categories_submission,
        lazy="selectin",
        order_by="Category.tag",
        viewonly=True,
    )

    __table_args__ = (
        Index("idx_submissions_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Submission(id={self.id}, name='{self.name}', approval='{self.approval.value}')>"


class File(TimestampMixin, Base):
    """
    Identity of one file in a submission; the bytes live on disk.

    `sidecar_path` is the submission-relative path of the sidecar JSON. Two
    files may not share it.
    """

    __tablename__ = "files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    submission_id: Mapped[int] = mapped_column(ForeignKey("submissions.id"), nullable=False)
    path: Mapped[str] = mapped_column(String(1024), nullable=False)
    sidecar_path: Mapped[str] = mapped_column(String(1024), nullable=False)

    __table_args__ = (
        Index("idx_files_submission_path", "submission_id", "path"),
        Index("idx_files_submission_sidecar", "submission_id", "sidecar_path"),
    )

    def __repr__(self) -> str:
        return f"<File(id={self.id}, submission_id={self.submission_id}, path='{self.path}')>"


class Comment(TimestampMixin, Base):
    """
    A line-anchored comment on a file.

    Authoritative for ID, parent link and tombstone; the sidecar mirrors it.
    """

    __tablename__ = "comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    file_id: Mapped[int] = mapped_column(ForeignKey("files.id"), nullable=False, index=True)
    author_id: Mapped[str] = mapped_column(ForeignKey("global_users.id"), nullable=False)
    parent_id: Mapped[Optional[int]] = mapped_column(ForeignKey("comments.id"), nullable=True)
    base64_value: Mapped[str] = mapped_column(Text, nullable=False)
    start_line: Mapped[int] = mapped_column(Integer, nullable=False)
    end_line: Mapped[int] = mapped_column(Integer, nullable=False)

    def __repr__(self) -> str:
        return f"<Comment(id={self.id}, file_id={self.file_id}, parent_id={self.parent_id})>"
