"""
Code Journal Backend — User SQLAlchemy Models
==============================================

What:  ORM models for `users`, `global_users` and `servers`.
Why:   A User holds the personal profile; its GlobalUser is the identity
       envelope that submissions, reviews and comments reference.
How:   One GlobalUser per User (unique FK). Capabilities are a flag set
       persisted as an integer bitmask.
Who:   Used by the relational store, user service and auth dependency.

Capability model:
    A user may hold any combination of PUBLISHER, REVIEWER and EDITOR.
    The legacy role codes (none, publisher, reviewer, publisher-reviewer,
    editor) are still reported through `Capability.role_name` for clients
    that display a single role.
"""

import enum
from typing import Optional

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

from codejournal.database import Base, TimestampMixin


class Capability(enum.Flag):
    NONE = 0
    PUBLISHER = 1
    REVIEWER = 2
    EDITOR = 4

    @classmethod
    def from_names(cls, names) -> "Capability":
        """Build a flag set from names like ["publisher", "reviewer"]."""
        result = cls.NONE
        for name in names:
            try:
                result |= cls[name.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown capability '{name}'") from None
        return result

    @property
    def names(self):
        return [
            member.name.lower()
            for member in (Capability.PUBLISHER, Capability.REVIEWER, Capability.EDITOR)
            if member in self
        ]

    @property
    def role_name(self) -> str:
        if Capability.EDITOR in self:
            return "editor"
        if Capability.PUBLISHER in self and Capability.REVIEWER in self:
            return "publisher-reviewer"
        if Capability.PUBLISHER in self:
            return "publisher"
        if Capability.REVIEWER in self:
            return "reviewer"
        return "none"


class CapabilityType(TypeDecorator):
    """Stores a Capability flag set as a plain integer bitmask."""

    impl = Integer
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return int(value.value if isinstance(value, Capability) else value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Capability(value)


class User(TimestampMixin, Base):
    """
    Personal profile of a registered user.

    Email is stored lower-cased; uniqueness is checked by the user service
    in the same transaction that inserts the row.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str] = mapped_column(String(32), nullable=False)
    last_name: Mapped[str] = mapped_column(String(32), nullable=False)
    phone_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    organization: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    global_user: Mapped["GlobalUser"] = relationship(
        back_populates="user",
        uselist=False,
        lazy="joined",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}')>"


class GlobalUser(TimestampMixin, Base):
    """Identity envelope: `<group-number><uuid>` ID plus capability set."""

    __tablename__ = "global_users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    capabilities: Mapped[Capability] = mapped_column(
        CapabilityType(),
        nullable=False,
        default=Capability.PUBLISHER,
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        unique=True,
    )

    user: Mapped[User] = relationship(back_populates="global_user", lazy="joined")

    def has(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def __repr__(self) -> str:
        return f"<GlobalUser(id='{self.id}', role='{self.capabilities.role_name}')>"


class Server(TimestampMixin, Base):
    """A peer journal allowed to call the federation endpoints."""

    __tablename__ = "servers"

    group_number: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    token: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    url: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    def __repr__(self) -> str:
        return f"<Server(group_number={self.group_number}, url='{self.url}')>"
