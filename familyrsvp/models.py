"""SQLAlchemy models for Family RSVP."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()


def _now() -> datetime:
    return utcnow()


class Meta(Base):
    __tablename__ = "meta"

    key = Column(String(128), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)


class Family(Base):
    __tablename__ = "families"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    access_token = Column(String(128), nullable=False, unique=True)
    notes = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=_now, nullable=False)
    last_modified = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    people = relationship(
        "Person",
        back_populates="family",
        cascade="all, delete-orphan",
        order_by="Person.id",
    )
    responses = relationship(
        "Response", back_populates="family", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("length(access_token) > 0", name="ck_families_token"),
    )


class Person(Base):
    __tablename__ = "people"

    id = Column(Integer, primary_key=True, autoincrement=True)
    family_id = Column(
        Integer, ForeignKey("families.id", ondelete="CASCADE"), nullable=False
    )
    name = Column(String(120), nullable=False)
    email = Column(String(255), nullable=True)
    is_child = Column(Boolean, default=False, nullable=False)
    birth_date = Column(Date, nullable=True)
    # Allergies and preferences, shown when planning what to bring.
    diet_notes = Column(Text, nullable=False, default="")
    notes = Column(Text, nullable=False, default="")

    family = relationship("Family", back_populates="people")


class EventInstance(Base):
    __tablename__ = "events"

    date_key = Column(String(10), primary_key=True)
    cap = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=False, default="")
    # Bumped by every committed write to the event or its responses.
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=_now, nullable=False)
    last_modified = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    responses = relationship(
        "Response", back_populates="event", cascade="all, delete-orphan"
    )

    __table_args__ = (CheckConstraint("cap >= 0", name="ck_events_cap"),)


class Response(Base):
    __tablename__ = "responses"

    event_date = Column(
        String(10),
        ForeignKey("events.date_key", ondelete="CASCADE"),
        primary_key=True,
    )
    family_id = Column(
        Integer, ForeignKey("families.id", ondelete="CASCADE"), primary_key=True
    )
    attending = Column(Integer, nullable=False, default=0)
    note = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=_now, nullable=False)
    last_modified = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    event = relationship("EventInstance", back_populates="responses")
    family = relationship("Family", back_populates="responses")

    __table_args__ = (
        CheckConstraint("attending >= 0", name="ck_responses_attending"),
    )
