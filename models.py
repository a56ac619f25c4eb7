"""Database models for the local PokeOlivos backend (mirrors the Supabase tables)."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import func

from extensions import db
from olivos.backend import isoformat_or_none

ROLE_ADMIN = "admin"
ROLE_MOD = "mod"
ROLE_USER = "user"
ROLES = (ROLE_ADMIN, ROLE_MOD, ROLE_USER)
STAFF_ROLES = (ROLE_ADMIN, ROLE_MOD)


def _new_id() -> str:
    return str(uuid.uuid4())


def _new_claim_code() -> str:
    return uuid.uuid4().hex


class Profile(db.Model):
    """Trainer identity. Email and password hash only exist for the local auth backend."""

    __tablename__ = "profiles"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    email = db.Column(db.String(255), unique=True, nullable=True)
    password_hash = db.Column(db.String(255), nullable=True)
    trainer_name = db.Column(db.String(120), nullable=False)
    trainer_code = db.Column(db.String(12), unique=True, nullable=False)
    role = db.Column(db.String(10), nullable=False, default=ROLE_USER)
    active = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        db.CheckConstraint("role in ({})".format(", ".join(repr(role) for role in ROLES)), name="ck_profiles_role"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "trainer_name": self.trainer_name,
            "trainer_code": self.trainer_code,
            "role": self.role,
            "active": bool(self.active),
        }

    def __repr__(self) -> str:  # pragma: no cover - helper for shell debugging
        return f"<Profile id={self.id} trainer={self.trainer_name!r} role={self.role!r}>"


class Event(db.Model):
    __tablename__ = "events"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    name = db.Column(db.String(200), nullable=False)
    starts_at = db.Column(db.String(40), nullable=False)
    ends_at = db.Column(db.String(40), nullable=True)
    description = db.Column(db.Text, nullable=True)
    image_url = db.Column(db.String(500), nullable=True)
    created_by = db.Column(db.String(36), db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), server_default=func.now(), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "starts_at": self.starts_at,
            "ends_at": self.ends_at,
            "description": self.description,
            "image_url": self.image_url,
        }


class Collection(db.Model):
    __tablename__ = "collections"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    image_url = db.Column(db.String(500), nullable=True)
    created_by = db.Column(db.String(36), db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), server_default=func.now(), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "image_url": self.image_url,
        }


class Stamp(db.Model):
    __tablename__ = "stamps"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    image_url = db.Column(db.String(500), nullable=True)
    created_by = db.Column(db.String(36), db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), server_default=func.now(), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "image_url": self.image_url,
        }


class EventCollection(db.Model):
    __tablename__ = "event_collections"

    event_id = db.Column(db.String(36), db.ForeignKey("events.id", ondelete="CASCADE"), primary_key=True)
    collection_id = db.Column(db.String(36), db.ForeignKey("collections.id", ondelete="CASCADE"), primary_key=True)
    created_by = db.Column(db.String(36), db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)

    def to_dict(self) -> dict:
        return {"event_id": self.event_id, "collection_id": self.collection_id}


class CollectionStamp(db.Model):
    __tablename__ = "collection_stamps"

    collection_id = db.Column(db.String(36), db.ForeignKey("collections.id", ondelete="CASCADE"), primary_key=True)
    stamp_id = db.Column(db.String(36), db.ForeignKey("stamps.id", ondelete="CASCADE"), primary_key=True)
    created_by = db.Column(db.String(36), db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)

    def to_dict(self) -> dict:
        return {"collection_id": self.collection_id, "stamp_id": self.stamp_id}


class UserStamp(db.Model):
    """One award: a trainer holds a stamp (unique per trainer/stamp)."""

    __tablename__ = "user_stamps"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    user_id = db.Column(db.String(36), db.ForeignKey("profiles.id", ondelete="CASCADE"), index=True, nullable=False)
    stamp_id = db.Column(db.String(36), db.ForeignKey("stamps.id", ondelete="CASCADE"), nullable=False)
    collection_id = db.Column(db.String(36), db.ForeignKey("collections.id", ondelete="CASCADE"), nullable=False)
    event_id = db.Column(db.String(36), db.ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    awarded_by = db.Column(db.String(36), db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    awarded_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    claim_code = db.Column(db.String(64), unique=True, nullable=False, default=_new_claim_code)

    __table_args__ = (
        db.UniqueConstraint("user_id", "stamp_id", name="uq_user_stamps_user_stamp"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "stamp_id": self.stamp_id,
            "collection_id": self.collection_id,
            "event_id": self.event_id,
            "awarded_by": self.awarded_by,
            "awarded_at": isoformat_or_none(self.awarded_at),
            "claim_code": self.claim_code,
        }
