from __future__ import annotations

from ..extensions import db
from chifa_pos.time_utils import to_utc_z


class Pharmacy(db.Model):
    """
    Tenant root.

    MULTI-TENANT: Every drawer, session, sale, invoice, bordereau and
    rejection carries pharmacy_id. Lookups always filter on it, so an id
    owned by another pharmacy behaves exactly like an unknown id.
    """
    __tablename__ = "pharmacies"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(160), nullable=False)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Pharmacy id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class ActorToken(db.Model):
    """
    Resolved identity for an API caller.

    The identity provider is an external collaborator; this table only maps
    a hashed bearer token to (pharmacy, actor, display name, employee flag).
    Plaintext tokens are never stored.
    """
    __tablename__ = "actor_tokens"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    pharmacy_id = db.Column(db.Integer, db.ForeignKey("pharmacies.id"), nullable=False, index=True)
    actor_id = db.Column(db.String(64), nullable=False, index=True)
    actor_display_name = db.Column(db.String(160), nullable=False)
    is_employee = db.Column(db.Boolean, nullable=False, default=False)

    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)
    is_revoked = db.Column(db.Boolean, nullable=False, default=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    pharmacy = db.relationship("Pharmacy", backref=db.backref("actor_tokens", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pharmacy_id": self.pharmacy_id,
            "actor_id": self.actor_id,
            "actor_display_name": self.actor_display_name,
            "is_employee": self.is_employee,
            "is_revoked": self.is_revoked,
            "expires_at": to_utc_z(self.expires_at),
            "created_at": to_utc_z(self.created_at),
        }
