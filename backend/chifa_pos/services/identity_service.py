# Overview: Resolves bearer tokens into the caller identity supplied by the external identity provider.

"""
Actor Identity Resolution

WHY: Every financial operation needs (pharmacy_id, actor_id, display name,
employee flag) for tenant scoping and audit fields. Authentication itself
is an external collaborator; this module only resolves an opaque bearer
token into that identity and trusts it.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Revocable; optional expiry
- Tokens of deactivated pharmacies do not resolve
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime

from ..extensions import db
from ..models import ActorToken, Pharmacy
from ..validation import NotFoundError, ValidationError
from chifa_pos.time_utils import utcnow


@dataclass(frozen=True)
class ActorContext:
    """Identity of the caller, trusted as supplied by the identity provider."""
    pharmacy_id: int
    actor_id: str
    actor_display_name: str
    is_employee: bool = False


def generate_token() -> str:
    """Returns 64-character hex string (32 bytes of entropy)."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    Hash token for database storage using SHA-256.

    Tokens are already high-entropy (unlike passwords), so a fast hash is
    sufficient.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_token(
    *,
    pharmacy_id: int,
    actor_id: str,
    actor_display_name: str,
    is_employee: bool = False,
    expires_at: datetime | None = None,
) -> tuple[ActorToken, str]:
    """
    Register an identity and return (record, plaintext_token).

    The plaintext token is returned once and never stored.
    """
    if not actor_id or not actor_display_name:
        raise ValidationError("actor_id and actor_display_name are required")

    pharmacy = db.session.query(Pharmacy).filter_by(id=pharmacy_id).first()
    if not pharmacy or not pharmacy.is_active:
        raise NotFoundError("Pharmacy not found", pharmacy_id=pharmacy_id)

    plaintext = generate_token()
    record = ActorToken(
        pharmacy_id=pharmacy_id,
        actor_id=str(actor_id),
        actor_display_name=actor_display_name,
        is_employee=is_employee,
        token_hash=hash_token(plaintext),
        expires_at=expires_at,
    )
    db.session.add(record)
    db.session.commit()
    return record, plaintext


def resolve_token(token: str) -> ActorContext | None:
    """
    Resolve a bearer token to an ActorContext.

    Returns None if the token is unknown, revoked, expired, or belongs to
    a deactivated pharmacy.
    """
    if not token:
        return None

    record = db.session.query(ActorToken).filter_by(token_hash=hash_token(token)).first()
    if not record or record.is_revoked:
        return None

    now = utcnow()
    if record.expires_at and record.expires_at <= now:
        return None

    pharmacy = db.session.query(Pharmacy).filter_by(id=record.pharmacy_id).first()
    if not pharmacy or not pharmacy.is_active:
        return None

    record.last_used_at = now
    db.session.commit()

    return ActorContext(
        pharmacy_id=record.pharmacy_id,
        actor_id=record.actor_id,
        actor_display_name=record.actor_display_name,
        is_employee=record.is_employee,
    )


def revoke_token(token: str) -> bool:
    record = db.session.query(ActorToken).filter_by(token_hash=hash_token(token)).first()
    if not record:
        return False
    record.is_revoked = True
    db.session.commit()
    return True
