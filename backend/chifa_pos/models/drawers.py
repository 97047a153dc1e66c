from __future__ import annotations

from ..extensions import db
from chifa_pos.time_utils import to_utc_z


SESSION_STATUS_OPEN = "open"
SESSION_STATUS_CLOSED = "closed"

MOVEMENT_CASH_IN = "cash_in"
MOVEMENT_CASH_OUT = "cash_out"
MOVEMENT_NO_SALE = "no_sale"
MOVEMENT_TYPES = (MOVEMENT_CASH_IN, MOVEMENT_CASH_OUT, MOVEMENT_NO_SALE)


class CashDrawer(db.Model):
    """
    Physical cash drawer at a pharmacy counter.

    DESIGN: Drawers are persistent (deactivated, never deleted). Each drawer
    has many sessions over time but at most one open at any moment.
    """
    __tablename__ = "cash_drawers"
    __table_args__ = (
        db.UniqueConstraint("pharmacy_id", "code", name="uq_cash_drawers_pharmacy_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    pharmacy_id = db.Column(db.Integer, db.ForeignKey("pharmacies.id"), nullable=False, index=True)

    # Human-readable identifier (e.g., "CAISSE-1", "COMPTOIR")
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(128), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    pharmacy = db.relationship("Pharmacy", backref=db.backref("cash_drawers", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pharmacy_id": self.pharmacy_id,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class CashDrawerSession(db.Model):
    """
    One shift on one drawer.

    LIFECYCLE:
    - open: sales and cash movements can be recorded against it
    - closed: counted and system totals frozen, variance computed

    IMMUTABLE: Once closed, the session is never reopened and its stored
    totals are never recomputed, even if a sale is voided afterwards.

    The partial unique index enforces "one open session per drawer" in the
    database itself, so two terminals racing to open the same drawer cannot
    both succeed.
    """
    __tablename__ = "cash_drawer_sessions"
    __table_args__ = (
        db.UniqueConstraint("pharmacy_id", "session_number", name="uq_cash_sessions_pharmacy_number"),
        db.Index(
            "uq_cash_sessions_one_open_per_drawer",
            "drawer_id",
            unique=True,
            sqlite_where=db.text("status = 'open'"),
            postgresql_where=db.text("status = 'open'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    pharmacy_id = db.Column(db.Integer, db.ForeignKey("pharmacies.id"), nullable=False, index=True)
    drawer_id = db.Column(db.Integer, db.ForeignKey("cash_drawers.id"), nullable=False, index=True)

    # e.g. "SESSION-2026-10-19-001"
    session_number = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=SESSION_STATUS_OPEN, index=True)

    # Opening
    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    opened_by = db.Column(db.String(64), nullable=False)
    opened_by_name = db.Column(db.String(160), nullable=True)
    opening_balance_cents = db.Column(db.BigInteger, nullable=False, default=0)
    opening_notes = db.Column(db.Text, nullable=True)

    # Closing
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_by = db.Column(db.String(64), nullable=True)
    closed_by_name = db.Column(db.String(160), nullable=True)

    # Counted by the cashier (all amounts in centimes)
    counted_cash_cents = db.Column(db.BigInteger, nullable=True)
    counted_cards_cents = db.Column(db.BigInteger, nullable=True)
    counted_cheques_cents = db.Column(db.BigInteger, nullable=True)

    # Computed from sales and movements, frozen at close
    system_cash_cents = db.Column(db.BigInteger, nullable=True)
    system_cards_cents = db.Column(db.BigInteger, nullable=True)
    system_cheques_cents = db.Column(db.BigInteger, nullable=True)
    system_chifa_cents = db.Column(db.BigInteger, nullable=True)

    variance_cash_cents = db.Column(db.BigInteger, nullable=True)  # counted - system
    variance_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    drawer = db.relationship("CashDrawer", backref=db.backref("sessions", lazy=True))
    movements = db.relationship(
        "CashMovement",
        back_populates="session",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="CashMovement.occurred_at",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.status == SESSION_STATUS_OPEN

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pharmacy_id": self.pharmacy_id,
            "drawer_id": self.drawer_id,
            "drawer": {"id": self.drawer.id, "code": self.drawer.code, "name": self.drawer.name} if self.drawer else None,
            "session_number": self.session_number,
            "status": self.status,
            "opened_at": to_utc_z(self.opened_at),
            "opened_by": self.opened_by,
            "opened_by_name": self.opened_by_name,
            "opening_balance_cents": self.opening_balance_cents,
            "opening_notes": self.opening_notes,
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "closed_by": self.closed_by,
            "closed_by_name": self.closed_by_name,
            "counted_cash_cents": self.counted_cash_cents,
            "counted_cards_cents": self.counted_cards_cents,
            "counted_cheques_cents": self.counted_cheques_cents,
            "system_cash_cents": self.system_cash_cents,
            "system_cards_cents": self.system_cards_cents,
            "system_cheques_cents": self.system_cheques_cents,
            "system_chifa_cents": self.system_chifa_cents,
            "variance_cash_cents": self.variance_cash_cents,
            "variance_notes": self.variance_notes,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class CashMovement(db.Model):
    """
    Manual drawer adjustment inside a session.

    EVENT TYPES:
    - cash_in: float added to the drawer (positive amount)
    - cash_out: cash removed (bank drop, cash refund, petty expense)
    - no_sale: drawer opened without a sale (amount is zero)

    Only used for cash reconciliation. Append-only.
    """
    __tablename__ = "cash_movements"
    __table_args__ = (
        db.Index("ix_cash_movements_session_occurred", "session_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    pharmacy_id = db.Column(db.Integer, db.ForeignKey("pharmacies.id"), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cash_drawer_sessions.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(16), nullable=False, index=True)
    amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    reason = db.Column(db.String(255), nullable=True)

    actor_id = db.Column(db.String(64), nullable=False)
    actor_name = db.Column(db.String(160), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    session = db.relationship("CashDrawerSession", back_populates="movements")

    @property
    def signed_cash_cents(self) -> int:
        """Effect on the drawer's expected cash."""
        if self.movement_type == MOVEMENT_CASH_IN:
            return self.amount_cents
        if self.movement_type == MOVEMENT_CASH_OUT:
            return -self.amount_cents
        return 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pharmacy_id": self.pharmacy_id,
            "session_id": self.session_id,
            "movement_type": self.movement_type,
            "amount_cents": self.amount_cents,
            "signed_cash_cents": self.signed_cash_cents,
            "reason": self.reason,
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }
