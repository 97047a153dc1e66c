# Overview: Cash drawer and drawer-session lifecycle: open, cash movements, close with reconciliation.

"""
Cash Drawer Session Service

WHY: Each shift on a drawer is a period of cash accountability. At close
the counted cash is compared against what the drawer should hold, and
the result is frozen for audit.

DESIGN PRINCIPLES:
- At most one open session per drawer (row lock + partial unique index)
- The "current session" is always a query, never cached state
- Sessions are immutable once closed; no reopening, no double close
- System totals are computed once, at close, and stored on the session

RECONCILIATION (completed sales only):
    system_cash    = opening + Σ paid_cash - Σ change_given + Σ cash_in - Σ cash_out
    system_cards   = Σ paid_card
    system_cheques = Σ paid_cheque
    system_chifa   = Σ chifa_total
    variance_cash  = counted_cash - system_cash
"""

from __future__ import annotations

from dataclasses import dataclass, asdict

from flask import current_app
from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CashDrawer, CashDrawerSession, CashMovement, Sale
from ..models.drawers import (
    MOVEMENT_CASH_IN,
    MOVEMENT_CASH_OUT,
    MOVEMENT_NO_SALE,
    MOVEMENT_TYPES,
    SESSION_STATUS_CLOSED,
    SESSION_STATUS_OPEN,
)
from ..models.sales import SALE_STATUS_COMPLETED
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    parse_choice,
    parse_text,
)
from chifa_pos.time_utils import utcnow
from .concurrency import lock_for_update, unit_of_work
from .identity_service import ActorContext
from .ledger_service import append_ledger_event
from .sequence_service import next_session_number


@dataclass(frozen=True)
class SystemTotals:
    """What the drawer should hold, computed from the session's records."""
    opening_balance: int
    completed_sales: int
    cash_sales: int
    change_given: int
    cash_in: int
    cash_out: int
    cards: int
    cheques: int
    mobile: int
    credit: int
    chifa: int

    @property
    def expected_cash(self) -> int:
        return self.opening_balance + self.cash_sales - self.change_given + self.cash_in - self.cash_out

    def to_dict(self) -> dict:
        data = {f"{key}_cents" if key != "completed_sales" else key: value for key, value in asdict(self).items()}
        data["expected_cash_cents"] = self.expected_cash
        return data


def _check_amount(value, field: str, *, allow_zero: bool = True) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer amount in centimes", field=field)
    if value < 0 or (value == 0 and not allow_zero):
        raise ValidationError(f"{field} must be {'non-negative' if allow_zero else 'positive'}", field=field)
    return value


# =============================================================================
# DRAWER MANAGEMENT
# =============================================================================

def create_drawer(pharmacy_id: int, code: str, name: str) -> CashDrawer:
    """
    Register a physical drawer.

    Drawers must exist before sessions can be opened on them.
    """
    code = parse_text(code, max_length=32, field="code")
    name = parse_text(name, max_length=128, field="name")
    if not code or not name:
        raise ValidationError("code and name are required", fields=["code", "name"])

    existing = db.session.query(CashDrawer).filter_by(pharmacy_id=pharmacy_id, code=code).first()
    if existing:
        raise ConflictError(f"Drawer '{code}' already exists", drawer_id=existing.id)

    drawer = CashDrawer(pharmacy_id=pharmacy_id, code=code, name=name, is_active=True)
    db.session.add(drawer)
    db.session.commit()
    return drawer


def list_drawers(pharmacy_id: int, *, include_inactive: bool = False) -> list[CashDrawer]:
    query = db.session.query(CashDrawer).filter_by(pharmacy_id=pharmacy_id)
    if not include_inactive:
        query = query.filter_by(is_active=True)
    return query.order_by(CashDrawer.code).all()


def get_drawer(pharmacy_id: int, drawer_id: int) -> CashDrawer:
    drawer = db.session.query(CashDrawer).filter_by(id=drawer_id, pharmacy_id=pharmacy_id).first()
    if not drawer:
        raise NotFoundError("Drawer not found", drawer_id=drawer_id)
    return drawer


# =============================================================================
# SESSION LIFECYCLE
# =============================================================================

def get_open_session(pharmacy_id: int, drawer_id: int) -> CashDrawerSession | None:
    """The drawer's open session, if any. Always read from the database."""
    return db.session.query(CashDrawerSession).filter_by(
        pharmacy_id=pharmacy_id,
        drawer_id=drawer_id,
        status=SESSION_STATUS_OPEN,
    ).first()


def _already_open(existing: CashDrawerSession) -> ConflictError:
    return ConflictError(
        f"Drawer already has an open session ({existing.session_number})",
        session_id=existing.id,
        session_number=existing.session_number,
        opened_by=existing.opened_by,
    )


@unit_of_work
def open_session(
    pharmacy_id: int,
    actor: ActorContext,
    drawer_id: int,
    *,
    opening_balance_cents: int = 0,
    notes: str | None = None,
) -> CashDrawerSession:
    """
    Open a new session on a drawer.

    The drawer row is locked first so concurrent openers queue up; the
    partial unique index on (drawer_id) WHERE status='open' rejects
    whatever slips past the lock.

    Raises:
        NotFoundError: drawer unknown to this pharmacy
        ConflictError: drawer inactive, or already has an open session
    """
    opening_balance_cents = _check_amount(opening_balance_cents, "opening_balance_cents")

    drawer = lock_for_update(
        db.session.query(CashDrawer).filter_by(id=drawer_id, pharmacy_id=pharmacy_id)
    ).first()
    if not drawer:
        raise NotFoundError("Drawer not found", drawer_id=drawer_id)
    if not drawer.is_active:
        raise ConflictError("Cannot open a session on an inactive drawer", drawer_id=drawer.id)

    existing = get_open_session(pharmacy_id, drawer.id)
    if existing:
        raise _already_open(existing)

    now = utcnow()
    session = CashDrawerSession(
        pharmacy_id=pharmacy_id,
        drawer_id=drawer.id,
        session_number=next_session_number(
            pharmacy_id, now.date(), prefix=current_app.config.get("SESSION_NUMBER_PREFIX", "SESSION")
        ),
        status=SESSION_STATUS_OPEN,
        opened_at=now,
        opened_by=actor.actor_id,
        opened_by_name=actor.actor_display_name,
        opening_balance_cents=opening_balance_cents,
        opening_notes=notes,
    )
    db.session.add(session)
    try:
        db.session.flush()
    except IntegrityError as exc:
        db.session.rollback()
        existing = get_open_session(pharmacy_id, drawer_id)
        if existing:
            raise _already_open(existing) from exc
        raise ConflictError("Session could not be opened; retry", drawer_id=drawer_id) from exc

    append_ledger_event(
        pharmacy_id=pharmacy_id,
        event_type="cash.session_opened",
        event_category="cash",
        entity_type="cash_drawer_session",
        entity_id=session.id,
        actor_id=actor.actor_id,
        session_id=session.id,
        amount_cents=opening_balance_cents,
        occurred_at=now,
        note=f"Session opened on {drawer.code}",
    )
    db.session.commit()

    current_app.logger.info(
        "Session %s opened on drawer %s by %s with %s",
        session.session_number, drawer.code, actor.actor_id, opening_balance_cents,
    )
    return session


def _locked_session(pharmacy_id: int, session_id: int) -> CashDrawerSession:
    session = lock_for_update(
        db.session.query(CashDrawerSession).filter_by(id=session_id, pharmacy_id=pharmacy_id)
    ).populate_existing().first()
    if not session:
        raise NotFoundError("Session not found", session_id=session_id)
    return session


def _not_open(session: CashDrawerSession) -> ConflictError:
    return ConflictError(
        f"Session {session.session_number} is closed",
        session_id=session.id,
        session_number=session.session_number,
        closed_at=session.closed_at.isoformat() if session.closed_at else None,
    )


def lock_open_session(pharmacy_id: int, session_id: int) -> CashDrawerSession:
    """Lock a session row and require it to be open (used by every session write)."""
    session = _locked_session(pharmacy_id, session_id)
    if not session.is_open:
        raise _not_open(session)
    return session


@unit_of_work
def record_movement(
    pharmacy_id: int,
    actor: ActorContext,
    session_id: int,
    *,
    movement_type: str,
    amount_cents: int = 0,
    reason: str | None = None,
) -> CashMovement:
    """
    Record a manual drawer adjustment on an open session.

    cash_in / cash_out need a positive amount; no_sale is always zero.
    """
    movement_type = parse_choice(movement_type, "movement_type", MOVEMENT_TYPES)
    if movement_type == MOVEMENT_NO_SALE:
        if amount_cents not in (None, 0):
            raise ValidationError("no_sale movements carry no amount", field="amount_cents")
        amount_cents = 0
    else:
        amount_cents = _check_amount(amount_cents, "amount_cents", allow_zero=False)
    reason = parse_text(reason, max_length=255, field="reason")

    session = lock_open_session(pharmacy_id, session_id)

    movement = CashMovement(
        pharmacy_id=pharmacy_id,
        session_id=session.id,
        movement_type=movement_type,
        amount_cents=amount_cents,
        reason=reason,
        actor_id=actor.actor_id,
        actor_name=actor.actor_display_name,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()

    append_ledger_event(
        pharmacy_id=pharmacy_id,
        event_type=f"cash.{movement_type}",
        event_category="cash",
        entity_type="cash_movement",
        entity_id=movement.id,
        actor_id=actor.actor_id,
        session_id=session.id,
        amount_cents=movement.signed_cash_cents,
        occurred_at=movement.occurred_at,
        note=reason,
    )
    db.session.commit()
    return movement


def compute_system_totals(session: CashDrawerSession) -> SystemTotals:
    """
    Aggregate completed sales and cash movements of a session.

    Read-only; shared by close_session and the X/Z reports so both use the
    same expected-cash formula.
    """
    sales = db.session.query(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.paid_cash_cents), 0),
        func.coalesce(func.sum(Sale.change_given_cents), 0),
        func.coalesce(func.sum(Sale.paid_card_cents), 0),
        func.coalesce(func.sum(Sale.paid_cheque_cents), 0),
        func.coalesce(func.sum(Sale.paid_mobile_cents), 0),
        func.coalesce(func.sum(Sale.paid_credit_cents), 0),
        func.coalesce(func.sum(Sale.chifa_total_cents), 0),
    ).filter(
        Sale.session_id == session.id,
        Sale.status == SALE_STATUS_COMPLETED,
    ).one()

    cash_in, cash_out = db.session.query(
        func.coalesce(func.sum(case((CashMovement.movement_type == MOVEMENT_CASH_IN, CashMovement.amount_cents), else_=0)), 0),
        func.coalesce(func.sum(case((CashMovement.movement_type == MOVEMENT_CASH_OUT, CashMovement.amount_cents), else_=0)), 0),
    ).filter(CashMovement.session_id == session.id).one()

    count, cash, change, cards, cheques, mobile, credit, chifa = (int(v) for v in sales)
    return SystemTotals(
        opening_balance=session.opening_balance_cents,
        completed_sales=count,
        cash_sales=cash,
        change_given=change,
        cash_in=int(cash_in),
        cash_out=int(cash_out),
        cards=cards,
        cheques=cheques,
        mobile=mobile,
        credit=credit,
        chifa=chifa,
    )


@unit_of_work
def close_session(
    pharmacy_id: int,
    actor: ActorContext,
    session_id: int,
    *,
    counted_cash_cents: int,
    counted_cards_cents: int | None = None,
    counted_cheques_cents: int | None = None,
    notes: str | None = None,
) -> CashDrawerSession:
    """
    Close a session: compute system totals, compare, freeze.

    The session row is locked for the whole computation; sale recording
    takes the same lock, so a sale is either fully inside the frozen totals
    or belongs to no open session at all.

    Raises:
        NotFoundError: session unknown to this pharmacy
        ConflictError: session already closed (stored totals untouched)
    """
    counted_cash_cents = _check_amount(counted_cash_cents, "counted_cash_cents")
    if counted_cards_cents is not None:
        counted_cards_cents = _check_amount(counted_cards_cents, "counted_cards_cents")
    if counted_cheques_cents is not None:
        counted_cheques_cents = _check_amount(counted_cheques_cents, "counted_cheques_cents")

    session = lock_open_session(pharmacy_id, session_id)
    totals = compute_system_totals(session)
    now = utcnow()

    session.counted_cash_cents = counted_cash_cents
    session.counted_cards_cents = counted_cards_cents
    session.counted_cheques_cents = counted_cheques_cents
    session.system_cash_cents = totals.expected_cash
    session.system_cards_cents = totals.cards
    session.system_cheques_cents = totals.cheques
    session.system_chifa_cents = totals.chifa
    session.variance_cash_cents = counted_cash_cents - totals.expected_cash
    session.variance_notes = notes
    session.status = SESSION_STATUS_CLOSED
    session.closed_at = now
    session.closed_by = actor.actor_id
    session.closed_by_name = actor.actor_display_name

    append_ledger_event(
        pharmacy_id=pharmacy_id,
        event_type="cash.session_closed",
        event_category="cash",
        entity_type="cash_drawer_session",
        entity_id=session.id,
        actor_id=actor.actor_id,
        session_id=session.id,
        amount_cents=session.variance_cash_cents,
        occurred_at=now,
        note=f"Expected {totals.expected_cash}, counted {counted_cash_cents}",
    )
    db.session.commit()

    log = current_app.logger.warning if session.variance_cash_cents else current_app.logger.info
    log(
        "Session %s closed by %s: system_cash=%s counted=%s variance=%s",
        session.session_number, actor.actor_id, session.system_cash_cents,
        counted_cash_cents, session.variance_cash_cents,
    )
    return session


# =============================================================================
# QUERIES
# =============================================================================

def get_session(pharmacy_id: int, session_id: int) -> CashDrawerSession:
    session = db.session.query(CashDrawerSession).filter_by(id=session_id, pharmacy_id=pharmacy_id).first()
    if not session:
        raise NotFoundError("Session not found", session_id=session_id)
    return session


def list_sessions(
    pharmacy_id: int,
    *,
    drawer_id: int | None = None,
    status: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[CashDrawerSession], int]:
    query = db.session.query(CashDrawerSession).filter(CashDrawerSession.pharmacy_id == pharmacy_id)
    if drawer_id is not None:
        query = query.filter(CashDrawerSession.drawer_id == drawer_id)
    if status:
        query = query.filter(
            CashDrawerSession.status == parse_choice(status, "status", (SESSION_STATUS_OPEN, SESSION_STATUS_CLOSED))
        )

    total = query.count()
    page = max(page, 1)
    limit = min(max(limit, 1), 200)
    sessions = (
        query.order_by(CashDrawerSession.opened_at.desc(), CashDrawerSession.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return sessions, total
