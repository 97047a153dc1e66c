# Overview: Tender ledger: completed sales with payment breakdown and insurer share; void and return.

"""
Sales (Tender Ledger) Service

WHY: Drawer reconciliation is the sum of these rows. A sale records how
the patient paid at the counter and what share the insurer owes, which
the patient does not pay.

DESIGN PRINCIPLES:
- A sale is recorded against an open session (session row locked)
- Insured sales build their Chifa invoice in the same transaction
- Patient due = total - insurer share; tenders must cover it
- Non-cash tenders never exceed what is due; only cash produces change
- Amounts are immutable; the only transitions are completed -> voided|returned
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from flask import current_app

from ..extensions import db
from ..models import Sale, SaleLine
from ..models.sales import SALE_STATUS_COMPLETED, SALE_STATUS_RETURNED, SALE_STATUS_VOIDED
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    parse_cents,
    parse_choice,
    parse_int,
    parse_text,
)
from chifa_pos.time_utils import utcnow
from .cash_session_service import lock_open_session
from .chifa_invoice_service import InvoiceRequest, build_invoice, compute_invoice_totals
from .concurrency import lock_for_update, unit_of_work
from .identity_service import ActorContext
from .ledger_service import append_ledger_event
from .sequence_service import next_sale_number


# =============================================================================
# TENDER TYPES (CONSTANTS)
# =============================================================================

TENDER_CASH = "cash"
TENDER_CARD = "card"
TENDER_CHEQUE = "cheque"
TENDER_MOBILE = "mobile"
TENDER_CREDIT = "credit"

VALID_TENDER_TYPES = [TENDER_CASH, TENDER_CARD, TENDER_CHEQUE, TENDER_MOBILE, TENDER_CREDIT]

SALE_STATUSES = (SALE_STATUS_COMPLETED, SALE_STATUS_VOIDED, SALE_STATUS_RETURNED)


@dataclass(frozen=True)
class SaleLineInput:
    product_name: str
    quantity: int
    unit_price_cents: int
    product_id: str | None = None

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    @classmethod
    def from_payload(cls, data: Any, index: int) -> "SaleLineInput":
        if not isinstance(data, dict):
            raise ValidationError(f"lines[{index}] must be an object", field=f"lines[{index}]")
        name = parse_text(data.get("product_name"), max_length=255, field=f"lines[{index}].product_name")
        if not name:
            raise ValidationError(f"lines[{index}].product_name is required", field=f"lines[{index}].product_name")
        quantity = parse_int(data.get("quantity"), f"lines[{index}].quantity")
        if quantity <= 0:
            raise ValidationError(f"lines[{index}].quantity must be positive", field=f"lines[{index}].quantity")
        unit_price = parse_cents(data.get("unit_price_cents"), f"lines[{index}].unit_price_cents", default=None)
        if unit_price <= 0:
            raise ValidationError(
                f"lines[{index}].unit_price_cents must be positive", field=f"lines[{index}].unit_price_cents"
            )
        return cls(
            product_name=name,
            quantity=quantity,
            unit_price_cents=unit_price,
            product_id=parse_text(data.get("product_id"), max_length=64, field=f"lines[{index}].product_id"),
        )


def parse_payments(payments: Any) -> dict[str, int]:
    """{"cash": 3000, "card": 0, ...} -> amounts per tender, unknown tenders rejected."""
    if payments is None:
        payments = {}
    if not isinstance(payments, dict):
        raise ValidationError("payments must be an object keyed by tender type", field="payments")
    unknown = sorted(set(payments) - set(VALID_TENDER_TYPES))
    if unknown:
        raise ValidationError(
            f"Invalid tender type(s): {', '.join(unknown)}. Must be one of {VALID_TENDER_TYPES}",
            field="payments",
        )
    return {
        tender: parse_cents(payments.get(tender), f"payments.{tender}", required=False, default=0)
        for tender in VALID_TENDER_TYPES
    }


def _chifa_items(line_payloads: list[dict], insurance: dict) -> list:
    """
    Invoice items for an insured sale.

    Taken from insurance["items"] when given; otherwise every sale line that
    carries a reimbursement_rate is Chifa-listed and billed.
    """
    if insurance.get("items"):
        return insurance["items"]
    return [line for line in line_payloads if isinstance(line, dict) and line.get("reimbursement_rate") is not None]


def _check_items_in_cart(sale_lines: list[SaleLineInput], invoice_lines) -> None:
    """Every billed item must come out of a sale line: same product, same price, quantity within the line."""
    remaining = [line.quantity for line in sale_lines]
    for index, item in enumerate(invoice_lines):
        for position, line in enumerate(sale_lines):
            same_product = (
                line.product_id == item.product_id if item.product_id and line.product_id
                else line.product_name == item.product_name
            )
            if (
                same_product
                and line.unit_price_cents == item.unit_price_cents
                and remaining[position] >= item.quantity
            ):
                remaining[position] -= item.quantity
                break
        else:
            raise ValidationError(
                f"Insured item {item.product_name} does not match a sale line",
                field=f"insurance.items[{index}]",
                product_name=item.product_name,
                quantity=item.quantity,
            )


# =============================================================================
# SALE RECORDING
# =============================================================================

@unit_of_work
def record_sale(
    pharmacy_id: int,
    actor: ActorContext,
    session_id: int,
    *,
    lines: Any,
    payments: Any = None,
    discount_amount_cents: Any = 0,
    customer_name: str | None = None,
    insurance: Any = None,
) -> Sale:
    """
    Record a completed sale on an open session.

    Args:
        lines: [{product_id?, product_name, quantity, unit_price_cents, ...}]
        payments: {cash|card|cheque|mobile|credit: amount_cents}
        discount_amount_cents: whole-sale discount (<= subtotal)
        insurance: optional Chifa block (insured identity, chronic flag,
            prescriber, items?). Builds an invoice with this sale.

    Raises:
        ValidationError: empty cart, bad lines/tenders, insufficient payment
        NotFoundError: session unknown to this pharmacy
        ConflictError: session closed
    """
    if not isinstance(lines, list) or not lines:
        raise ValidationError("Cart is empty", field="lines")
    parsed_lines = [SaleLineInput.from_payload(line, index) for index, line in enumerate(lines)]
    tenders = parse_payments(payments)
    discount = parse_cents(discount_amount_cents, "discount_amount_cents", required=False, default=0)
    customer_name = parse_text(customer_name, max_length=160, field="customer_name")

    subtotal = sum(line.line_total_cents for line in parsed_lines)
    if discount > subtotal:
        raise ValidationError("Discount cannot exceed the sale subtotal", field="discount_amount_cents")
    total = subtotal - discount

    invoice_request = None
    chifa_total = 0
    if insurance is not None:
        if not isinstance(insurance, dict):
            raise ValidationError("insurance must be an object", field="insurance")
        invoice_request = InvoiceRequest.from_payload({**insurance, "items": _chifa_items(lines, insurance)})
        _check_items_in_cart(parsed_lines, invoice_request.lines)
        chifa_total = compute_invoice_totals(invoice_request).total_chifa
        if chifa_total > total:
            raise ValidationError(
                "Insurer share exceeds the sale total after discount",
                chifa_total_cents=chifa_total,
                total_amount_cents=total,
            )

    patient_due = total - chifa_total
    paid_total = sum(tenders.values())
    non_cash = paid_total - tenders[TENDER_CASH]
    if non_cash > patient_due:
        raise ValidationError(
            "Non-cash tenders exceed the amount due",
            patient_total_cents=patient_due,
            non_cash_cents=non_cash,
        )
    if paid_total < patient_due:
        raise ValidationError(
            "Insufficient payment",
            patient_total_cents=patient_due,
            paid_cents=paid_total,
        )
    change = paid_total - patient_due

    session = lock_open_session(pharmacy_id, session_id)
    now = utcnow()

    sale = Sale(
        pharmacy_id=pharmacy_id,
        session_id=session.id,
        sale_number=next_sale_number(pharmacy_id),
        status=SALE_STATUS_COMPLETED,
        customer_name=customer_name,
        subtotal_cents=subtotal,
        discount_amount_cents=discount,
        total_amount_cents=total,
        chifa_total_cents=chifa_total,
        patient_total_cents=patient_due,
        paid_cash_cents=tenders[TENDER_CASH],
        paid_card_cents=tenders[TENDER_CARD],
        paid_cheque_cents=tenders[TENDER_CHEQUE],
        paid_mobile_cents=tenders[TENDER_MOBILE],
        paid_credit_cents=tenders[TENDER_CREDIT],
        change_given_cents=change,
        created_by=actor.actor_id,
        created_by_name=actor.actor_display_name,
        created_at=now,
    )
    for line in parsed_lines:
        sale.lines.append(SaleLine(
            product_id=line.product_id,
            product_name=line.product_name,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            line_total_cents=line.line_total_cents,
        ))
    db.session.add(sale)
    db.session.flush()

    if invoice_request is not None:
        invoice = build_invoice(pharmacy_id, actor, invoice_request, sale_id=sale.id, commit=False)
        sale.chifa_total_cents = invoice.total_chifa_cents

    append_ledger_event(
        pharmacy_id=pharmacy_id,
        event_type="sale.completed",
        event_category="sales",
        entity_type="sale",
        entity_id=sale.id,
        actor_id=actor.actor_id,
        session_id=session.id,
        sale_id=sale.id,
        amount_cents=total,
        occurred_at=now,
        note=f"{sale.sale_number} (cash {tenders[TENDER_CASH]}, change {change}, chifa {chifa_total})",
    )
    db.session.commit()

    current_app.logger.info(
        "Sale %s recorded in session %s: total=%s chifa=%s patient=%s",
        sale.sale_number, session.session_number, total, chifa_total, patient_due,
    )
    return sale


def _locked_completed_sale(pharmacy_id: int, sale_id: int, target: str) -> Sale:
    sale = lock_for_update(
        db.session.query(Sale).filter_by(id=sale_id, pharmacy_id=pharmacy_id)
    ).populate_existing().first()
    if not sale:
        raise NotFoundError("Sale not found", sale_id=sale_id)
    if sale.status != SALE_STATUS_COMPLETED:
        raise ConflictError(
            f"Only completed sales can be {target} (status {sale.status})",
            sale_id=sale.id,
            sale_number=sale.sale_number,
            status=sale.status,
        )
    if sale.chifa_invoices:
        invoice = sale.chifa_invoices[0]
        raise ConflictError(
            f"Sale carries Chifa invoice {invoice.invoice_number}; settle it through the rejection workflow",
            sale_id=sale.id,
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
        )
    return sale


@unit_of_work
def void_sale(pharmacy_id: int, actor: ActorContext, sale_id: int, *, reason: str | None = None) -> Sale:
    """
    completed -> voided.

    A void on an already-closed session does not touch that session's
    frozen totals.
    """
    reason = parse_text(reason, max_length=255, field="reason")
    if not reason:
        raise ValidationError("reason is required to void a sale", field="reason")

    sale = _locked_completed_sale(pharmacy_id, sale_id, SALE_STATUS_VOIDED)
    now = utcnow()
    sale.status = SALE_STATUS_VOIDED
    sale.voided_at = now
    sale.voided_by = actor.actor_id
    sale.void_reason = reason

    append_ledger_event(
        pharmacy_id=pharmacy_id,
        event_type="sale.voided",
        event_category="sales",
        entity_type="sale",
        entity_id=sale.id,
        actor_id=actor.actor_id,
        session_id=sale.session_id,
        sale_id=sale.id,
        amount_cents=-sale.total_amount_cents,
        occurred_at=now,
        note=reason,
    )
    db.session.commit()
    current_app.logger.info("Sale %s voided by %s", sale.sale_number, actor.actor_id)
    return sale


@unit_of_work
def return_sale(pharmacy_id: int, actor: ActorContext, sale_id: int, *, reason: str | None = None) -> Sale:
    """
    completed -> returned.

    A cash refund is a separate cash_out movement on the refunding session.
    """
    reason = parse_text(reason, max_length=255, field="reason")
    if not reason:
        raise ValidationError("reason is required to return a sale", field="reason")

    sale = _locked_completed_sale(pharmacy_id, sale_id, SALE_STATUS_RETURNED)
    now = utcnow()
    sale.status = SALE_STATUS_RETURNED
    sale.returned_at = now
    sale.returned_by = actor.actor_id
    sale.return_reason = reason

    append_ledger_event(
        pharmacy_id=pharmacy_id,
        event_type="sale.returned",
        event_category="sales",
        entity_type="sale",
        entity_id=sale.id,
        actor_id=actor.actor_id,
        session_id=sale.session_id,
        sale_id=sale.id,
        amount_cents=-sale.total_amount_cents,
        occurred_at=now,
        note=reason,
    )
    db.session.commit()
    current_app.logger.info("Sale %s returned by %s", sale.sale_number, actor.actor_id)
    return sale


# =============================================================================
# QUERIES
# =============================================================================

def get_sale(pharmacy_id: int, sale_id: int) -> Sale:
    sale = db.session.query(Sale).filter_by(id=sale_id, pharmacy_id=pharmacy_id).first()
    if not sale:
        raise NotFoundError("Sale not found", sale_id=sale_id)
    return sale


def list_sales(
    pharmacy_id: int,
    *,
    session_id: int | None = None,
    status: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[Sale], int]:
    query = db.session.query(Sale).filter(Sale.pharmacy_id == pharmacy_id)
    if session_id is not None:
        query = query.filter(Sale.session_id == session_id)
    if status:
        query = query.filter(Sale.status == parse_choice(status, "status", SALE_STATUSES))

    total = query.count()
    page = max(page, 1)
    limit = min(max(limit, 1), 200)
    sales = query.order_by(Sale.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return sales, total
