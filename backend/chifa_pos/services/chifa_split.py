# Overview: Pure Chifa reimbursement split for one billed line.

"""
Chifa Split Calculator

Turns one billed line into what the insurer owes, what the patient owes,
and the majoration (the part of the price above the insurer's reference
tariff, which the insurer never covers).

POLICY:
- line_total        = unit_price * quantity
- reimbursable base = min(unit_price, tarif_reference) * quantity
- effective rate    = 100 when the beneficiary is chronic (ALD), else the line rate
- chifa_amount      = base * effective_rate / 100, rounded to the centime
- majoration_amount = max(0, unit_price - tarif_reference) * quantity
- patient_amount    = line_total - chifa_amount (always includes the majoration)

All amounts are integer centimes, so repeated calls never drift. The same
function serves invoice creation and totals preview.
"""

from __future__ import annotations

import decimal
from dataclasses import dataclass, asdict
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Optional

from ..validation import (
    ComputationInvariantError,
    ValidationError,
    parse_bool,
    parse_cents,
    parse_date,
    parse_int,
    parse_text,
)


DEFAULT_ROUNDING = decimal.ROUND_HALF_UP

ROUNDING_MODES = {
    "ROUND_HALF_UP": decimal.ROUND_HALF_UP,
    "ROUND_HALF_EVEN": decimal.ROUND_HALF_EVEN,
    "ROUND_DOWN": decimal.ROUND_DOWN,
}

# (rate, is_local_product) -> rate. Applied to non-chronic lines only.
RatePolicy = Callable[[int, bool], int]


@dataclass(frozen=True)
class ChifaSplit:
    chifa_amount: int
    patient_amount: int
    majoration_amount: int
    line_total: int
    reimbursable_base_total: int
    effective_rate: int

    def to_dict(self) -> dict:
        return {
            "chifa_amount_cents": self.chifa_amount,
            "patient_amount_cents": self.patient_amount,
            "majoration_amount_cents": self.majoration_amount,
            "line_total_cents": self.line_total,
            "reimbursable_base_total_cents": self.reimbursable_base_total,
            "effective_rate": self.effective_rate,
        }


@dataclass(frozen=True)
class InvoiceLineInput:
    """
    Typed billed line.

    Request payloads are mapped into this at the boundary; the calculator
    never sees loosely-typed JSON.
    """
    product_name: str
    quantity: int
    unit_price_cents: int
    reimbursement_rate: int
    tarif_reference_cents: Optional[int] = None
    is_local_product: bool = False
    product_id: Optional[str] = None
    product_barcode: Optional[str] = None
    cnas_code: Optional[str] = None
    batch_number: Optional[str] = None
    expiry_date: Optional[date] = None
    purchase_price_cents: Optional[int] = None

    @property
    def effective_tarif_cents(self) -> int:
        """Reference tariff, defaulting to the unit price when not published."""
        if self.tarif_reference_cents is None:
            return self.unit_price_cents
        return self.tarif_reference_cents

    @classmethod
    def from_payload(cls, data: Any, index: int = 0) -> "InvoiceLineInput":
        if not isinstance(data, dict):
            raise ValidationError(f"items[{index}] must be an object", field=f"items[{index}]")

        def field(name: str) -> str:
            return f"items[{index}].{name}"

        product_name = parse_text(data.get("product_name"), max_length=255, field=field("product_name"))
        if not product_name:
            raise ValidationError(f"{field('product_name')} is required", field=field("product_name"))

        quantity = parse_int(data.get("quantity"), field("quantity"))
        unit_price = parse_cents(data.get("unit_price_cents"), field("unit_price_cents"), default=None)
        rate = parse_int(data.get("reimbursement_rate"), field("reimbursement_rate"), required=False, default=0)
        tarif = parse_cents(
            data.get("tarif_reference_cents"), field("tarif_reference_cents"), required=False, default=None
        )
        purchase_price = parse_cents(
            data.get("purchase_price_cents"), field("purchase_price_cents"), required=False, default=None
        )

        line = cls(
            product_name=product_name,
            quantity=quantity,
            unit_price_cents=unit_price,
            reimbursement_rate=rate,
            tarif_reference_cents=tarif,
            is_local_product=parse_bool(data.get("is_local_product"), field("is_local_product")),
            product_id=parse_text(data.get("product_id"), max_length=64, field=field("product_id")),
            product_barcode=parse_text(data.get("product_barcode"), max_length=64, field=field("product_barcode")),
            cnas_code=parse_text(data.get("cnas_code"), max_length=64, field=field("cnas_code")),
            batch_number=parse_text(data.get("batch_number"), max_length=64, field=field("batch_number")),
            expiry_date=parse_date(data.get("expiry_date"), field("expiry_date")),
            purchase_price_cents=purchase_price,
        )
        validate_split_inputs(
            unit_price=line.unit_price_cents,
            tarif_reference=line.tarif_reference_cents,
            reimbursement_rate=line.reimbursement_rate,
            quantity=line.quantity,
            field_prefix=f"items[{index}].",
        )
        return line

    def to_dict(self) -> dict:
        data = asdict(self)
        data["expiry_date"] = self.expiry_date.isoformat() if self.expiry_date else None
        return data


def rounding_mode(name: str | None) -> str:
    """Map a configured rounding name to a decimal rounding constant."""
    if not name:
        return DEFAULT_ROUNDING
    try:
        return ROUNDING_MODES[name.upper()]
    except KeyError:
        raise ValueError(f"Unsupported CHIFA_ROUNDING {name!r}; expected one of {sorted(ROUNDING_MODES)}")


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_split_inputs(
    *,
    unit_price: Any,
    tarif_reference: Any,
    reimbursement_rate: Any,
    quantity: Any,
    field_prefix: str = "",
) -> None:
    """Input checks. Invalid lines are rejected, never computed."""
    if not _is_int(quantity) or quantity <= 0:
        raise ValidationError(f"{field_prefix}quantity must be a positive integer", field=f"{field_prefix}quantity")
    if not _is_int(unit_price) or unit_price <= 0:
        raise ValidationError(
            f"{field_prefix}unit_price_cents must be a positive integer amount",
            field=f"{field_prefix}unit_price_cents",
        )
    if tarif_reference is not None and (not _is_int(tarif_reference) or tarif_reference < 0):
        raise ValidationError(
            f"{field_prefix}tarif_reference_cents must be a non-negative integer amount",
            field=f"{field_prefix}tarif_reference_cents",
        )
    if not _is_int(reimbursement_rate) or not 0 <= reimbursement_rate <= 100:
        raise ValidationError(
            f"{field_prefix}reimbursement_rate must be between 0 and 100",
            field=f"{field_prefix}reimbursement_rate",
        )


def split(
    unit_price: int,
    tarif_reference: Optional[int],
    reimbursement_rate: int,
    is_chronic: bool,
    quantity: int,
    is_local_product: bool = False,
    *,
    rounding: str = DEFAULT_ROUNDING,
    policy: Optional[RatePolicy] = None,
) -> ChifaSplit:
    """
    Compute the insurer / patient / majoration split of one line.

    Args:
        unit_price: Selling price per unit (centimes, > 0)
        tarif_reference: Insurer reference price per unit (centimes); None
            means no published tariff and defaults to unit_price
        reimbursement_rate: 0..100, ignored when is_chronic
        is_chronic: Chronic-disease (ALD) beneficiary, covered at 100 %
        quantity: Units billed (> 0)
        is_local_product: Passed to `policy`; no effect without one
        rounding: decimal rounding mode for the insurer share
        policy: Optional rate override for tariff variants

    Raises:
        ValidationError: invalid inputs
        ComputationInvariantError: output breaks a money invariant
    """
    validate_split_inputs(
        unit_price=unit_price,
        tarif_reference=tarif_reference,
        reimbursement_rate=reimbursement_rate,
        quantity=quantity,
    )

    tarif = unit_price if tarif_reference is None else tarif_reference

    if is_chronic:
        effective_rate = 100
    elif policy is not None:
        effective_rate = policy(reimbursement_rate, bool(is_local_product))
        if not _is_int(effective_rate) or not 0 <= effective_rate <= 100:
            raise ComputationInvariantError(
                "Tariff policy returned an invalid reimbursement rate",
                rate=reimbursement_rate,
                policy_rate=effective_rate,
            )
    else:
        effective_rate = reimbursement_rate

    line_total = unit_price * quantity
    base_total = min(unit_price, tarif) * quantity
    chifa_amount = int(
        (Decimal(base_total) * Decimal(effective_rate) / Decimal(100)).quantize(Decimal(1), rounding=rounding)
    )
    majoration = max(0, unit_price - tarif) * quantity
    patient_amount = line_total - chifa_amount

    result = ChifaSplit(
        chifa_amount=chifa_amount,
        patient_amount=patient_amount,
        majoration_amount=majoration,
        line_total=line_total,
        reimbursable_base_total=base_total,
        effective_rate=effective_rate,
    )
    check_split_invariants(result)
    return result


def check_split_invariants(result: ChifaSplit) -> None:
    """Post-conditions. A failure here is a policy bug, never an input problem."""
    context = result.to_dict()
    if result.chifa_amount + result.patient_amount != result.line_total:
        raise ComputationInvariantError("chifa_amount + patient_amount != line_total", **context)
    if min(result.chifa_amount, result.patient_amount, result.majoration_amount) < 0:
        raise ComputationInvariantError("Split produced a negative amount", **context)
    if result.chifa_amount > result.reimbursable_base_total:
        raise ComputationInvariantError("Insurer share exceeds the reimbursable base", **context)
    if result.majoration_amount > result.patient_amount:
        raise ComputationInvariantError("Majoration is not fully borne by the patient", **context)


def split_line(
    line: InvoiceLineInput,
    is_chronic: bool,
    *,
    rounding: str = DEFAULT_ROUNDING,
    policy: Optional[RatePolicy] = None,
) -> ChifaSplit:
    return split(
        line.unit_price_cents,
        line.tarif_reference_cents,
        line.reimbursement_rate,
        is_chronic,
        line.quantity,
        line.is_local_product,
        rounding=rounding,
        policy=policy,
    )
