from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..models.sales import DISCOUNT_TYPES, PAYMENT_METHODS
from ..validation import (
    ValidationError,
    coerce_cents,
    coerce_int,
    coerce_optional_int,
    coerce_text,
    require_text,
)


def _require(payload: dict, key: str) -> Any:
    if key not in payload or payload[key] is None:
        raise ValidationError(f"{key} required")
    return payload[key]


def _as_list(payload: dict, key: str) -> list:
    value = payload.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{key} must be a list")
    return value


def _as_dict(value: Any, what: str) -> dict:
    if not isinstance(value, dict):
        raise ValidationError(f"each {what} must be an object")
    return value


def _discount_type(value: Any) -> str:
    discount_type = coerce_text(value) or "fixed"
    if discount_type not in DISCOUNT_TYPES:
        raise ValidationError(f"discount_type must be one of: {', '.join(sorted(DISCOUNT_TYPES))}")
    return discount_type


def _payment_method(value: Any, field_name: str = "method") -> str:
    method = coerce_text(value)
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"{field_name} must be one of: {', '.join(sorted(PAYMENT_METHODS))}")
    return method


@dataclass
class SaleItemInput:
    product_id: int
    product_name: str
    quantity: int
    unit_price_cents: int
    total_cents: int
    cost_price_cents: int = 0
    discount_cents: int = 0
    discount_type: str = "fixed"
    tax_rate_bps: int = 0
    tax_cents: int = 0
    barcode: str | None = None

    @classmethod
    def from_payload(cls, raw: Any) -> "SaleItemInput":
        raw = _as_dict(raw, "item")
        quantity = coerce_int(_require(raw, "quantity"), "quantity")
        if quantity <= 0:
            raise ValidationError("item quantity must be > 0")
        return cls(
            product_id=coerce_int(_require(raw, "product_id"), "product_id"),
            product_name=require_text(raw.get("product_name"), "product_name"),
            quantity=quantity,
            unit_price_cents=coerce_cents(_require(raw, "unit_price_cents"), "unit_price_cents"),
            total_cents=coerce_cents(_require(raw, "total_cents"), "total_cents"),
            cost_price_cents=coerce_cents(raw.get("cost_price_cents") or 0, "cost_price_cents"),
            discount_cents=coerce_cents(raw.get("discount_cents") or 0, "discount_cents"),
            discount_type=_discount_type(raw.get("discount_type")),
            tax_rate_bps=coerce_int(raw.get("tax_rate_bps") or 0, "tax_rate_bps"),
            tax_cents=coerce_cents(raw.get("tax_cents") or 0, "tax_cents"),
            barcode=coerce_text(raw.get("barcode")),
        )


@dataclass
class PaymentInput:
    method: str
    amount_cents: int
    reference: str | None = None
    received_cents: int | None = None
    change_cents: int = 0

    @classmethod
    def from_payload(cls, raw: Any) -> "PaymentInput":
        raw = _as_dict(raw, "payment")
        amount = coerce_cents(_require(raw, "amount_cents"), "amount_cents")
        received = raw.get("received_cents")
        return cls(
            method=_payment_method(raw.get("method")),
            amount_cents=amount,
            reference=coerce_text(raw.get("reference")),
            received_cents=amount if received is None else coerce_cents(received, "received_cents"),
            change_cents=coerce_cents(raw.get("change_cents") or 0, "change_cents"),
        )


@dataclass
class SaleInput:
    branch_id: int
    user_id: int
    items: list[SaleItemInput]
    payments: list[PaymentInput]
    subtotal_cents: int
    total_cents: int
    discount_cents: int = 0
    discount_type: str = "fixed"
    tax_cents: int = 0
    shift_id: int | None = None
    customer_name: str | None = None
    notes: str | None = None

    @property
    def payment_total_cents(self) -> int:
        return sum(p.amount_cents for p in self.payments)

    @classmethod
    def from_payload(cls, payload: Any) -> "SaleInput":
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")
        items = [SaleItemInput.from_payload(raw) for raw in _as_list(payload, "items")]
        if not items:
            raise ValidationError("Cannot create a sale with no items")
        return cls(
            branch_id=coerce_int(_require(payload, "branch_id"), "branch_id"),
            user_id=coerce_int(_require(payload, "user_id"), "user_id"),
            items=items,
            payments=[PaymentInput.from_payload(raw) for raw in _as_list(payload, "payments")],
            subtotal_cents=coerce_cents(_require(payload, "subtotal_cents"), "subtotal_cents"),
            total_cents=coerce_cents(_require(payload, "total_cents"), "total_cents"),
            discount_cents=coerce_cents(payload.get("discount_cents") or 0, "discount_cents"),
            discount_type=_discount_type(payload.get("discount_type")),
            tax_cents=coerce_cents(payload.get("tax_cents") or 0, "tax_cents"),
            shift_id=coerce_optional_int(payload.get("shift_id"), "shift_id"),
            customer_name=coerce_text(payload.get("customer_name")),
            notes=coerce_text(payload.get("notes")),
        )


@dataclass
class ReturnLineInput:
    product_id: int
    quantity: int


@dataclass
class ReturnInput:
    original_sale_id: int
    user_id: int
    items: list[ReturnLineInput]
    reason: str
    refund_method: str
    branch_id: int | None = None
    shift_id: int | None = None

    def quantities_by_product(self) -> dict[int, int]:
        totals: dict[int, int] = {}
        for line in self.items:
            totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
        return totals

    @classmethod
    def from_payload(cls, payload: Any) -> "ReturnInput":
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")
        lines = []
        for raw in _as_list(payload, "items"):
            raw = _as_dict(raw, "item")
            quantity = coerce_int(_require(raw, "quantity"), "quantity")
            if quantity <= 0:
                raise ValidationError("Return quantity must be positive")
            lines.append(ReturnLineInput(
                product_id=coerce_int(_require(raw, "product_id"), "product_id"),
                quantity=quantity,
            ))
        if not lines:
            raise ValidationError("Cannot create a return with no items")
        return cls(
            original_sale_id=coerce_int(_require(payload, "original_sale_id"), "original_sale_id"),
            user_id=coerce_int(_require(payload, "user_id"), "user_id"),
            items=lines,
            reason=require_text(payload.get("reason"), "reason"),
            refund_method=_payment_method(payload.get("refund_method"), "refund_method"),
            branch_id=coerce_optional_int(payload.get("branch_id"), "branch_id"),
            shift_id=coerce_optional_int(payload.get("shift_id"), "shift_id"),
        )


@dataclass
class PurchaseLineInput:
    product_id: int
    quantity: int
    unit_cost_cents: int

    @property
    def total_cents(self) -> int:
        return self.quantity * self.unit_cost_cents


@dataclass
class PurchaseInput:
    supplier_id: int
    branch_id: int
    items: list[PurchaseLineInput] = field(default_factory=list)
    user_id: int | None = None
    invoice_number: str | None = None
    notes: str | None = None

    @property
    def subtotal_cents(self) -> int:
        return sum(line.total_cents for line in self.items)

    @classmethod
    def from_payload(cls, payload: Any) -> "PurchaseInput":
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")
        lines = []
        for raw in _as_list(payload, "items"):
            raw = _as_dict(raw, "item")
            quantity = coerce_int(_require(raw, "quantity"), "quantity")
            if quantity <= 0:
                raise ValidationError("item quantity must be > 0")
            lines.append(PurchaseLineInput(
                product_id=coerce_int(_require(raw, "product_id"), "product_id"),
                quantity=quantity,
                unit_cost_cents=coerce_cents(_require(raw, "unit_cost_cents"), "unit_cost_cents"),
            ))
        if not lines:
            raise ValidationError("Cannot create a purchase with no items")
        return cls(
            supplier_id=coerce_int(_require(payload, "supplier_id"), "supplier_id"),
            branch_id=coerce_int(_require(payload, "branch_id"), "branch_id"),
            items=lines,
            user_id=coerce_optional_int(payload.get("user_id"), "user_id"),
            invoice_number=coerce_text(payload.get("invoice_number")),
            notes=coerce_text(payload.get("notes")),
        )
