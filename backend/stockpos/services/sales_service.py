"""
Sale Poster

WHY: A completed sale touches three ledgers at once: the sale document, the
stock movement log and (for cash) the caisse session. All of it happens in
one write_transaction() so a failure on any line leaves no sale row, no stock
movement and no cash movement behind.

POSTING ORDER (inside one transaction):
1. validate input (before any write)
2. lock products, customer and session; check stock for every line
3. insert the Sale with computed subtotal / discount / tax / total
4. one "out" StockMovement per line, then the SaleItem pointing at it
5. cash sales in a session: one "sale" CashMovement
6. customer loyalty and purchase totals

Money is rounded to cents where it is computed (money.round_money), never
re-rounded afterwards.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..errors import (
    CustomerNotFound,
    InsufficientStock,
    RefundError,
    SaleNotFound,
    SessionNotActive,
    SessionNotFound,
    ValidationError,
)
from ..models import CaisseSession, Customer, Product, Sale, SaleItem, SaleRefund, SaleRefundLine
from ..models.sales import PAYMENT_METHODS
from ..money import ZERO, parse_amount, round_money
from ..time_utils import utcnow
from .caisse_service import apply_cash_delta_locked, get_active_session
from .concurrency import lock_for_update, write_transaction
from .document_service import next_sale_number
from .movement_service import append_movement, get_product, validate_quantity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SaleLineInput:
    product_id: int
    quantity: int
    unit_price: Decimal | None = None  # None -> product selling price
    discount_amount: Decimal = ZERO


@dataclass(frozen=True)
class SaleTotals:
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def parse_sale_lines(raw_items) -> list[SaleLineInput]:
    """
    Validate raw line dicts. Accepts snake_case or camelCase keys
    (product_id/productId, unit_price/unitPrice, discount_amount/discountAmount).
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("At least one item is required", details={"field": "items"})

    lines = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object", details={"index": index})

        product_id = raw.get("product_id", raw.get("productId"))
        if isinstance(product_id, bool) or not isinstance(product_id, int):
            raise ValidationError("product_id must be an integer", details={"index": index, "value": product_id})

        quantity = validate_quantity(raw.get("quantity"), field=f"items[{index}].quantity")

        unit_price = raw.get("unit_price", raw.get("unitPrice"))
        if unit_price is not None:
            unit_price = parse_amount(unit_price, f"items[{index}].unit_price")

        discount = raw.get("discount_amount", raw.get("discountAmount"))
        discount = parse_amount(discount, f"items[{index}].discount_amount") if discount is not None else ZERO

        lines.append(SaleLineInput(
            product_id=product_id,
            quantity=quantity,
            unit_price=unit_price,
            discount_amount=discount,
        ))
    return lines


def compute_totals(
    line_amounts: list[tuple[Decimal, int, Decimal]],
    *,
    order_discount: Decimal = ZERO,
    tax_rate: Decimal = ZERO,
    prices_include_tax: bool = False,
) -> SaleTotals:
    """
    Totals for (unit_price, quantity, line_discount) tuples.

    subtotal excludes tax. Tax-exclusive pricing adds tax on top of the
    discounted subtotal; tax-inclusive pricing extracts it from the
    discounted subtotal and the total stays unchanged.
    """
    subtotal = round_money(sum((round_money(price * qty) for price, qty, _ in line_amounts), ZERO))
    discount = round_money(sum((d for _, _, d in line_amounts), ZERO) + order_discount)

    taxable = subtotal - discount
    if taxable < 0:
        raise ValidationError(
            "Total amount cannot be negative",
            details={"subtotal": str(subtotal), "discount_amount": str(discount)},
        )

    rate = Decimal(tax_rate)
    if prices_include_tax:
        total = round_money(taxable)
        tax = round_money(taxable - taxable / (1 + rate)) if rate else ZERO
    else:
        tax = round_money(taxable * rate)
        total = round_money(taxable + tax)

    return SaleTotals(subtotal=subtotal, discount_amount=discount, tax_amount=tax, total_amount=total)


def _validate_payment_method(payment_method: str) -> None:
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"payment_method must be one of {', '.join(PAYMENT_METHODS)}",
            details={"field": "payment_method", "value": payment_method},
        )


def _load_customer(customer_id: int, *, lock: bool) -> Customer:
    query = db.session.query(Customer).filter_by(id=customer_id)
    if lock:
        query = lock_for_update(query).populate_existing()
    customer = query.first()
    if customer is None or not customer.is_active:
        raise CustomerNotFound("Customer not found", details={"customer_id": customer_id})
    return customer


def _load_sale_session(session_id: str, cashier_id: int) -> CaisseSession:
    session = lock_for_update(
        db.session.query(CaisseSession).filter_by(id=session_id)
    ).populate_existing().first()
    if session is None or session.user_id != cashier_id:
        raise SessionNotFound("Caisse session not found", details={"session_id": session_id})
    if not session.is_active:
        raise SessionNotActive(
            "Caisse session is not active",
            details={"session_id": session_id, "status": session.status},
        )
    return session


def _check_stock(products: dict[int, Product], lines: list[SaleLineInput]) -> None:
    """Refuse the whole sale if any product lacks stock; lists every short line."""
    requested: dict[int, int] = {}
    for line in lines:
        requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

    short = []
    for product_id, qty in requested.items():
        on_hand = products[product_id].stock_quantity
        if on_hand < qty:
            short.append({
                "product_id": product_id,
                "product_name": products[product_id].name,
                "available": on_hand,
                "requested": qty,
            })

    if short:
        raise InsufficientStock(
            f"Insufficient stock for {short[0]['product_name']}",
            details={"items": short},
        )


def post_sale(
    items,
    payment_method: str,
    *,
    cashier_id: int,
    customer_id: int | None = None,
    caisse_session_id: str | None = None,
    discount_amount=None,
    loyalty_points_redeemed: int = 0,
    notes: str | None = None,
) -> Sale:
    """
    Post a completed sale atomically.

    Raises:
        ValidationError: malformed items, payment method, amounts
        ProductNotFound / CustomerNotFound / SessionNotFound
        SessionNotActive: the given session is closed
        InsufficientStock: any line exceeds stock on hand
    Nothing is written when any of these is raised.
    """
    lines = parse_sale_lines(items)
    _validate_payment_method(payment_method)
    order_discount = parse_amount(discount_amount, "discount_amount") if discount_amount is not None else ZERO

    if isinstance(loyalty_points_redeemed, bool) or not isinstance(loyalty_points_redeemed, int) or loyalty_points_redeemed < 0:
        raise ValidationError(
            "loyalty_points_redeemed must be a non-negative integer",
            details={"field": "loyalty_points_redeemed", "value": loyalty_points_redeemed},
        )
    if loyalty_points_redeemed and customer_id is None:
        raise ValidationError("Redeeming loyalty points requires a customer", details={"field": "customer_id"})

    config = current_app.config
    tax_rate = Decimal(config.get("TAX_RATE", 0))
    prices_include_tax = bool(config.get("PRICES_INCLUDE_TAX", False))
    points_per_unit = int(config.get("LOYALTY_POINTS_PER_UNIT", 1))

    with write_transaction():
        # Lock in id order so two sales over the same products cannot deadlock
        products = {
            product_id: get_product(product_id, lock=True)
            for product_id in sorted({line.product_id for line in lines})
        }
        _check_stock(products, lines)

        priced = []
        for line in lines:
            unit_price = line.unit_price if line.unit_price is not None else round_money(products[line.product_id].selling_price)
            gross = round_money(unit_price * line.quantity)
            if line.discount_amount > gross:
                raise ValidationError(
                    "Line discount exceeds line amount",
                    details={"product_id": line.product_id, "discount_amount": str(line.discount_amount), "line_amount": str(gross)},
                )
            priced.append((line, unit_price, gross))

        customer = None
        if customer_id is not None:
            customer = _load_customer(customer_id, lock=True)
            if loyalty_points_redeemed > customer.loyalty_points:
                raise ValidationError(
                    "Insufficient loyalty points",
                    details={"customer_id": customer_id, "available": customer.loyalty_points, "requested": loyalty_points_redeemed},
                )

        session = _load_sale_session(caisse_session_id, cashier_id) if caisse_session_id else None

        totals = compute_totals(
            [(unit_price, line.quantity, line.discount_amount) for line, unit_price, _ in priced],
            order_discount=order_discount + Decimal(loyalty_points_redeemed),
            tax_rate=tax_rate,
            prices_include_tax=prices_include_tax,
        )
        points_earned = math.floor(totals.total_amount) * points_per_unit if customer is not None else 0

        sale = Sale(
            sale_number=next_sale_number(),
            customer_id=customer_id,
            cashier_id=cashier_id,
            caisse_session_id=caisse_session_id,
            subtotal=totals.subtotal,
            discount_amount=totals.discount_amount,
            tax_amount=totals.tax_amount,
            total_amount=totals.total_amount,
            payment_method=payment_method,
            loyalty_points_redeemed=loyalty_points_redeemed,
            loyalty_points_earned=points_earned,
            notes=notes,
        )
        db.session.add(sale)
        db.session.flush()

        for line, unit_price, gross in priced:
            movement = append_movement(
                products[line.product_id],
                movement_type="out",
                quantity=line.quantity,
                direction="out",
                reference=sale.sale_number,
                reason=f"Sale {sale.sale_number}",
                user_id=cashier_id,
                sale_id=sale.id,
            )
            db.session.add(SaleItem(
                sale_id=sale.id,
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price=unit_price,
                discount_amount=line.discount_amount,
                total_price=round_money(gross - line.discount_amount),
                stock_movement_id=movement.id,
            ))

        if session is not None and payment_method == "cash" and totals.total_amount > 0:
            apply_cash_delta_locked(
                session,
                totals.total_amount,
                "in",
                movement_type="sale",
                sale_id=sale.id,
                reason=f"Sale {sale.sale_number}",
                user_id=cashier_id,
            )

        if customer is not None:
            customer.loyalty_points = customer.loyalty_points - loyalty_points_redeemed + points_earned
            customer.total_purchases = round_money((customer.total_purchases or ZERO) + totals.total_amount)
            customer.last_purchase_at = utcnow()

        db.session.flush()

    logger.info(
        "Sale %s posted: %s line(s), total %s, %s, session=%s",
        sale.sale_number, len(lines), totals.total_amount, payment_method, caisse_session_id,
    )
    return sale


# =============================================================================
# REFUNDS
# =============================================================================

def _refunded_by_item(sale_id: int) -> dict[int, tuple[int, Decimal]]:
    """{sale_item_id: (quantity refunded so far, amount refunded so far)}"""
    rows = (
        db.session.query(
            SaleRefundLine.sale_item_id,
            func.sum(SaleRefundLine.quantity),
            func.sum(SaleRefundLine.amount),
        )
        .join(SaleRefund, SaleRefund.id == SaleRefundLine.refund_id)
        .filter(SaleRefund.sale_id == sale_id)
        .group_by(SaleRefundLine.sale_item_id)
        .all()
    )
    return {item_id: (int(qty), round_money(Decimal(str(amount)))) for item_id, qty, amount in rows}


def _line_shares(sale: Sale) -> dict[int, Decimal]:
    """
    Split what the customer actually paid (sale.total_amount, after order
    discount, redeemed points and tax) across the items in proportion to
    their line totals. The last item takes the rounding remainder so the
    shares add up to the sale total exactly.
    """
    items = list(sale.items)
    lines_total = sum((item.total_price for item in items), ZERO)
    if lines_total <= 0:
        return {item.id: ZERO for item in items}

    shares = {}
    allocated = ZERO
    for item in items[:-1]:
        share = round_money(sale.total_amount * item.total_price / lines_total)
        shares[item.id] = share
        allocated += share
    shares[items[-1].id] = sale.total_amount - allocated
    return shares


def refund_sale(
    sale_id: int,
    *,
    user_id: int,
    reason: str,
    items=None,
    caisse_session_id: str | None = None,
) -> SaleRefund:
    """
    Refund a sale fully (items=None) or partially.

    items: [{"sale_item_id": int, "quantity": int}, ...]. Stock comes back
    through "in" movements referenced REFUND-<sale_number>. For cash sales
    the refunded amount leaves the given session, or the refunding user's
    active session when none is given.

    Raises:
        ValidationError: missing reason, malformed items
        SaleNotFound
        RefundError: item not on the sale, or more than is left to refund
    """
    if not reason or not str(reason).strip():
        raise ValidationError("Refund reason is required", details={"field": "reason"})

    requested: dict[int, int] | None = None
    if items is not None:
        if not isinstance(items, list) or not items:
            raise ValidationError("items must be a non-empty list", details={"field": "items"})
        requested = {}
        for index, raw in enumerate(items):
            if not isinstance(raw, dict):
                raise ValidationError("Each item must be an object", details={"index": index})
            item_id = raw.get("sale_item_id", raw.get("itemId"))
            if isinstance(item_id, bool) or not isinstance(item_id, int):
                raise ValidationError("sale_item_id must be an integer", details={"index": index})
            qty = validate_quantity(raw.get("quantity"), field=f"items[{index}].quantity")
            requested[item_id] = requested.get(item_id, 0) + qty

    with write_transaction():
        sale = db.session.query(Sale).filter_by(id=sale_id).populate_existing().first()
        if sale is None:
            raise SaleNotFound("Sale not found", details={"sale_id": sale_id})

        already = _refunded_by_item(sale.id)
        sale_items = {item.id: item for item in sale.items}
        shares = _line_shares(sale)

        def _left(item):
            qty, amount = already.get(item.id, (0, ZERO))
            return item.quantity - qty, shares[item.id] - amount

        if requested is None:
            requested = {item.id: _left(item)[0] for item in sale.items if _left(item)[0] > 0}
            if not requested:
                raise RefundError("Sale already fully refunded", details={"sale_id": sale_id})

        plan = []
        for item_id, qty in requested.items():
            item = sale_items.get(item_id)
            if item is None:
                raise RefundError("Item is not part of this sale", details={"sale_id": sale_id, "sale_item_id": item_id})
            remaining, amount_left = _left(item)
            if qty > remaining:
                raise RefundError(
                    "Refund quantity exceeds quantity left to refund",
                    details={"sale_item_id": item_id, "requested": qty, "refundable": remaining},
                )
            if qty == remaining:
                amount = amount_left
            else:
                amount = min(round_money(shares[item_id] * qty / item.quantity), amount_left)
            plan.append((item, qty, max(amount, ZERO)))

        refund_total = round_money(sum((amount for _, _, amount in plan), ZERO))

        session = None
        if sale.payment_method == "cash":
            if caisse_session_id:
                session = _load_sale_session(caisse_session_id, user_id)
            else:
                active = get_active_session(user_id)
                if active is not None:
                    session = _load_sale_session(active.id, user_id)

        reference = f"REFUND-{sale.sale_number}"
        refund = SaleRefund(
            sale_id=sale.id,
            reference=reference,
            reason=reason,
            amount=refund_total,
            caisse_session_id=session.id if session is not None else None,
            user_id=user_id,
        )
        db.session.add(refund)
        db.session.flush()

        for item, qty, amount in plan:
            product = get_product(item.product_id, require_active=False, lock=True)
            movement = append_movement(
                product,
                movement_type="in",
                quantity=qty,
                direction="in",
                reference=reference,
                reason=reason,
                user_id=user_id,
                sale_id=sale.id,
            )
            db.session.add(SaleRefundLine(
                refund_id=refund.id,
                sale_item_id=item.id,
                quantity=qty,
                amount=amount,
                stock_movement_id=movement.id,
            ))

        if session is not None and refund_total > 0:
            apply_cash_delta_locked(
                session,
                refund_total,
                "out",
                movement_type="refund",
                sale_id=sale.id,
                reason=reference,
                user_id=user_id,
            )

        db.session.flush()

    logger.info("Refund %s on sale %s: %s", refund.id, sale_id, refund_total)
    return refund


# =============================================================================
# QUERIES
# =============================================================================

def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise SaleNotFound("Sale not found", details={"sale_id": sale_id})
    return sale


def list_sales(
    *,
    page: int = 1,
    limit: int = 20,
    start: datetime | None = None,
    end: datetime | None = None,
    cashier_id: int | None = None,
    customer_id: int | None = None,
    caisse_session_id: str | None = None,
) -> tuple[list[Sale], int]:
    """Newest first. Returns (sales on the page, total matching)."""
    if page < 1 or limit < 1 or limit > 100:
        raise ValidationError("page must be >= 1 and limit between 1 and 100", details={"page": page, "limit": limit})

    # status needs items and their refund lines; load them per page, not per sale
    q = db.session.query(Sale).options(selectinload(Sale.items).selectinload(SaleItem.refund_lines))
    if start is not None:
        q = q.filter(Sale.created_at >= start)
    if end is not None:
        q = q.filter(Sale.created_at <= end)
    if cashier_id is not None:
        q = q.filter(Sale.cashier_id == cashier_id)
    if customer_id is not None:
        q = q.filter(Sale.customer_id == customer_id)
    if caisse_session_id is not None:
        q = q.filter(Sale.caisse_session_id == caisse_session_id)

    total = q.count()
    sales = q.order_by(Sale.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return sales, total
