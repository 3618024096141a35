"""Read-only rollups over the current ledger state.

Every aggregate scans the workbook under the store lock, so it observes
either all or none of a concurrent unit of work. Nothing is cached.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Union

from . import data_manager, log
from .constants import (
    ZERO,
    EntityKind,
    PaymentStatus,
    PurchaseOrderStatus,
)
from .errors import ValidationError
from .payment_ledger import recompute_status
from .store import RuntimeContext, read_snapshot


def _sale_date(sale: data_manager.SaleRow) -> Optional[date]:
    """Return the UTC calendar date of a sale, or ``None`` if unparsable."""

    try:
        moment = datetime.fromisoformat(sale.timestamp_iso)
    except ValueError:
        log.warning("Ignoring sale '%s' with invalid timestamp %r", sale.sale_id, sale.timestamp_iso)
        return None
    if moment.tzinfo is not None:
        moment = moment.astimezone(UTC)
    return moment.date()


def get_vendor_summary(context: RuntimeContext) -> Dict[str, int]:
    """Count vendors, active vendors, and vendors the pharmacy still owes.

    A vendor has dues when any of its medicine intakes or non-cancelled
    purchase orders carries a positive due amount.
    """

    with read_snapshot(context) as workbook:
        vendors = list(data_manager.iter_vendors(workbook))
        owed = {
            medicine.vendor_id
            for medicine in data_manager.iter_medicines(workbook)
            if medicine.vendor_id and medicine.due_amount > ZERO
        }
        owed.update(
            order.vendor_id
            for order in data_manager.iter_purchase_orders(workbook)
            if order.status != PurchaseOrderStatus.CANCELLED.value and order.due_amount > ZERO
        )

    known = {vendor.vendor_id for vendor in vendors}
    summary = {
        "total": len(vendors),
        "active": sum(1 for vendor in vendors if vendor.is_active),
        "with_dues": len(owed & known),
    }
    log.debug("Calculated vendor summary: %s", summary)
    return summary


def get_stock_summary(context: RuntimeContext, threshold: Optional[int] = None) -> Dict[str, int]:
    """Summarize stock levels of active medicines.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        threshold (int | None): Medicines with ``stock < threshold`` count as
            low stock; those at zero also count as out of stock. Defaults to
            the configured ``LowStockThreshold``.

    Returns:
        dict[str, int]: ``total``, ``low_stock`` and ``out_of_stock`` counts.
    """

    if threshold is None:
        threshold = context.settings.low_stock_threshold
    if threshold < 0:
        raise ValidationError("Low stock threshold must be zero or positive")
    with read_snapshot(context) as workbook:
        medicines = [medicine for medicine in data_manager.iter_medicines(workbook) if medicine.is_active]

    summary = {
        "total": len(medicines),
        "low_stock": sum(1 for medicine in medicines if medicine.stock < threshold),
        "out_of_stock": sum(1 for medicine in medicines if medicine.stock == 0),
    }
    log.debug("Calculated stock summary (threshold=%d): %s", threshold, summary)
    return summary


def get_sales_totals(context: RuntimeContext) -> Dict[str, object]:
    """Return the number of sales and the sum of their final amounts."""

    with read_snapshot(context) as workbook:
        sales = list(data_manager.iter_sales(workbook))
    total = sum((sale.final_amount for sale in sales), ZERO)
    return {"total_amount": total, "count": len(sales)}


def get_sales_summary(
    context: RuntimeContext,
    window_days: Optional[int] = None,
    today: Optional[date] = None,
) -> List[Dict[str, object]]:
    """Bucket sales per UTC calendar day over a trailing window.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        window_days (int | None): Number of days to report, ``today``
            included. Defaults to the configured ``SalesWindowDays``.
        today (date | None): Last day of the window. Defaults to the current
            UTC date.

    Returns:
        list[dict[str, object]]: One ``{date, total_amount, count}`` entry per
            day, newest first. Days without sales are present with zeroes.

    Raises:
        ValidationError: If ``window_days`` is not positive.
    """

    if window_days is None:
        window_days = context.settings.sales_window_days
    if window_days <= 0:
        raise ValidationError("Sales window must cover at least one day")
    today = today or datetime.now(UTC).date()
    days = [today - timedelta(days=offset) for offset in range(window_days)]
    buckets: Dict[date, Dict[str, object]] = {
        day: {"date": day.isoformat(), "total_amount": ZERO, "count": 0} for day in days
    }

    with read_snapshot(context) as workbook:
        sales = list(data_manager.iter_sales(workbook))

    for sale in sales:
        bucket = buckets.get(_sale_date(sale))  # type: ignore[arg-type]
        if bucket is None:
            continue
        bucket["total_amount"] = bucket["total_amount"] + sale.final_amount  # type: ignore[operator]
        bucket["count"] = bucket["count"] + 1  # type: ignore[operator]

    log.debug("Calculated sales summary over %d days ending %s", window_days, today)
    return [buckets[day] for day in days]


def _payable_rows(workbook, kind: EntityKind) -> list:
    if kind is EntityKind.MEDICINE:
        return list(data_manager.iter_medicines(workbook))
    if kind is EntityKind.PURCHASE_ORDER:
        return [
            order
            for order in data_manager.iter_purchase_orders(workbook)
            if order.status != PurchaseOrderStatus.CANCELLED.value
        ]
    return list(data_manager.iter_sales(workbook))


def get_payment_summary(
    context: RuntimeContext, entity_kind: Union[EntityKind, str]
) -> Dict[str, Dict[str, object]]:
    """Group one entity kind by derived payment status.

    The ``amount`` of the ``PARTIAL`` and ``DUE`` buckets is the outstanding
    due amount; the ``PAID`` bucket reports the amount paid. Cancelled
    purchase orders are left out.

    Returns:
        dict[str, dict[str, object]]: ``{"PAID": {"count", "amount"}, ...}``
            with all three statuses present.

    Raises:
        ValidationError: If ``entity_kind`` is not a known kind.
    """

    try:
        kind = EntityKind(entity_kind)
    except ValueError as exc:
        raise ValidationError(f"Unsupported entity kind: {entity_kind}") from exc

    summary: Dict[str, Dict[str, object]] = {
        status.value: {"count": 0, "amount": ZERO} for status in PaymentStatus
    }
    with read_snapshot(context) as workbook:
        rows = _payable_rows(workbook, kind)

    for row in rows:
        status = recompute_status(row.paid_amount, row.due_amount)
        bucket = summary[status.value]
        bucket["count"] = bucket["count"] + 1  # type: ignore[operator]
        contribution = row.paid_amount if status is PaymentStatus.PAID else row.due_amount
        bucket["amount"] = bucket["amount"] + contribution  # type: ignore[operator]

    log.debug("Calculated %s payment summary", kind.value)
    return summary


def get_payables_total(context: RuntimeContext) -> Decimal:
    """Total owed to vendors across medicine intakes and open purchase orders."""

    with read_snapshot(context) as workbook:
        medicines_due = sum((m.due_amount for m in data_manager.iter_medicines(workbook)), ZERO)
        orders_due = sum(
            (
                order.due_amount
                for order in data_manager.iter_purchase_orders(workbook)
                if order.status != PurchaseOrderStatus.CANCELLED.value
            ),
            ZERO,
        )
    return medicines_due + orders_due


def get_receivables_total(context: RuntimeContext) -> Decimal:
    """Total still owed by customers on credit sales."""

    with read_snapshot(context) as workbook:
        return sum((sale.due_amount for sale in data_manager.iter_sales(workbook)), ZERO)
