"""Reconciliation engine for the pharmacy ledger.

This module contains the rule engine that keeps unit stock, vendor payables
and customer receivables consistent across every business event. It consumes
the Data Access Layer (DAL) through the stock and payment ledgers and runs
each compound event inside :func:`store.unit_of_work`, so an event either
lands completely or leaves no trace in the workbook.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple, Union

from openpyxl.workbook import Workbook

from . import data_manager, log, payment_ledger, stock_ledger
from .constants import (
    ZERO,
    EntityKind,
    PaymentMethod,
    PaymentStatus,
    PurchaseOrderStatus,
    VendorTransactionType,
)
from .errors import (
    BusinessRuleViolation,
    ConcurrencyConflict,
    InsufficientStock,
    InvalidTransition,
    MissingReferenceError,
    OverpaymentRejected,
    ValidationError,
)
from .payment_ledger import PaymentState
from .store import (
    RuntimeContext,
    UnitOfWork,
    ensure_schema_version,
    load_runtime_context,
    persist_context,
    read_snapshot,
    refresh_context,
    unit_of_work,
)


VENDOR_KEY_COLUMN = "VendorID"
ORDER_KEY_COLUMN = "OrderID"
SALE_KEY_COLUMN = "SaleID"


@dataclass(frozen=True)
class SaleItemCommand:
    """One requested sale line; the unit price is taken from the medicine."""

    medicine_id: str
    quantity: int


@dataclass(frozen=True)
class SaleCommand:
    """User intent for recording a sale.

    ``initial_paid`` only applies to ``CREDIT`` sales; every other payment
    method settles the final amount in full at the counter.
    """

    items: Sequence[SaleItemCommand]
    payment_method: Union[PaymentMethod, str] = PaymentMethod.CASH
    customer: Optional[str] = None
    discount: Decimal = ZERO
    initial_paid: Optional[Decimal] = None
    sold_by: Optional[str] = None
    notes: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class PurchaseOrderItemCommand:
    """One requested purchase order line."""

    medicine_id: str
    quantity: int
    unit_price: Decimal


@dataclass(frozen=True)
class PurchaseOrderCommand:
    """User intent for placing a purchase order with a vendor."""

    vendor_id: str
    items: Sequence[PurchaseOrderItemCommand]
    initial_paid: Decimal = ZERO
    ordered_by: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class VendorCommand:
    """User intent for registering a vendor."""

    vendor_id: str
    name: str
    contact_person: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None


@dataclass(frozen=True)
class MedicineIntakeCommand:
    """User intent for the first purchase intake of a medicine."""

    medicine_id: str
    name: str
    vendor_id: str
    stock: int
    price: Decimal
    purchase_price: Decimal
    category: str = ""
    initial_paid: Decimal = ZERO


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` when provided, otherwise the current UTC time."""

    return candidate if candidate is not None else datetime.now(UTC)


def generate_id(*, prefix: str, when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier using UTC timestamps.

    Args:
        prefix (str): Designator prepended to the identifier, ``"S"`` for
            sales, ``"P"`` for purchase orders and ``"VT"`` for vendor history
            entries.
        when (datetime | None): Timestamp used for the sortable part. When
            ``None`` the current UTC time is used.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}{XXXX}``.

    The trailing random hex block keeps identifiers unique when two events
    share the same microsecond.
    """
    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}{uuid.uuid4().hex[:4].upper()}"


def require_nonnegative_money(amount: object, *, label: str = "Amount") -> Decimal:
    """Coerce ``amount`` to money and reject negative values.

    Raises:
        ValidationError: If ``amount`` is not a valid amount or is negative.
    """
    value = payment_ledger.to_money(amount)
    if value < ZERO:
        log.error("Monetary value validation failed: %s=%s", label, value)
        raise ValidationError(f"{label} must be zero or positive", rule="INVALID_AMOUNT")
    return value


def _require_text(value: Optional[str], *, label: str) -> str:
    if value is None or not str(value).strip():
        log.error("Validation failed: %s is required", label)
        raise ValidationError(f"{label} is required")
    return str(value).strip()


def _resolve_payment_method(value: Union[PaymentMethod, str]) -> PaymentMethod:
    try:
        return PaymentMethod(value)
    except ValueError as exc:
        log.error("Unsupported payment method provided: %s", value)
        raise ValidationError(f"Unsupported payment method: {value}") from exc


def _resolve_entity_kind(value: Union[EntityKind, str]) -> EntityKind:
    try:
        return EntityKind(value)
    except ValueError as exc:
        log.error("Unsupported entity kind provided: %s", value)
        raise ValidationError(f"Unsupported entity kind: {value}") from exc


# ---------------------------------------------------------------------------
# Row loading inside a unit of work
# ---------------------------------------------------------------------------


def _load_vendor(uow: UnitOfWork, vendor_id: str) -> data_manager.VendorRow:
    row_index = uow.locate(data_manager.VENDORS_SHEET, VENDOR_KEY_COLUMN, vendor_id)
    return data_manager.deserialize_vendor(
        data_manager.read_row(uow.workbook, data_manager.VENDORS_SHEET, row_index)
    )


def _load_purchase_order(uow: UnitOfWork, order_id: str) -> data_manager.PurchaseOrderRow:
    row_index = uow.locate(data_manager.PURCHASE_ORDERS_SHEET, ORDER_KEY_COLUMN, order_id)
    order = data_manager.deserialize_purchase_order(
        data_manager.read_row(uow.workbook, data_manager.PURCHASE_ORDERS_SHEET, row_index)
    )
    items = tuple(
        item for item in data_manager.iter_purchase_order_items(uow.workbook) if item.order_id == order_id
    )
    return replace(order, items=items)


def _load_sale(uow: UnitOfWork, sale_id: str) -> data_manager.SaleRow:
    row_index = uow.locate(data_manager.SALES_SHEET, SALE_KEY_COLUMN, sale_id)
    sale = data_manager.deserialize_sale(
        data_manager.read_row(uow.workbook, data_manager.SALES_SHEET, row_index)
    )
    items = tuple(item for item in data_manager.iter_sale_items(uow.workbook) if item.sale_id == sale_id)
    return replace(sale, items=items)


def _next_order_number(workbook: Workbook, when: datetime) -> str:
    """Return the next ``PO-YYYYMMDD-NNNN`` number for the day of ``when``."""

    prefix = f"PO-{when.strftime('%Y%m%d')}-"
    highest = 0
    for order in data_manager.iter_purchase_orders(workbook):
        if order.order_number.startswith(prefix):
            suffix = order.order_number[len(prefix):]
            if suffix.isdigit():
                highest = max(highest, int(suffix))
    return f"{prefix}{highest + 1:04d}"


def _record_vendor_transaction(
    uow: UnitOfWork,
    *,
    vendor_id: str,
    transaction_type: VendorTransactionType,
    entity_kind: EntityKind,
    entity_id: str,
    amount: Decimal,
    state: PaymentState,
    timestamp: datetime,
) -> data_manager.VendorTransactionRow:
    """Append one vendor history entry as part of the caller's unit of work."""

    entry = data_manager.VendorTransactionRow(
        transaction_id=generate_id(prefix="VT", when=timestamp),
        vendor_id=vendor_id,
        timestamp_iso=timestamp.isoformat(),
        transaction_type=transaction_type.value,
        entity_kind=entity_kind.value,
        entity_id=entity_id,
        amount=amount,
        paid_amount=state.paid_amount,
        due_amount=state.due_amount,
    )
    uow.append(data_manager.VENDOR_TRANSACTIONS_SHEET, data_manager.serialize_vendor_transaction(entry))
    return entry


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------


def _merge_sale_lines(items: Sequence[SaleItemCommand]) -> Dict[str, int]:
    """Validate sale lines and merge duplicates per medicine, keeping first-seen order."""

    if not items:
        log.error("Sale validation failed: no items supplied")
        raise ValidationError("A sale requires at least one item", rule="EMPTY_ITEMS")
    merged: Dict[str, int] = {}
    for item in items:
        medicine_id = _require_text(item.medicine_id, label="Medicine id")
        stock_ledger.require_positive_quantity(item.quantity)
        merged[medicine_id] = merged.get(medicine_id, 0) + item.quantity
    return merged


def record_sale(context: RuntimeContext, command: SaleCommand) -> data_manager.SaleRow:
    """Validate a sale, deduct its stock and append it to the ledger.

    The workflow checks that every requested medicine exists and is active,
    merges duplicate lines so the availability check sees the combined
    quantity, prices each line from the medicine's current sale price, applies
    the discount and opens the payment record. Only then are stock deductions
    and the sale rows written. Everything happens inside one unit of work, so
    a failure on the third line restores the stock deducted for the first two.

    Args:
        context (RuntimeContext): Runtime context providing workbook access
            and the store lock.
        command (SaleCommand): Structured intent describing the sale request.

    Returns:
        data_manager.SaleRow: Newly recorded sale with its line items.

    Raises:
        ValidationError: If items are empty, quantities are not positive
            integers, a medicine is archived, the discount exceeds the total,
            or the payment method or initial payment is invalid.
        MissingReferenceError: If a medicine identifier is unknown.
        InsufficientStock: If any merged line exceeds the available stock.
        ConcurrencyConflict: If a medicine row changed during the operation.
    """
    merged = _merge_sale_lines(command.items)
    method = _resolve_payment_method(command.payment_method)
    discount = require_nonnegative_money(command.discount, label="Discount")
    if command.initial_paid is not None and method is not PaymentMethod.CREDIT:
        log.error("Initial payment supplied for a %s sale", method.value)
        raise ValidationError("An initial payment only applies to credit sales", rule="INVALID_AMOUNT")

    timestamp = _resolve_timestamp(command.timestamp)
    with unit_of_work(context) as uow:
        priced: List[Tuple[data_manager.MedicineRow, int]] = []
        for medicine_id, quantity in merged.items():
            medicine = stock_ledger.load_medicine(uow, medicine_id)
            if not medicine.is_active:
                log.warning("Attempted sale of archived medicine '%s'", medicine_id)
                raise ValidationError(f"Medicine '{medicine_id}' is archived", rule="ARCHIVED_MEDICINE")
            priced.append((medicine, quantity))

        total = sum((medicine.price * quantity for medicine, quantity in priced), ZERO)
        total = payment_ledger.to_money(total)
        if discount > total:
            log.error("Discount %s exceeds sale total %s", discount, total)
            raise ValidationError("Discount cannot exceed the sale total", rule="INVALID_AMOUNT")
        final_amount = total - discount
        if method is PaymentMethod.CREDIT:
            payment = payment_ledger.initialize(final_amount, command.initial_paid or ZERO)
        else:
            payment = payment_ledger.initialize(final_amount, final_amount)

        for medicine, quantity in priced:
            stock_ledger.reserve_and_deduct(uow, medicine.medicine_id, quantity)

        sale_id = generate_id(prefix="S", when=timestamp)
        items = tuple(
            data_manager.SaleItemRow(
                sale_id=sale_id,
                medicine_id=medicine.medicine_id,
                quantity=quantity,
                unit_price=medicine.price,
            )
            for medicine, quantity in priced
        )
        sale = data_manager.SaleRow(
            sale_id=sale_id,
            timestamp_iso=timestamp.isoformat(),
            customer=command.customer,
            payment_method=method.value,
            total_amount=total,
            discount=discount,
            final_amount=final_amount,
            paid_amount=payment.paid_amount,
            due_amount=payment.due_amount,
            sold_by=command.sold_by or context.settings.default_operator_id,
            notes=command.notes,
            items=items,
        )
        uow.append(data_manager.SALES_SHEET, data_manager.serialize_sale(sale))
        for item in items:
            uow.append(data_manager.SALE_ITEMS_SHEET, data_manager.serialize_sale_item(item))

    log.info(
        "Recorded sale '%s' (%d lines, total=%s, final=%s, method=%s, due=%s)",
        sale.sale_id,
        len(items),
        total,
        final_amount,
        method.value,
        payment.due_amount,
    )
    return sale


# ---------------------------------------------------------------------------
# Purchase orders
# ---------------------------------------------------------------------------


def record_purchase_order(
    context: RuntimeContext, command: PurchaseOrderCommand
) -> data_manager.PurchaseOrderRow:
    """Validate and append a ``pending`` purchase order.

    The vendor must exist and be active and every line must reference a known
    medicine with a positive quantity and a non-negative unit price. The total
    is recomputed from the lines; the payment record opens with
    ``command.initial_paid``. Stock is not touched until the order is
    received.

    Args:
        context (RuntimeContext): Runtime context providing workbook access
            and the store lock.
        command (PurchaseOrderCommand): Structured purchase order intent.

    Returns:
        data_manager.PurchaseOrderRow: Newly appended order with its items.

    Raises:
        ValidationError: If the vendor is inactive, items are empty, or a
            quantity, unit price or initial payment is invalid.
        MissingReferenceError: If the vendor or a medicine is unknown.
    """
    vendor_id = _require_text(command.vendor_id, label="Vendor id")
    if not command.items:
        log.error("Purchase order validation failed: no items supplied")
        raise ValidationError("A purchase order requires at least one item", rule="EMPTY_ITEMS")
    lines: List[Tuple[str, int, Decimal]] = []
    for item in command.items:
        medicine_id = _require_text(item.medicine_id, label="Medicine id")
        stock_ledger.require_positive_quantity(item.quantity)
        unit_price = require_nonnegative_money(item.unit_price, label="Unit price")
        lines.append((medicine_id, item.quantity, unit_price))

    timestamp = _resolve_timestamp(command.timestamp)
    with unit_of_work(context) as uow:
        vendor = _load_vendor(uow, vendor_id)
        if not vendor.is_active:
            log.warning("Attempted purchase order with inactive vendor '%s'", vendor_id)
            raise ValidationError(f"Vendor '{vendor_id}' is inactive", rule="INACTIVE_VENDOR")
        for medicine_id, _, _ in lines:
            stock_ledger.load_medicine(uow, medicine_id)

        order_id = generate_id(prefix="P", when=timestamp)
        items = tuple(
            data_manager.PurchaseOrderItemRow(
                order_id=order_id,
                medicine_id=medicine_id,
                quantity=quantity,
                unit_price=unit_price,
            )
            for medicine_id, quantity, unit_price in lines
        )
        total = sum((item.line_total for item in items), ZERO)
        payment = payment_ledger.initialize(total, command.initial_paid)
        order = data_manager.PurchaseOrderRow(
            order_id=order_id,
            order_number=_next_order_number(uow.workbook, timestamp),
            vendor_id=vendor_id,
            status=PurchaseOrderStatus.PENDING.value,
            total_amount=total,
            paid_amount=payment.paid_amount,
            due_amount=payment.due_amount,
            created_at_iso=timestamp.isoformat(),
            ordered_by=command.ordered_by or context.settings.default_operator_id,
            items=items,
        )
        uow.append(data_manager.PURCHASE_ORDERS_SHEET, data_manager.serialize_purchase_order(order))
        for item in items:
            uow.append(
                data_manager.PURCHASE_ORDER_ITEMS_SHEET,
                data_manager.serialize_purchase_order_item(item),
            )
        _record_vendor_transaction(
            uow,
            vendor_id=vendor_id,
            transaction_type=VendorTransactionType.PURCHASE,
            entity_kind=EntityKind.PURCHASE_ORDER,
            entity_id=order_id,
            amount=total,
            state=payment,
            timestamp=timestamp,
        )

    log.info(
        "Recorded purchase order '%s' (%s) for vendor '%s' (total=%s, due=%s)",
        order.order_id,
        order.order_number,
        vendor_id,
        total,
        payment.due_amount,
    )
    return order


def _transition_purchase_order(
    uow: UnitOfWork, order_id: str, target: PurchaseOrderStatus
) -> data_manager.PurchaseOrderRow:
    """Move a pending order to ``target``; both targets are terminal."""

    order = _load_purchase_order(uow, order_id)
    if order.status != PurchaseOrderStatus.PENDING.value:
        log.error(
            "Purchase order '%s' cannot move from %s to %s",
            order_id,
            order.status,
            target.value,
        )
        raise InvalidTransition(
            f"Purchase order {order.order_number or order_id} is already {order.status}"
        )
    uow.update(
        data_manager.PURCHASE_ORDERS_SHEET,
        ORDER_KEY_COLUMN,
        order_id,
        expected_version=order.version,
        field_values={"Status": target.value},
    )
    return replace(order, status=target.value, version=order.version + 1)


def complete_purchase_order(context: RuntimeContext, order_id: str) -> data_manager.PurchaseOrderRow:
    """Mark a pending order as received and credit every line to stock.

    Args:
        context (RuntimeContext): Runtime context providing workbook access
            and the store lock.
        order_id (str): Identifier of the order to receive.

    Returns:
        data_manager.PurchaseOrderRow: The order in its ``received`` state.

    Raises:
        MissingReferenceError: If the order or one of its medicines is unknown.
        InvalidTransition: If the order is already received or cancelled; no
            stock is credited in that case.
    """
    with unit_of_work(context) as uow:
        order = _transition_purchase_order(uow, order_id, PurchaseOrderStatus.RECEIVED)
        for item in order.items:
            stock_ledger.credit(uow, item.medicine_id, item.quantity)

    log.info(
        "Received purchase order '%s' (%d lines credited to stock)",
        order_id,
        len(order.items),
    )
    return order


def cancel_purchase_order(context: RuntimeContext, order_id: str) -> data_manager.PurchaseOrderRow:
    """Cancel a pending order. Stock and payment amounts are left unchanged.

    Raises:
        MissingReferenceError: If the order is unknown.
        InvalidTransition: If the order is already received or cancelled.
    """
    with unit_of_work(context) as uow:
        order = _transition_purchase_order(uow, order_id, PurchaseOrderStatus.CANCELLED)

    log.info("Cancelled purchase order '%s'", order_id)
    return order


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


def apply_payment(
    context: RuntimeContext,
    entity_kind: Union[EntityKind, str],
    entity_id: str,
    amount: Decimal,
) -> PaymentState:
    """Apply a payment against a medicine, purchase order or credit sale.

    Medicine and purchase order payments settle what the pharmacy owes its
    vendors; sale payments collect what a customer owes on a credit sale.
    Payments never exceed the due amount and are never truncated.

    Args:
        context (RuntimeContext): Runtime context providing workbook access
            and the store lock.
        entity_kind (EntityKind | str): Which kind of entity is being paid.
        entity_id (str): Identifier of the entity.
        amount (Decimal): Positive payment amount.

    Returns:
        PaymentState: Paid and due amounts after the payment, with the
            recomputed status.

    Raises:
        ValidationError: If ``amount`` is not positive or the kind is unknown.
        MissingReferenceError: If the entity is unknown.
        InvalidTransition: If the medicine is archived or the order cancelled.
        OverpaymentRejected: If ``amount`` exceeds the due amount.
    """
    kind = _resolve_entity_kind(entity_kind)
    with unit_of_work(context) as uow:
        if kind is EntityKind.MEDICINE:
            current: object = stock_ledger.load_medicine(uow, entity_id)
            if not current.is_active:  # type: ignore[attr-defined]
                log.error("Payment rejected for archived medicine '%s'", entity_id)
                raise InvalidTransition(f"Medicine '{entity_id}' is archived")
        elif kind is EntityKind.PURCHASE_ORDER:
            current = _load_purchase_order(uow, entity_id)
            if current.status == PurchaseOrderStatus.CANCELLED.value:  # type: ignore[attr-defined]
                log.error("Payment rejected for cancelled purchase order '%s'", entity_id)
                raise InvalidTransition(f"Purchase order '{entity_id}' is cancelled")
        else:
            current = _load_sale(uow, entity_id)
        state = payment_ledger.apply_payment(uow, kind, entity_id, amount, current=current)
        vendor_id = getattr(current, "vendor_id", None)
        if vendor_id:
            _record_vendor_transaction(
                uow,
                vendor_id=vendor_id,
                transaction_type=VendorTransactionType.PAYMENT,
                entity_kind=kind,
                entity_id=entity_id,
                amount=state.paid_amount - payment_ledger.state_of(current).paid_amount,
                state=state,
                timestamp=_resolve_timestamp(None),
            )
    return state


# ---------------------------------------------------------------------------
# Master data: vendors and medicines
# ---------------------------------------------------------------------------


def register_vendor(context: RuntimeContext, command: VendorCommand) -> data_manager.VendorRow:
    """Append an active vendor to the ``Vendors`` sheet.

    Raises:
        ValidationError: If the identifier or name is blank, or the identifier
            is already taken.
    """
    vendor = data_manager.VendorRow(
        vendor_id=_require_text(command.vendor_id, label="Vendor id"),
        name=_require_text(command.name, label="Vendor name"),
        contact_person=command.contact_person,
        phone=command.phone,
        email=command.email,
        address=command.address,
        is_active=True,
    )
    with unit_of_work(context) as uow:
        if data_manager.locate_row(uow.workbook, data_manager.VENDORS_SHEET, VENDOR_KEY_COLUMN, vendor.vendor_id):
            log.error("Duplicate vendor id '%s'", vendor.vendor_id)
            raise ValidationError(f"Vendor '{vendor.vendor_id}' already exists", rule="DUPLICATE_ID")
        uow.append(data_manager.VENDORS_SHEET, data_manager.serialize_vendor(vendor))

    log.info("Registered vendor '%s' (%s)", vendor.vendor_id, vendor.name)
    return vendor


def deactivate_vendor(context: RuntimeContext, vendor_id: str) -> data_manager.VendorRow:
    """Hide a vendor from new purchase orders. Existing orders are untouched.

    Raises:
        MissingReferenceError: If ``vendor_id`` is unknown.
    """
    with unit_of_work(context) as uow:
        vendor = _load_vendor(uow, vendor_id)
        uow.set_fields(data_manager.VENDORS_SHEET, VENDOR_KEY_COLUMN, vendor_id, {"IsActive": False})

    log.info("Deactivated vendor '%s'", vendor_id)
    return replace(vendor, is_active=False)


def register_medicine(context: RuntimeContext, command: MedicineIntakeCommand) -> data_manager.MedicineRow:
    """Create a medicine from its first purchase intake.

    The intake liability owed to the vendor is ``purchase_price * stock``; the
    payment record opens with ``command.initial_paid`` against it.

    Args:
        context (RuntimeContext): Runtime context providing workbook access
            and the store lock.
        command (MedicineIntakeCommand): Structured intake intent.

    Returns:
        data_manager.MedicineRow: The stored medicine at version 1.

    Raises:
        ValidationError: If required fields are blank, the stock is negative
            or not an integer, a price or the initial payment is invalid, the
            vendor is inactive, or the identifier is already taken.
        MissingReferenceError: If the vendor is unknown.
    """
    medicine_id = _require_text(command.medicine_id, label="Medicine id")
    name = _require_text(command.name, label="Medicine name")
    vendor_id = _require_text(command.vendor_id, label="Vendor id")
    if isinstance(command.stock, bool) or not isinstance(command.stock, int) or command.stock < 0:
        log.error("Stock validation failed: %r", command.stock)
        raise ValidationError("Initial stock must be a non-negative whole number", rule="INVALID_QUANTITY")
    price = require_nonnegative_money(command.price, label="Price")
    purchase_price = require_nonnegative_money(command.purchase_price, label="Purchase price")
    payment = payment_ledger.initialize(purchase_price * command.stock, command.initial_paid)

    with unit_of_work(context) as uow:
        vendor = _load_vendor(uow, vendor_id)
        if not vendor.is_active:
            log.warning("Attempted intake from inactive vendor '%s'", vendor_id)
            raise ValidationError(f"Vendor '{vendor_id}' is inactive", rule="INACTIVE_VENDOR")
        if data_manager.locate_row(
            uow.workbook, data_manager.MEDICINES_SHEET, stock_ledger.MEDICINE_KEY_COLUMN, medicine_id
        ):
            log.error("Duplicate medicine id '%s'", medicine_id)
            raise ValidationError(f"Medicine '{medicine_id}' already exists", rule="DUPLICATE_ID")
        medicine = data_manager.MedicineRow(
            medicine_id=medicine_id,
            name=name,
            category=command.category or "",
            vendor_id=vendor_id,
            price=price,
            purchase_price=purchase_price,
            stock=command.stock,
            paid_amount=payment.paid_amount,
            due_amount=payment.due_amount,
            is_active=True,
        )
        uow.append(data_manager.MEDICINES_SHEET, data_manager.serialize_medicine(medicine))
        _record_vendor_transaction(
            uow,
            vendor_id=vendor_id,
            transaction_type=VendorTransactionType.PURCHASE,
            entity_kind=EntityKind.MEDICINE,
            entity_id=medicine_id,
            amount=payment.total_liability,
            state=payment,
            timestamp=_resolve_timestamp(None),
        )

    log.info(
        "Registered medicine '%s' (stock=%d, liability=%s, due=%s)",
        medicine_id,
        medicine.stock,
        payment.total_liability,
        payment.due_amount,
    )
    return medicine


def _set_medicine_active(context: RuntimeContext, medicine_id: str, active: bool) -> data_manager.MedicineRow:
    with unit_of_work(context) as uow:
        medicine = stock_ledger.load_medicine(uow, medicine_id)
        if medicine.is_active == active:
            log.debug("Medicine '%s' already has is_active=%s", medicine_id, active)
            return medicine
        uow.update(
            data_manager.MEDICINES_SHEET,
            stock_ledger.MEDICINE_KEY_COLUMN,
            medicine_id,
            expected_version=medicine.version,
            field_values={"IsActive": active},
        )

    log.info("%s medicine '%s'", "Restored" if active else "Archived", medicine_id)
    return replace(medicine, is_active=active, version=medicine.version + 1)


def archive_medicine(context: RuntimeContext, medicine_id: str) -> data_manager.MedicineRow:
    """Soft-delete a medicine. Stock and payment amounts are kept as they are.

    Raises:
        MissingReferenceError: If ``medicine_id`` is unknown.
    """
    return _set_medicine_active(context, medicine_id, False)


def restore_medicine(context: RuntimeContext, medicine_id: str) -> data_manager.MedicineRow:
    """Reactivate an archived medicine."""

    return _set_medicine_active(context, medicine_id, True)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def list_medicines(context: RuntimeContext, *, include_inactive: bool = False) -> List[data_manager.MedicineRow]:
    """Return medicine rows in sheet order, optionally including archived ones."""

    with read_snapshot(context) as workbook:
        medicines = list(data_manager.iter_medicines(workbook))
    if not include_inactive:
        medicines = [medicine for medicine in medicines if medicine.is_active]
    log.debug("Listed %d medicines", len(medicines))
    return medicines


def list_vendors(context: RuntimeContext, *, include_inactive: bool = False) -> List[data_manager.VendorRow]:
    """Return vendor rows in sheet order, optionally including inactive ones."""

    with read_snapshot(context) as workbook:
        vendors = list(data_manager.iter_vendors(workbook))
    if not include_inactive:
        vendors = [vendor for vendor in vendors if vendor.is_active]
    return vendors


def list_purchase_orders(
    context: RuntimeContext,
    *,
    status: Optional[Union[PurchaseOrderStatus, str]] = None,
) -> List[data_manager.PurchaseOrderRow]:
    """Return purchase orders with their items, optionally filtered by status.

    Raises:
        ValidationError: If ``status`` is not a known purchase order status.
    """
    wanted: Optional[str] = None
    if status is not None:
        try:
            wanted = PurchaseOrderStatus(status).value
        except ValueError as exc:
            raise ValidationError(f"Unknown purchase order status: {status}") from exc

    with read_snapshot(context) as workbook:
        orders = list(data_manager.iter_purchase_orders(workbook))
    if wanted is not None:
        orders = [order for order in orders if order.status == wanted]
    return orders


def list_sales(context: RuntimeContext) -> List[data_manager.SaleRow]:
    """Return every recorded sale with its items, in the order recorded."""

    with read_snapshot(context) as workbook:
        return list(data_manager.iter_sales(workbook))


def list_credit_sales(
    context: RuntimeContext,
    *,
    status: Optional[Union[PaymentStatus, str]] = None,
) -> List[data_manager.SaleRow]:
    """Return credit sales, most recently recorded first.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        status (PaymentStatus | str | None): Keep only sales whose derived
            payment status matches.

    Raises:
        ValidationError: If ``status`` is not a known payment status.
    """
    wanted: Optional[PaymentStatus] = None
    if status is not None:
        try:
            wanted = PaymentStatus(status)
        except ValueError as exc:
            raise ValidationError(f"Unknown payment status: {status}") from exc

    sales = [
        sale
        for sale in reversed(list_sales(context))
        if sale.payment_method == PaymentMethod.CREDIT.value
    ]
    if wanted is not None:
        sales = [sale for sale in sales if payment_state(sale).payment_status is wanted]
    return sales


def find_sales_by_customer(context: RuntimeContext, name: str) -> List[data_manager.SaleRow]:
    """Return sales whose customer name contains ``name``, ignoring case.

    Results are most recently recorded first.

    Raises:
        ValidationError: If ``name`` is blank.
    """
    needle = _require_text(name, label="Customer name").casefold()
    return [
        sale
        for sale in reversed(list_sales(context))
        if sale.customer and needle in sale.customer.casefold()
    ]


def list_vendor_transactions(
    context: RuntimeContext, vendor_id: str
) -> List[data_manager.VendorTransactionRow]:
    """Return the purchase and payment history of a vendor, most recent first.

    Raises:
        MissingReferenceError: If ``vendor_id`` is unknown.
    """
    with read_snapshot(context) as workbook:
        get_vendor(context, vendor_id)
        entries = [
            entry for entry in data_manager.iter_vendor_transactions(workbook) if entry.vendor_id == vendor_id
        ]
    entries.reverse()
    return entries


def _get(context: RuntimeContext, loader, entity_id: str):
    # read-only use of the unit of work; nothing is journaled
    with read_snapshot(context):
        return loader(UnitOfWork(context), entity_id)


def get_medicine(context: RuntimeContext, medicine_id: str) -> data_manager.MedicineRow:
    """Resolve a medicine record by its identifier.

    Raises:
        MissingReferenceError: If ``medicine_id`` is absent from the workbook.
    """
    return _get(context, stock_ledger.load_medicine, medicine_id)


def get_vendor(context: RuntimeContext, vendor_id: str) -> data_manager.VendorRow:
    """Resolve a vendor record by its identifier.

    Raises:
        MissingReferenceError: If ``vendor_id`` is absent from the workbook.
    """
    return _get(context, _load_vendor, vendor_id)


def get_purchase_order(context: RuntimeContext, order_id: str) -> data_manager.PurchaseOrderRow:
    """Resolve a purchase order, with its items, by its identifier.

    Raises:
        MissingReferenceError: If ``order_id`` is absent from the workbook.
    """
    return _get(context, _load_purchase_order, order_id)


def get_sale(context: RuntimeContext, sale_id: str) -> data_manager.SaleRow:
    """Resolve a sale, with its items, by its identifier.

    Raises:
        MissingReferenceError: If ``sale_id`` is absent from the workbook.
    """
    return _get(context, _load_sale, sale_id)


def payment_state(record: object) -> PaymentState:
    """Return the derived payment state of any medicine, order or sale row."""

    return payment_ledger.state_of(record)


__all__ = [
    "BusinessRuleViolation",
    "ConcurrencyConflict",
    "InsufficientStock",
    "InvalidTransition",
    "MissingReferenceError",
    "OverpaymentRejected",
    "ValidationError",
    "PaymentState",
    "RuntimeContext",
    "SaleItemCommand",
    "SaleCommand",
    "PurchaseOrderItemCommand",
    "PurchaseOrderCommand",
    "VendorCommand",
    "MedicineIntakeCommand",
    "load_runtime_context",
    "ensure_schema_version",
    "persist_context",
    "refresh_context",
    "generate_id",
    "require_nonnegative_money",
    "record_sale",
    "record_purchase_order",
    "complete_purchase_order",
    "cancel_purchase_order",
    "apply_payment",
    "register_vendor",
    "deactivate_vendor",
    "register_medicine",
    "archive_medicine",
    "restore_medicine",
    "list_medicines",
    "list_vendors",
    "list_purchase_orders",
    "list_sales",
    "list_credit_sales",
    "find_sales_by_customer",
    "list_vendor_transactions",
    "get_medicine",
    "get_vendor",
    "get_purchase_order",
    "get_sale",
    "payment_state",
]
