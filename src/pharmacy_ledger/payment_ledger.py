"""Payment ledger: the ``(paid, due, status)`` triple of payable entities.

Medicines (intake cost owed to the vendor), purchase orders (order total owed
to the vendor) and credit sales (money owed by the customer) all carry a paid
and a due amount whose sum is the liability fixed at creation. This module is
the only place those amounts change. The status is a pure function of the two
amounts and is recomputed on every read, never stored.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from . import data_manager, log
from .constants import CENT, ZERO, EntityKind, PaymentStatus
from .errors import OverpaymentRejected, ValidationError
from .store import UnitOfWork


@dataclass(frozen=True)
class PaymentState:
    """Paid and due amounts of one entity; the status is derived."""

    paid_amount: Decimal
    due_amount: Decimal

    @property
    def payment_status(self) -> PaymentStatus:
        return recompute_status(self.paid_amount, self.due_amount)

    @property
    def total_liability(self) -> Decimal:
        return self.paid_amount + self.due_amount

    def as_dict(self) -> dict[str, object]:
        return {
            "paid_amount": self.paid_amount,
            "due_amount": self.due_amount,
            "payment_status": self.payment_status.value,
        }


# (sheet, key column, row deserializer) per payable entity kind
_ENTITY_SHEETS = {
    EntityKind.MEDICINE: (data_manager.MEDICINES_SHEET, "MedicineID", data_manager.deserialize_medicine),
    EntityKind.PURCHASE_ORDER: (
        data_manager.PURCHASE_ORDERS_SHEET,
        "OrderID",
        data_manager.deserialize_purchase_order,
    ),
    EntityKind.SALE: (data_manager.SALES_SHEET, "SaleID", data_manager.deserialize_sale),
}


def recompute_status(paid_amount: Decimal, due_amount: Decimal) -> PaymentStatus:
    """Map amounts to a status: nothing due is PAID, nothing paid is DUE."""

    if due_amount == ZERO:
        return PaymentStatus.PAID
    if paid_amount == ZERO:
        return PaymentStatus.DUE
    return PaymentStatus.PARTIAL


def to_money(value: object) -> Decimal:
    """Coerce ``value`` into a :class:`Decimal` with exactly two places.

    Floats are rejected because they cannot represent most cent values.
    Amounts finer than a cent are rejected rather than rounded.

    Raises:
        ValidationError: If ``value`` is not a finite decimal amount, has
            sub-cent precision, or is too large to represent in cents.
    """

    if isinstance(value, (bool, float)):
        raise ValidationError(
            f"Monetary amounts must be Decimal or int, got {value!r}", rule="INVALID_AMOUNT"
        )
    try:
        amount = Decimal(value)  # type: ignore[arg-type]
    except (ArithmeticError, TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid monetary amount: {value!r}", rule="INVALID_AMOUNT") from exc
    if not amount.is_finite():
        raise ValidationError(f"Invalid monetary amount: {value!r}", rule="INVALID_AMOUNT")
    try:
        cents = amount.quantize(CENT)
    except ArithmeticError as exc:
        log.error("Monetary amount out of range: %s", amount)
        raise ValidationError(f"Monetary amount out of range: {value!r}", rule="INVALID_AMOUNT") from exc
    if cents != amount:
        log.error("Sub-cent monetary amount rejected: %s", amount)
        raise ValidationError(
            f"Monetary amounts cannot be finer than a cent: {value!r}", rule="INVALID_AMOUNT"
        )
    return cents


def initialize(total_liability: Decimal, initial_paid: Decimal = ZERO) -> PaymentState:
    """Open a payment record for a new liability.

    Raises:
        ValidationError: If the liability is negative, or ``initial_paid`` is
            negative or exceeds the liability.
    """

    total_liability = to_money(total_liability)
    initial_paid = to_money(initial_paid)
    if total_liability < ZERO:
        log.error("Negative liability rejected: %s", total_liability)
        raise ValidationError("Total liability must be zero or positive", rule="INVALID_AMOUNT")
    if initial_paid < ZERO or initial_paid > total_liability:
        log.error("Initial payment %s outside [0, %s]", initial_paid, total_liability)
        raise ValidationError(
            f"Initial payment must be between 0 and {total_liability}",
            rule="INVALID_AMOUNT",
        )
    return PaymentState(paid_amount=initial_paid, due_amount=total_liability - initial_paid)


def settle(state: PaymentState, amount: Decimal) -> PaymentState:
    """Return ``state`` after receiving ``amount``; ``state`` itself is untouched.

    Raises:
        ValidationError: If ``amount`` is zero or negative.
        OverpaymentRejected: If ``amount`` exceeds the due amount. The payment
            is rejected outright, never truncated.
    """

    amount = to_money(amount)
    if amount <= ZERO:
        log.error("Payment validation failed: %s", amount)
        raise ValidationError("Payment amount must be greater than zero")
    if amount > state.due_amount:
        log.error("Overpayment rejected: amount %s exceeds due %s", amount, state.due_amount)
        raise OverpaymentRejected(
            f"Payment of {amount} exceeds the outstanding due amount of {state.due_amount}"
        )
    return PaymentState(
        paid_amount=state.paid_amount + amount,
        due_amount=state.due_amount - amount,
    )


def state_of(record: object) -> PaymentState:
    """Extract the payment state from any row carrying paid/due amounts."""

    return PaymentState(
        paid_amount=record.paid_amount,  # type: ignore[attr-defined]
        due_amount=record.due_amount,  # type: ignore[attr-defined]
    )


def apply_payment(
    uow: UnitOfWork,
    entity_kind: EntityKind,
    entity_id: str,
    amount: Decimal,
    *,
    current: object | None = None,
) -> PaymentState:
    """Settle ``amount`` against a stored entity inside ``uow``.

    ``current`` is the row the caller already loaded in the same unit of
    work; when omitted it is read here. Its version guards the write.

    Returns:
        PaymentState: The amounts after the payment.

    Raises:
        MissingReferenceError: If no entity carries ``entity_id``.
        ValidationError: If ``amount`` is not positive.
        OverpaymentRejected: If ``amount`` exceeds the due amount.
        ConcurrencyConflict: If the row changed since ``current`` was read.
    """

    sheet_name, key_column, deserializer = _ENTITY_SHEETS[EntityKind(entity_kind)]
    if current is None:
        row_index = uow.locate(sheet_name, key_column, entity_id)
        current = deserializer(data_manager.read_row(uow.workbook, sheet_name, row_index))
    before = state_of(current)
    after = settle(before, amount)
    uow.update(
        sheet_name,
        key_column,
        entity_id,
        expected_version=current.version,  # type: ignore[attr-defined]
        field_values={"PaidAmount": after.paid_amount, "DueAmount": after.due_amount},
    )
    log.info(
        "Applied payment of %s to %s '%s' (paid=%s, due=%s, status=%s)",
        to_money(amount),
        EntityKind(entity_kind).value,
        entity_id,
        after.paid_amount,
        after.due_amount,
        after.payment_status.value,
    )
    return after
