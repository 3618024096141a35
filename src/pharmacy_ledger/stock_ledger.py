"""Stock ledger: unit quantity changes on the ``Medicines`` sheet.

Both operations run inside a :class:`~pharmacy_ledger.store.UnitOfWork` so
the store lock is already held and the write is journaled for rollback.
"""

from __future__ import annotations

from . import data_manager, log
from .errors import InsufficientStock, ValidationError
from .store import UnitOfWork


MEDICINE_KEY_COLUMN = "MedicineID"


def require_positive_quantity(quantity: int) -> None:
    """Reject zero, negative and non-integer quantities.

    Raises:
        ValidationError: If ``quantity`` is not a positive ``int``.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        log.error("Quantity validation failed: %r", quantity)
        raise ValidationError("Quantity must be a positive whole number", rule="INVALID_QUANTITY")


def load_medicine(uow: UnitOfWork, medicine_id: str) -> data_manager.MedicineRow:
    """Read the current medicine row inside ``uow``.

    Raises:
        MissingReferenceError: If ``medicine_id`` is unknown.
    """

    row_index = uow.locate(data_manager.MEDICINES_SHEET, MEDICINE_KEY_COLUMN, medicine_id)
    return data_manager.deserialize_medicine(
        data_manager.read_row(uow.workbook, data_manager.MEDICINES_SHEET, row_index)
    )


def reserve_and_deduct(uow: UnitOfWork, medicine_id: str, quantity: int) -> int:
    """Remove ``quantity`` units from a medicine's stock.

    The availability check and the write happen under the same store lock, so
    two callers can never both pass the check against the same units.

    Args:
        uow (UnitOfWork): Active unit of work.
        medicine_id (str): Medicine to deduct from.
        quantity (int): Units to remove; must be positive.

    Returns:
        int: Stock remaining after the deduction.

    Raises:
        ValidationError: If ``quantity`` is not a positive integer.
        MissingReferenceError: If ``medicine_id`` is unknown.
        InsufficientStock: If fewer than ``quantity`` units are on hand.
        ConcurrencyConflict: If the row version changed under the caller.
    """
    require_positive_quantity(quantity)
    medicine = load_medicine(uow, medicine_id)
    if quantity > medicine.stock:
        log.error(
            "Insufficient stock for medicine '%s': requested %d, available %d",
            medicine_id,
            quantity,
            medicine.stock,
        )
        raise InsufficientStock(
            f"Insufficient stock for {medicine.name}: requested {quantity}, available {medicine.stock}"
        )

    remaining = medicine.stock - quantity
    uow.update(
        data_manager.MEDICINES_SHEET,
        MEDICINE_KEY_COLUMN,
        medicine_id,
        expected_version=medicine.version,
        field_values={"Stock": remaining},
    )
    log.debug("Deducted %d units from '%s' (stock=%d)", quantity, medicine_id, remaining)
    return remaining


def credit(uow: UnitOfWork, medicine_id: str, quantity: int) -> int:
    """Add ``quantity`` units to a medicine's stock.

    Returns:
        int: Stock after the credit.

    Raises:
        ValidationError: If ``quantity`` is not a positive integer.
        MissingReferenceError: If ``medicine_id`` is unknown.
        ConcurrencyConflict: If the row version changed under the caller.
    """
    require_positive_quantity(quantity)
    medicine = load_medicine(uow, medicine_id)
    updated = medicine.stock + quantity
    uow.update(
        data_manager.MEDICINES_SHEET,
        MEDICINE_KEY_COLUMN,
        medicine_id,
        expected_version=medicine.version,
        field_values={"Stock": updated},
    )
    log.debug("Credited %d units to '%s' (stock=%d)", quantity, medicine_id, updated)
    return updated
