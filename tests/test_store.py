"""Tests for the runtime context lifecycle and the journaled unit of work."""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from unittest.mock import Mock

import pytest

from pharmacy_ledger import constants, data_manager, store
from pharmacy_ledger.errors import ConcurrencyConflict, MissingReferenceError


def _vendor(vendor_id: str) -> list[object]:
    return [vendor_id, f"Vendor {vendor_id}", None, None, None, None, True]


# ---------------------------------------------------------------------------
# Runtime/context management
# ---------------------------------------------------------------------------


def test_load_runtime_context_returns_context(monkeypatch, tmp_path):
    """load_runtime_context should assemble settings and workbook into a context."""

    config_path = tmp_path / "config.ini"
    parser = Mock(name="parser")
    parsed_settings = data_manager.ConfigSettings(
        data_file=tmp_path / "pharmacy.xlsx",
        pharmacy_name="Pharmacy",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        default_operator_id="OP-DEFAULT",
    )
    workbook = Mock(name="workbook")

    find_config_file = Mock(return_value=config_path)
    read_config = Mock(return_value=parser)
    parse_settings = Mock(return_value=parsed_settings)
    open_workbook = Mock(return_value=workbook)

    monkeypatch.setattr(data_manager, "find_config_file", find_config_file)
    monkeypatch.setattr(data_manager, "read_config", read_config)
    monkeypatch.setattr(data_manager, "parse_settings", parse_settings)
    monkeypatch.setattr(data_manager, "open_workbook", open_workbook)

    context = store.load_runtime_context(config_path)

    assert context.settings is parsed_settings
    assert context.workbook is workbook
    find_config_file.assert_called_once_with(config_path)
    read_config.assert_called_once_with(config_path.resolve())
    parse_settings.assert_called_once_with(parser, base_path=config_path.resolve().parent)
    open_workbook.assert_called_once_with(parsed_settings.data_file)


def test_ensure_schema_version_rejects_mismatch(context):
    """Schema mismatches should surface a RuntimeError with clear messaging."""

    bad_settings = replace(context.settings, schema_version="0.9")
    bad_context = store.RuntimeContext(settings=bad_settings, workbook=context.workbook)
    with pytest.raises(RuntimeError):
        store.ensure_schema_version(bad_context)


def test_each_context_gets_its_own_lock(settings):
    """Contexts must not share a lock by accident."""

    first = store.RuntimeContext(settings=settings, workbook=Mock())
    second = store.RuntimeContext(settings=settings, workbook=Mock())
    assert first.lock is not second.lock


def test_persist_context_saves_to_configured_path(monkeypatch, context):
    """persist_context should target settings.data_file."""

    save = Mock()
    monkeypatch.setattr(data_manager, "save_workbook", save)

    store.persist_context(context)

    save.assert_called_once_with(context.workbook, destination=context.settings.data_file)


def test_refresh_context_returns_new_context(monkeypatch, context):
    """refresh_context should reopen the workbook and keep the settings."""

    fresh = Mock(name="fresh")
    monkeypatch.setattr(data_manager, "refresh_workbook", Mock(return_value=fresh))

    refreshed = store.refresh_context(context)

    assert refreshed.workbook is fresh
    assert refreshed.settings is context.settings
    assert refreshed.lock is not context.lock


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------


def test_unit_of_work_commits_on_success(context):
    """Writes made inside a successful block stay in the workbook."""

    with store.unit_of_work(context) as uow:
        uow.append(data_manager.VENDORS_SHEET, _vendor("V1"))
        assert uow.pending_writes == 1

    assert [vendor.vendor_id for vendor in data_manager.iter_vendors(context.workbook)] == ["V1"]


def test_unit_of_work_rolls_back_appends_and_updates(context, make_medicine):
    """An exception undoes every journaled write, newest first."""

    make_medicine("M1", stock=10)

    with pytest.raises(RuntimeError):
        with store.unit_of_work(context) as uow:
            uow.update(
                data_manager.MEDICINES_SHEET,
                "MedicineID",
                "M1",
                expected_version=1,
                field_values={"Stock": 3},
            )
            uow.append(data_manager.VENDORS_SHEET, _vendor("V2"))
            uow.set_fields(data_manager.VENDORS_SHEET, "VendorID", "V1", {"IsActive": False})
            raise RuntimeError("boom")

    (medicine,) = list(data_manager.iter_medicines(context.workbook))
    vendors = list(data_manager.iter_vendors(context.workbook))
    assert medicine.stock == 10
    assert medicine.version == 1
    assert [(vendor.vendor_id, vendor.is_active) for vendor in vendors] == [("V1", True)]


def test_update_with_stale_version_raises_conflict(context, make_medicine):
    """uow.update turns a failed compare-and-set into ConcurrencyConflict."""

    make_medicine("M1", stock=10)

    with pytest.raises(ConcurrencyConflict):
        with store.unit_of_work(context) as uow:
            uow.update(
                data_manager.MEDICINES_SHEET,
                "MedicineID",
                "M1",
                expected_version=7,
                field_values={"Stock": 0},
            )

    (medicine,) = list(data_manager.iter_medicines(context.workbook))
    assert medicine.stock == 10


def test_locate_unknown_key_raises_missing_reference(context):
    """Lookups inside a unit of work surface MissingReferenceError."""

    with pytest.raises(MissingReferenceError):
        with store.unit_of_work(context) as uow:
            uow.locate(data_manager.SALES_SHEET, "SaleID", "S-missing")


def test_unit_of_work_holds_the_store_lock(context):
    """The store lock stays held for the whole block."""

    with store.unit_of_work(context):
        # RLock is re-entrant for the owner; another acquire from this thread succeeds
        assert context.lock.acquire(blocking=False)
        context.lock.release()
        with store.read_snapshot(context) as workbook:
            assert workbook is context.workbook


def test_rollback_restores_decimal_amounts(context, make_medicine):
    """Restored rows keep their original money values."""

    make_medicine("M1", stock=10, purchase_price="50.00")

    with pytest.raises(ValueError):
        with store.unit_of_work(context) as uow:
            uow.update(
                data_manager.MEDICINES_SHEET,
                "MedicineID",
                "M1",
                expected_version=1,
                field_values={"PaidAmount": Decimal("500.00"), "DueAmount": Decimal("0.00")},
            )
            raise ValueError("abort")

    (medicine,) = list(data_manager.iter_medicines(context.workbook))
    assert (medicine.paid_amount, medicine.due_amount) == (Decimal("0.00"), Decimal("500.00"))
