"""Runtime context and unit of work for the pharmacy ledger.

The workbook is the only shared mutable state in the package. A
:class:`RuntimeContext` owns it together with a re-entrant store lock. Every
compound business operation runs inside :func:`unit_of_work`, which holds the
lock for its whole duration and journals each write so that a failure part
way through restores every touched row exactly as it was.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION
from .errors import ConcurrencyConflict, MissingReferenceError


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, workbook, and store lock used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)


# Journal entries: ("append", sheet, row_index, None) or ("update", sheet, row_index, previous_values)
JournalEntry = Tuple[str, str, int, Optional[List[object]]]


class UnitOfWork:
    """Scoped, journaled access to the workbook for one compound operation.

    Instances are only handed out by :func:`unit_of_work`; all ledger writes
    go through :meth:`append` and :meth:`update` so that :meth:`rollback` can
    undo them in reverse order.
    """

    def __init__(self, context: RuntimeContext) -> None:
        self.context = context
        self._journal: List[JournalEntry] = []

    @property
    def workbook(self) -> Workbook:
        return self.context.workbook

    @property
    def pending_writes(self) -> int:
        return len(self._journal)

    def locate(self, sheet_name: str, key_column: str, key_value: str) -> int:
        """Return the row index for ``key_value`` or raise :class:`MissingReferenceError`."""

        row_index = data_manager.locate_row(self.workbook, sheet_name, key_column, key_value)
        if row_index is None:
            log.warning("Lookup failed for %s '%s' in %s", key_column, key_value, sheet_name)
            raise MissingReferenceError(f"Unknown {key_column}: {key_value}")
        return row_index

    def append(self, sheet_name: str, values: Sequence[object]) -> int:
        row_index = data_manager.append_row(self.workbook, sheet_name, values)
        self._journal.append(("append", sheet_name, row_index, None))
        return row_index

    def update(
        self,
        sheet_name: str,
        key_column: str,
        key_value: str,
        *,
        expected_version: int,
        field_values: dict,
    ) -> None:
        """Apply a version-checked update to the row identified by ``key_value``.

        Raises:
            MissingReferenceError: If no row carries ``key_value``.
            ConcurrencyConflict: If the stored version differs from
                ``expected_version``; nothing is written in that case.
        """

        row_index = self.locate(sheet_name, key_column, key_value)
        previous = data_manager.read_row(self.workbook, sheet_name, row_index)
        written = data_manager.compare_and_set(
            self.workbook,
            sheet_name,
            row_index,
            expected_version=expected_version,
            field_values=field_values,
        )
        if not written:
            log.error(
                "Concurrent modification of %s '%s' detected (expected version %d)",
                sheet_name,
                key_value,
                expected_version,
            )
            raise ConcurrencyConflict(
                f"{sheet_name} '{key_value}' was modified concurrently; retry the operation"
            )
        self._journal.append(("update", sheet_name, row_index, previous))

    def set_fields(self, sheet_name: str, key_column: str, key_value: str, field_values: dict) -> None:
        """Journaled update for unversioned sheets such as ``Vendors``."""

        row_index = self.locate(sheet_name, key_column, key_value)
        previous = data_manager.read_row(self.workbook, sheet_name, row_index)
        data_manager.update_fields(self.workbook, sheet_name, row_index, field_values=field_values)
        self._journal.append(("update", sheet_name, row_index, previous))

    def rollback(self) -> None:
        """Undo every journaled write, newest first."""

        for action, sheet_name, row_index, previous in reversed(self._journal):
            if action == "append":
                data_manager.delete_row(self.workbook, sheet_name, row_index)
            else:
                data_manager.write_row(self.workbook, sheet_name, row_index, previous or [])
        log.debug("Rolled back %d journaled writes", len(self._journal))
        self._journal.clear()

    def commit(self) -> None:
        log.debug("Committed %d journaled writes", len(self._journal))
        self._journal.clear()


@contextmanager
def unit_of_work(context: RuntimeContext) -> Iterator[UnitOfWork]:
    """Run a compound operation atomically against ``context``.

    The store lock is held until the block exits. If the block raises, every
    write made through the yielded :class:`UnitOfWork` is undone and the
    exception propagates unchanged.
    """

    with context.lock:
        uow = UnitOfWork(context)
        try:
            yield uow
        except BaseException:
            uow.rollback()
            raise
        else:
            uow.commit()


@contextmanager
def read_snapshot(context: RuntimeContext) -> Iterator[Workbook]:
    """Hold the store lock while a reader scans the workbook."""

    with context.lock:
        yield context.workbook


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to disk."""

    with context.lock:
        data_manager.save_workbook(
            context.workbook,
            destination=context.settings.data_file,
        )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context containing a newly opened workbook and
            its own store lock.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)
