# overrides.py
#
# Per-contract projection overrides (end months + contour).
# The book is read once from its store at session start, edited in memory
# first, then written through. A failed write is reported back to the caller
# but never rolls back the in-memory value.

import json
import logging
import os
import tempfile
from dataclasses import dataclass, replace
from enum import Enum

from contours import ContourType
from forecast_config import clamp_months, parse_num
from forecast_errors import OverridePersistenceError

logger = logging.getLogger(__name__)


class ContourMode(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


@dataclass(frozen=True)
class OverrideEntry:
    end_months: int | None = None
    contour: ContourType | None = None

    @property
    def is_empty(self) -> bool:
        return self.end_months is None and self.contour is None

    def to_record(self) -> dict:
        return {
            "end_months": self.end_months,
            "contour": self.contour.value if self.contour else None,
        }

    @classmethod
    def from_record(cls, record) -> "OverrideEntry":
        record = record or {}
        months = record.get("end_months")
        contour = record.get("contour")
        return cls(
            end_months=clamp_months(months) if months not in (None, "") else None,
            contour=ContourType.parse(contour) if contour else None,
        )


@dataclass(frozen=True)
class SaveResult:
    contract_id: object
    ok: bool
    error: str | None = None


# ------------------------------------------------------------------
# 1. STORES
# ------------------------------------------------------------------

class OverrideStore:
    """
    Durable key/value store of override entries keyed by contract id.

    A cleared override is kept as an empty entry rather than deleted, so the
    store keeps overruling any override carried on the contract row itself.
    """

    def load_all(self) -> dict:
        raise NotImplementedError

    def get(self, contract_id) -> OverrideEntry:
        return self.load_all().get(contract_id, OverrideEntry())

    def set(self, contract_id, entry: OverrideEntry) -> None:
        raise NotImplementedError


class MemoryOverrideStore(OverrideStore):
    def __init__(self, entries=None):
        self._entries = dict(entries or {})

    def load_all(self) -> dict:
        return dict(self._entries)

    def set(self, contract_id, entry: OverrideEntry) -> None:
        self._entries[contract_id] = entry


class JsonOverrideStore(OverrideStore):
    """Overrides kept in a single JSON document: {"<contract id>": {...}}."""

    def __init__(self, path):
        self.path = os.fspath(path)

    def _read(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f) or {}
        except (OSError, ValueError) as exc:
            raise OverridePersistenceError("*", f"cannot read {self.path}: {exc}") from exc

    def load_all(self) -> dict:
        # JSON keys are always strings; the book matches them on str(contract id)
        return {key: OverrideEntry.from_record(record) for key, record in self._read().items()}

    def get(self, contract_id) -> OverrideEntry:
        return self.load_all().get(str(contract_id), OverrideEntry())

    def set(self, contract_id, entry: OverrideEntry) -> None:
        data = self._read()
        data[str(contract_id)] = entry.to_record()

        # write beside the target, then swap it in so a crash never leaves half a file
        folder = os.path.dirname(os.path.abspath(self.path))
        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=folder, suffix=".tmp", delete=False
            ) as f:
                tmp_path = f.name
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise OverridePersistenceError(contract_id, str(exc)) from exc


# ------------------------------------------------------------------
# 2. IN-MEMORY BOOK
# ------------------------------------------------------------------

def _key(contract_id) -> str:
    # stores may hand ids back as text (JSON keys, dtype=str loads); match on str()
    return str(contract_id)


class OverrideBook:
    """Working set of overrides for one session."""

    def __init__(self, store: OverrideStore, entries=None, load_error=None):
        self.store = store
        self.load_error = load_error
        self._ids = {}
        self._entries = {}
        for contract_id, entry in (entries or {}).items():
            if not entry.is_empty:
                self._remember(contract_id)
                self._entries[_key(contract_id)] = entry

    @classmethod
    def load(cls, store: OverrideStore, contracts=()) -> "OverrideBook":
        """
        Read the store once. Overrides carried on contract rows seed the book;
        entries in the store take precedence, including cleared (empty) ones.
        An unreadable store leaves only the seeded entries and sets `load_error`.
        """
        entries = {}
        ids = {}
        for contract in contracts:
            ids[_key(contract.id)] = contract.id
            seeded = OverrideEntry(contract.override_end_months, contract.override_contour)
            if not seeded.is_empty:
                entries[_key(contract.id)] = seeded

        load_error = None
        try:
            stored = store.load_all()
        except OverridePersistenceError as exc:
            logger.warning("cannot load projection overrides, using contract values only: %s", exc)
            load_error = str(exc)
            stored = {}
        for contract_id, entry in stored.items():
            entries[_key(contract_id)] = entry
            ids.setdefault(_key(contract_id), contract_id)

        book = cls(store, {ids[key]: entry for key, entry in entries.items()}, load_error)
        logger.debug("loaded %d projection overrides", len(book))
        return book

    def _remember(self, contract_id):
        self._ids.setdefault(_key(contract_id), contract_id)

    def get(self, contract_id) -> OverrideEntry:
        return self._entries.get(_key(contract_id), OverrideEntry())

    def end_months(self, contract_id):
        return self.get(contract_id).end_months

    def contour(self, contract_id):
        return self.get(contract_id).contour

    def mode(self, contract_id) -> ContourMode:
        return ContourMode.MANUAL if self.contour(contract_id) else ContourMode.AUTO

    def set_end_months(self, contract_id, months) -> SaveResult:
        months = clamp_months(parse_num(months))
        return self._apply(contract_id, replace(self.get(contract_id), end_months=months))

    def set_contour(self, contract_id, contour) -> SaveResult:
        """Switches the contract's contour to manual mode."""
        return self._apply(contract_id, replace(self.get(contract_id), contour=ContourType.parse(contour)))

    def clear(self, contract_id, end_months: bool = True, contour: bool = True) -> SaveResult:
        """The only way back to auto contour mode."""
        entry = self.get(contract_id)
        if end_months:
            entry = replace(entry, end_months=None)
        if contour:
            entry = replace(entry, contour=None)
        return self._apply(contract_id, entry)

    def clear_all(self, end_months: bool = True, contour: bool = True) -> list:
        return [self.clear(self._ids[key], end_months, contour) for key in list(self._entries)]

    def _apply(self, contract_id, entry: OverrideEntry) -> SaveResult:
        # optimistic: the in-memory value is authoritative until the next reload
        self._remember(contract_id)
        contract_id = self._ids[_key(contract_id)]
        if entry.is_empty:
            self._entries.pop(_key(contract_id), None)
        else:
            self._entries[_key(contract_id)] = entry

        try:
            self.store.set(contract_id, entry)
        except OverridePersistenceError as exc:
            logger.warning("failed to save projection override: %s", exc)
            return SaveResult(contract_id, ok=False, error=str(exc))
        return SaveResult(contract_id, ok=True)

    def snapshot(self) -> tuple:
        """Hashable view of the current entries, suitable as a cache key."""
        return tuple(sorted(
            ((self._ids[key], entry) for key, entry in self._entries.items()),
            key=lambda item: _key(item[0]),
        ))

    def __len__(self):
        return len(self._entries)

    def __contains__(self, contract_id):
        return _key(contract_id) in self._entries
