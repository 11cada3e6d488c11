import json

import pytest

from contours import ContourType
from forecast_errors import ForecastError, OverridePersistenceError
from overrides import (
    ContourMode,
    JsonOverrideStore,
    MemoryOverrideStore,
    OverrideBook,
    OverrideEntry,
    OverrideStore,
)


class FailingStore(OverrideStore):

    def load_all(self):
        return {}

    def set(self, contract_id, entry):
        raise OverridePersistenceError(contract_id, "store offline")


class TestOverrideBook:

    def test_contour_mode_transitions(self):
        book = OverrideBook(MemoryOverrideStore())
        assert book.mode(1) is ContourMode.AUTO

        book.set_contour(1, ContourType.BELL)
        assert book.mode(1) is ContourMode.MANUAL

        # editing end months does not switch back to auto
        book.set_end_months(1, 8)
        assert book.mode(1) is ContourMode.MANUAL

        book.clear(1, end_months=False)
        assert book.mode(1) is ContourMode.AUTO
        assert book.end_months(1) == 8

    def test_end_months_are_clamped(self):
        book = OverrideBook(MemoryOverrideStore())
        book.set_end_months(1, 90)
        book.set_end_months(2, "")
        assert book.end_months(1) == 36
        assert book.end_months(2) == 1

    def test_writes_through_to_store(self):
        store = MemoryOverrideStore()
        book = OverrideBook(store)

        result = book.set_contour(5, "late")

        assert result.ok
        assert store.get(5) == OverrideEntry(contour=ContourType.LATE)

    def test_clear_removes_entry(self):
        store = MemoryOverrideStore({5: OverrideEntry(end_months=4)})
        book = OverrideBook.load(store)

        book.clear(5)

        assert 5 not in book
        # the store keeps the clear so row-level values cannot come back
        assert store.load_all() == {5: OverrideEntry()}

    def test_clear_survives_reload(self, make_contract, tmp_path):
        path = tmp_path / "overrides.json"
        contracts = [make_contract(id=1, override_end_months=6, override_contour=ContourType.BELL)]

        book = OverrideBook.load(JsonOverrideStore(path), contracts)
        assert book.mode(1) is ContourMode.MANUAL
        assert book.clear(1).ok

        reloaded = OverrideBook.load(JsonOverrideStore(path), contracts)
        assert 1 not in reloaded
        assert reloaded.mode(1) is ContourMode.AUTO
        assert reloaded.end_months(1) is None

    def test_corrupt_store_falls_back_to_contract_values(self, make_contract, tmp_path, caplog):
        path = tmp_path / "overrides.json"
        path.write_text("{not json")

        book = OverrideBook.load(JsonOverrideStore(path), [make_contract(id=1, override_end_months=6)])

        assert book.end_months(1) == 6
        assert "cannot read" in book.load_error
        assert "cannot load projection overrides" in caplog.text

    def test_text_ids_match_contract_ids(self, make_contract, tmp_path):
        path = tmp_path / "overrides.json"
        JsonOverrideStore(path).set("0042", OverrideEntry(end_months=9))
        JsonOverrideStore(path).set(7, OverrideEntry(contour=ContourType.LATE))
        contracts = [make_contract(id="0042"), make_contract(id=7)]

        book = OverrideBook.load(JsonOverrideStore(path), contracts)

        assert book.end_months("0042") == 9
        assert book.contour(7) is ContourType.LATE
        # the snapshot hands back the contracts' own ids
        assert dict(book.snapshot()) == {
            "0042": OverrideEntry(end_months=9),
            7: OverrideEntry(contour=ContourType.LATE),
        }

    def test_failed_write_keeps_local_value(self, caplog):
        book = OverrideBook(FailingStore())

        result = book.set_end_months(3, 10)

        assert not result.ok
        assert "store offline" in result.error
        assert book.end_months(3) == 10
        assert "failed to save projection override" in caplog.text

    def test_clear_all(self):
        book = OverrideBook(MemoryOverrideStore(), {1: OverrideEntry(end_months=2), 2: OverrideEntry(contour=ContourType.FLAT)})
        results = book.clear_all()

        assert len(results) == 2
        assert all(r.ok for r in results)
        assert len(book) == 0

    def test_load_reads_store_once_and_seeds_from_contracts(self, make_contract):
        class CountingStore(MemoryOverrideStore):
            loads = 0

            def load_all(self):
                CountingStore.loads += 1
                return super().load_all()

        store = CountingStore({2: OverrideEntry(end_months=12)})
        contracts = [
            make_contract(id=1, override_end_months=6),
            make_contract(id=2, override_end_months=3, override_contour=ContourType.BELL),
            make_contract(id=3),
        ]

        book = OverrideBook.load(store, contracts)

        assert CountingStore.loads == 1
        assert book.end_months(1) == 6
        # stored entries win over values carried on contract rows
        assert book.get(2) == OverrideEntry(end_months=12)
        assert 3 not in book

    def test_snapshot_is_hashable_and_ordered(self):
        book = OverrideBook(MemoryOverrideStore(), {"b": OverrideEntry(end_months=2), "a": OverrideEntry(end_months=1)})
        snapshot = book.snapshot()

        assert [cid for cid, _ in snapshot] == ["a", "b"]
        assert hash(snapshot) == hash(book.snapshot())


class TestJsonOverrideStore:

    def test_missing_file_is_empty(self, tmp_path):
        assert JsonOverrideStore(tmp_path / "overrides.json").load_all() == {}

    def test_set_and_reload(self, tmp_path):
        path = tmp_path / "overrides.json"
        store = JsonOverrideStore(path)

        store.set(42, OverrideEntry(end_months=9, contour=ContourType.SCURVE))
        store.set("A-7", OverrideEntry(contour=ContourType.FRONT))

        assert json.loads(path.read_text())["42"] == {"end_months": 9, "contour": "scurve"}
        assert JsonOverrideStore(path).load_all() == {
            "42": OverrideEntry(end_months=9, contour=ContourType.SCURVE),
            "A-7": OverrideEntry(contour=ContourType.FRONT),
        }
        assert store.get(42) == OverrideEntry(end_months=9, contour=ContourType.SCURVE)

    def test_empty_entry_is_kept_as_cleared(self, tmp_path):
        path = tmp_path / "overrides.json"
        store = JsonOverrideStore(path)
        store.set(1, OverrideEntry(end_months=4))
        store.set(1, OverrideEntry())

        assert json.loads(path.read_text()) == {"1": {"end_months": None, "contour": None}}
        assert store.load_all() == {"1": OverrideEntry()}

    def test_save_leaves_no_temp_files(self, tmp_path):
        store = JsonOverrideStore(tmp_path / "overrides.json")
        store.set(1, OverrideEntry(end_months=4))
        store.set(2, OverrideEntry(contour=ContourType.BELL))

        assert [p.name for p in tmp_path.iterdir()] == ["overrides.json"]
        assert set(json.loads((tmp_path / "overrides.json").read_text())) == {"1", "2"}

    def test_failed_save_keeps_previous_file(self, tmp_path, monkeypatch):
        path = tmp_path / "overrides.json"
        store = JsonOverrideStore(path)
        store.set(1, OverrideEntry(end_months=4))

        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("overrides.os.replace", broken_replace)
        with pytest.raises(OverridePersistenceError):
            store.set(2, OverrideEntry(end_months=8))

        assert json.loads(path.read_text()) == {"1": {"end_months": 4, "contour": None}}
        assert [p.name for p in tmp_path.iterdir()] == ["overrides.json"]

    def test_unwritable_path_raises(self, tmp_path):
        store = JsonOverrideStore(tmp_path / "missing-dir" / "overrides.json")
        with pytest.raises(OverridePersistenceError) as excinfo:
            store.set(1, OverrideEntry(end_months=4))
        assert isinstance(excinfo.value, ForecastError)
        assert excinfo.value.contract_id == 1

    def test_corrupt_file_raises(self, tmp_path):
        path = tmp_path / "overrides.json"
        path.write_text("{not json")
        with pytest.raises(OverridePersistenceError):
            JsonOverrideStore(path).load_all()

    def test_book_reports_unwritable_store(self, tmp_path):
        book = OverrideBook(JsonOverrideStore(tmp_path / "missing-dir" / "overrides.json"))
        result = book.set_contour(1, ContourType.BELL)

        assert not result.ok
        assert book.contour(1) is ContourType.BELL
