"""
Unit Tests for snapshot storage

Each test writes into pytest's ``tmp_path`` so nothing touches data/.
"""

import json
import logging

import pytest
from fractions import Fraction

import accrual.storage as _storage
from accrual.models import Account, LedgerSnapshot
from accrual.storage import InMemoryStorage, JsonFileStorage, StorageWriteError


def _sample_snapshot() -> LedgerSnapshot:
    return LedgerSnapshot(
        users={
            "alice": Account(balance_cents=110, remainder_cents=Fraction(0)),
            "bob": Account(balance_cents=36, remainder_cents=Fraction(2, 3)),
            "carol": Account(balance_cents=0, remainder_cents=Fraction(1, 7)),
        },
        enrolled={"alice", "bob", "dave"},
    )


class TestJsonFileStorage:
    """Tests for the JSON file backend."""

    def test_round_trip(self, tmp_path):
        storage = JsonFileStorage(tmp_path / "ledger.json")
        snapshot = _sample_snapshot()

        storage.save(snapshot)

        assert storage.load() == snapshot

    def test_round_trip_empty(self, tmp_path):
        storage = JsonFileStorage(tmp_path / "ledger.json")

        storage.save(LedgerSnapshot())

        assert storage.load() == LedgerSnapshot()

    def test_document_shape(self, tmp_path):
        path = tmp_path / "ledger.json"
        JsonFileStorage(path).save(_sample_snapshot())

        document = json.loads(path.read_text(encoding="utf-8"))

        assert set(document) == {"users", "enrolled"}
        assert document["enrolled"] == ["alice", "bob", "dave"]
        assert document["users"]["bob"] == {"balanceCents": 36, "remainderCents": "2/3"}
        assert document["users"]["alice"]["remainderCents"] == "0"

    def test_save_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "data" / "ledger.json"

        JsonFileStorage(path).save(_sample_snapshot())

        assert path.exists()

    def test_save_overwrites_previous_content(self, tmp_path):
        storage = JsonFileStorage(tmp_path / "ledger.json")
        storage.save(_sample_snapshot())

        storage.save(LedgerSnapshot(enrolled={"erin"}))

        assert storage.load() == LedgerSnapshot(enrolled={"erin"})

    def test_load_accepts_decimal_remainders(self, tmp_path):
        """Remainders written as decimal strings or JSON numbers load exactly."""
        path = tmp_path / "ledger.json"
        path.write_text(json.dumps({
            "users": {
                "alice": {"balanceCents": 73, "remainderCents": "0.3333"},
                "bob": {"balanceCents": 1, "remainderCents": 0.25},
                "carol": {"balanceCents": 2, "remainderCents": 0},
            },
            "enrolled": ["alice"],
        }))

        snapshot = JsonFileStorage(path).load()

        assert snapshot.users["alice"].remainder_cents == Fraction(3333, 10000)
        assert snapshot.users["bob"].remainder_cents == Fraction(1, 4)
        assert snapshot.users["carol"].remainder_cents == 0
        assert snapshot.enrolled == {"alice"}


class TestResilientLoad:
    """load() never raises; it falls back to an empty snapshot."""

    def test_missing_file(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING, logger="accrual.storage"):
            snapshot = JsonFileStorage(tmp_path / "absent.json").load()

        assert snapshot == LedgerSnapshot()
        assert "not found" in caplog.text

    @pytest.mark.parametrize("content", [
        "",
        "{not json",
        "[]",
        '{"users": "nope", "enrolled": []}',
        '{"users": {"alice": {"balanceCents": -5, "remainderCents": "0"}}, "enrolled": []}',
        '{"users": {"alice": {"balanceCents": 5, "remainderCents": "3/2"}}, "enrolled": []}',
        '{"users": {"alice": {"balanceCents": 5, "remainderCents": "lots"}}, "enrolled": []}',
        '{"users": {"alice": {"balanceCents": 5, "remainderCents": "1e30000000"}}, "enrolled": []}',
        '{"users": {"alice": {"balanceCents": 5, "remainderCents": "1e-30000000"}}, "enrolled": []}',
    ])
    def test_corrupt_file(self, tmp_path, caplog, content):
        path = tmp_path / "ledger.json"
        path.write_text(content, encoding="utf-8")

        with caplog.at_level(logging.WARNING, logger="accrual.storage"):
            snapshot = JsonFileStorage(path).load()

        assert snapshot == LedgerSnapshot()
        assert "corrupt" in caplog.text

    def test_unreadable_path(self, tmp_path, caplog):
        path = tmp_path / "ledger.json"
        path.mkdir()

        with caplog.at_level(logging.WARNING, logger="accrual.storage"):
            snapshot = JsonFileStorage(path).load()

        assert snapshot == LedgerSnapshot()
        assert "Could not read" in caplog.text

    def test_path_name_too_long(self, tmp_path, caplog):
        """OS errors raised while resolving the path fall back to an empty ledger."""
        path = tmp_path / ("x" * 300) / "ledger.json"

        with caplog.at_level(logging.WARNING, logger="accrual.storage"):
            snapshot = JsonFileStorage(path).load()

        assert snapshot == LedgerSnapshot()
        assert "Could not read" in caplog.text

    def test_invalid_utf8(self, tmp_path):
        path = tmp_path / "ledger.json"
        path.write_bytes(b"\xff\xfe\x00garbage")

        assert JsonFileStorage(path).load() == LedgerSnapshot()


class TestSaveFailure:
    """A failed save raises StorageWriteError and keeps the old file."""

    def test_replace_failure_keeps_prior_content(self, tmp_path, monkeypatch):
        path = tmp_path / "ledger.json"
        storage = JsonFileStorage(path)
        storage.save(_sample_snapshot())
        before = path.read_text(encoding="utf-8")

        def failing_replace(src, dst):
            raise OSError("no space left on device")

        monkeypatch.setattr(_storage.os, "replace", failing_replace)

        with pytest.raises(StorageWriteError):
            storage.save(LedgerSnapshot())

        assert path.read_text(encoding="utf-8") == before
        assert not (tmp_path / "ledger.json.tmp").exists()

    def test_target_is_directory(self, tmp_path):
        path = tmp_path / "ledger.json"
        path.mkdir()

        with pytest.raises(StorageWriteError):
            JsonFileStorage(path).save(_sample_snapshot())


class TestInMemoryStorage:
    """Tests for the in-memory backend."""

    def test_empty_by_default(self):
        assert InMemoryStorage().load() == LedgerSnapshot()

    def test_round_trip_is_isolated(self):
        storage = InMemoryStorage()
        snapshot = _sample_snapshot()

        storage.save(snapshot)
        snapshot.users["alice"].balance_cents = 0
        loaded = storage.load()
        loaded.enrolled.clear()

        assert storage.load() == _sample_snapshot()
        assert storage.save_count == 1

    def test_seeded_snapshot(self):
        storage = InMemoryStorage(_sample_snapshot())

        assert storage.load() == _sample_snapshot()
