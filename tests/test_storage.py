#!/usr/bin/env python3
"""
Subscription Storage Tests

Tests for the per-user JSON record stores:
- File layout under the storage key
- Round trips with storage metadata
- Corrupt data detection
- Write failures surfacing as PersistenceError
"""

import json
import pytest

from subscription.models import SubscriptionRecord, SubscriptionTier
from subscription.storage import (
    STORAGE_KEY,
    FileSubscriptionStore,
    MemorySubscriptionStore,
    PersistenceError,
    CorruptRecordError,
    validate_user_id,
)


class TestUserIds:
    """Tests for user id validation"""

    @pytest.mark.parametrize("user_id", ["user-1", "alice@example.com", "u_2.test", "A" * 128])
    def test_valid(self, user_id):
        assert validate_user_id(user_id) == user_id

    @pytest.mark.parametrize("user_id", ["", "..", ".", "../etc", "a/b", "a b", "A" * 129, None, "alice\n", "\nalice"])
    def test_invalid(self, user_id):
        with pytest.raises(ValueError):
            validate_user_id(user_id)


class TestFileSubscriptionStore:
    """Tests for the JSON file store"""

    def test_missing_record(self, file_store):
        assert file_store.load("user-1") is None

    def test_record_location(self, file_store, temp_dir):
        path = file_store.record_path("user-1")
        assert path == temp_dir / "storage" / "user-1" / f"{STORAGE_KEY}.json"

    def test_round_trip(self, file_store):
        record = SubscriptionRecord(tier=SubscriptionTier.PREMIUM, stripe_customer_id="cus_1")
        file_store.save("user-1", record.to_dict())

        loaded = file_store.load("user-1")
        assert "savedAt" in loaded
        assert SubscriptionRecord.from_dict(loaded) == record

    def test_save_overwrites(self, file_store):
        file_store.save("user-1", {"tier": "free"})
        file_store.save("user-1", {"tier": "premium"})
        assert file_store.load("user-1")["tier"] == "premium"

    def test_no_temp_files_left(self, file_store):
        file_store.save("user-1", {"tier": "free"})
        files = list(file_store.record_path("user-1").parent.iterdir())
        assert [f.name for f in files] == [f"{STORAGE_KEY}.json"]

    def test_users_are_isolated(self, file_store):
        file_store.save("user-1", {"tier": "premium"})
        assert file_store.load("user-2") is None

    def test_truncated_json(self, file_store):
        path = file_store.record_path("user-1")
        path.parent.mkdir(parents=True)
        path.write_text('{"tier": "premium", "status": "act')

        with pytest.raises(CorruptRecordError):
            file_store.load("user-1")

    def test_write_failure(self, temp_dir):
        blocker = temp_dir / "not-a-dir"
        blocker.write_text("")
        store = FileSubscriptionStore(str(blocker))

        with pytest.raises(PersistenceError) as exc_info:
            store.save("user-1", {"tier": "free"})
        assert exc_info.value.user_id == "user-1"

    def test_delete(self, file_store):
        file_store.save("user-1", {"tier": "free"})
        file_store.delete("user-1")
        assert file_store.load("user-1") is None
        file_store.delete("user-1")

    def test_rejects_path_traversal(self, file_store):
        with pytest.raises(ValueError):
            file_store.save("../escape", {"tier": "free"})


class TestMemorySubscriptionStore:
    """Tests for the in-memory store"""

    def test_round_trip_returns_fresh_objects(self):
        store = MemorySubscriptionStore()
        data = {"tier": "free"}
        store.save("user-1", data)

        loaded = store.load("user-1")
        loaded["tier"] = "premium"
        assert store.load("user-1")["tier"] == "free"
        assert "savedAt" not in data

    def test_corrupt_raw_data(self):
        store = MemorySubscriptionStore()
        store.put_raw("user-1", "{not json")
        with pytest.raises(CorruptRecordError):
            store.load("user-1")

    def test_unserializable_data(self):
        store = MemorySubscriptionStore()
        with pytest.raises(PersistenceError):
            store.save("user-1", {"tier": object()})

    def test_stored_json_is_valid(self):
        store = MemorySubscriptionStore()
        store.save("user-1", SubscriptionRecord().to_dict())
        json.loads(store._documents["user-1"])
