"""Tests for client credential cache backends."""

import json

from authgate.client.storage import (
    ACCESS_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    USER_KEY,
    JsonFileStorage,
    MemoryStorage,
)


class TestMemoryStorage:
    """Test the in-process store."""

    def test_values_are_copied(self):
        storage = MemoryStorage()
        user = {"id": "u1", "email": "a@example.com"}
        storage.set(USER_KEY, user)

        user["email"] = "changed@example.com"

        assert storage.get(USER_KEY)["email"] == "a@example.com"

    def test_missing_key(self):
        assert MemoryStorage().get(ACCESS_TOKEN_KEY) is None

    def test_corrupt_value_reads_as_missing(self):
        storage = MemoryStorage()
        storage.set_raw(USER_KEY, "{not json")

        assert storage.get(USER_KEY) is None

    def test_clear_auth_data_keeps_other_keys(self):
        storage = MemoryStorage()
        storage.set(ACCESS_TOKEN_KEY, "a")
        storage.set(REFRESH_TOKEN_KEY, "r")
        storage.set(USER_KEY, {"id": "u1"})
        storage.set("theme", "dark")

        storage.clear_auth_data()

        assert storage.keys() == ["theme"]


class TestJsonFileStorage:
    """Test the file-backed store."""

    def test_survives_reopen(self, tmp_path):
        path = tmp_path / "session.json"
        JsonFileStorage(path).set(ACCESS_TOKEN_KEY, "token-1")

        assert JsonFileStorage(path).get(ACCESS_TOKEN_KEY) == "token-1"

    def test_remove_persists(self, tmp_path):
        path = tmp_path / "session.json"
        storage = JsonFileStorage(path)
        storage.set(ACCESS_TOKEN_KEY, "token-1")

        storage.clear_auth_data()

        assert json.loads(path.read_text()) == {}

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "session.json"
        path.write_text("[[[")

        storage = JsonFileStorage(path)

        assert storage.get(ACCESS_TOKEN_KEY) is None
        storage.set(ACCESS_TOKEN_KEY, "token-2")
        assert JsonFileStorage(path).get(ACCESS_TOKEN_KEY) == "token-2"

    def test_creates_parent_directories(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "session.json"

        JsonFileStorage(path).set(USER_KEY, {"id": "u1"})

        assert path.exists()
