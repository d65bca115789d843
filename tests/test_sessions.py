"""Tests for the Redis-backed assistant session cache."""

from helpers import BrokenRedis, FakeRedis

from agent_engine.core.sessions import SessionIdStore, session_key


class TestSessionIdStore:
    def test_key_format(self):
        assert session_key("g-001", "dev") == "project:g-001:sessions:dev"

    def test_save_and_get(self):
        client = FakeRedis()
        store = SessionIdStore(client)
        assert store.save("g-001", "dev", "sid-1") is True
        assert store.get("g-001", "dev") == "sid-1"
        assert store.get("g-001", "pm") == ""

    def test_last_writer_wins(self):
        store = SessionIdStore(FakeRedis())
        store.save("g-001", "dev", "sid-1")
        store.save("g-001", "dev", "sid-2")
        assert store.get("g-001", "dev") == "sid-2"

    def test_expires_after_ttl(self):
        client = FakeRedis()
        store = SessionIdStore(client, ttl_seconds=86400)
        store.save("g-001", "dev", "sid-1")
        client.now += 86399
        assert store.get("g-001", "dev") == "sid-1"
        client.now += 1
        assert store.get("g-001", "dev") == ""

    def test_empty_values_not_saved(self):
        client = FakeRedis()
        store = SessionIdStore(client)
        assert store.save("g-001", "dev", "") is False
        assert store.save("", "dev", "sid") is False
        assert client.store == {}

    def test_bytes_decoded(self):
        client = FakeRedis()
        client.set(session_key("g-001", "dev"), b"sid-b")
        assert SessionIdStore(client).get("g-001", "dev") == "sid-b"

    def test_clear(self):
        store = SessionIdStore(FakeRedis())
        store.save("g-001", "dev", "sid-1")
        store.clear("g-001", "dev")
        assert store.get("g-001", "dev") == ""

    def test_redis_failure_is_not_raised(self, caplog):
        store = SessionIdStore(BrokenRedis())
        assert store.save("g-001", "dev", "sid-1") is False
        assert store.get("g-001", "dev") == ""
        store.clear("g-001", "dev")
        assert "Failed to cache session id" in caplog.text
