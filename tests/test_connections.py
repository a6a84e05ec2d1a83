"""Tests for connection slots and the token store."""

import pytest

from qbo_bridge.connections import (
    Connection,
    ConnectionNotConfiguredError,
    ConnectionSlot,
    ConnectionStore,
)


class TestConnectionSlot:
    def test_oauth_state(self):
        assert [s.oauth_state for s in ConnectionSlot] == ["qbo_main", "qbo_from", "qbo_to"]

    def test_from_state_routes_callbacks(self):
        assert ConnectionSlot.from_state("qbo_from") is ConnectionSlot.FROM
        assert ConnectionSlot.from_state("qbo_to") is ConnectionSlot.TO
        assert ConnectionSlot.from_state(None) is ConnectionSlot.MAIN
        assert ConnectionSlot.from_state("garbage") is ConnectionSlot.MAIN

    def test_parse_empty_name_means_main(self):
        assert ConnectionSlot.parse("TO") is ConnectionSlot.TO
        assert ConnectionSlot.parse(None) is ConnectionSlot.MAIN
        assert ConnectionSlot.parse("  ") is ConnectionSlot.MAIN

    def test_parse_rejects_unknown_name(self):
        with pytest.raises(ValueError, match="Unknown connection slot"):
            ConnectionSlot.parse("form")


class TestConnectionStore:
    """Tests for ConnectionStore."""

    def test_new_store_has_nothing_connected(self):
        store = ConnectionStore()

        assert store.status() == {
            "main": {"connected": False, "realm_id": None, "company_name": None},
            "from": {"connected": False, "realm_id": None, "company_name": None},
            "to": {"connected": False, "realm_id": None, "company_name": None},
        }

    def test_set_and_status(self, connection):
        store = ConnectionStore()
        store.set("from", connection)

        status = store.status()
        assert status["from"] == {
            "connected": True,
            "realm_id": "9130000000000001",
            "company_name": "Test Company",
        }
        assert status["to"]["connected"] is False

    def test_token_without_realm_is_not_connected(self):
        store = ConnectionStore({ConnectionSlot.MAIN: Connection(access_token="t")})

        assert store.status()["main"]["connected"] is False
        with pytest.raises(ConnectionNotConfiguredError):
            store.require(ConnectionSlot.MAIN)

    def test_require_names_the_missing_slot(self):
        store = ConnectionStore()

        with pytest.raises(ConnectionNotConfiguredError) as exc_info:
            store.require(ConnectionSlot.TO)

        assert exc_info.value.slot is ConnectionSlot.TO
        assert str(exc_info.value) == (
            "TO company not connected. Please connect the TO company first."
        )

    def test_require_returns_snapshot(self, connection):
        store = ConnectionStore({ConnectionSlot.FROM: connection})

        snapshot = store.require(ConnectionSlot.FROM)
        store.disconnect(ConnectionSlot.FROM)

        assert snapshot.access_token == "access-token-123"
        assert not store.get(ConnectionSlot.FROM).is_usable

    def test_disconnect_unknown_slot_leaves_store_untouched(self, connection):
        store = ConnectionStore({ConnectionSlot.MAIN: connection})

        with pytest.raises(ValueError):
            store.disconnect("form")

        assert store.status()["main"]["connected"] is True

    def test_set_unknown_slot_rejected(self, connection):
        store = ConnectionStore()

        with pytest.raises(ValueError):
            store.set("mian", connection)

        assert not store.get(ConnectionSlot.MAIN).is_usable
