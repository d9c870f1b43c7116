"""Tests for variable resolution and management."""

import logging

import pytest

from reqvault.crypto import decrypt_value, derive_key, encrypt_value
from reqvault.errors import AuthenticationError, ConfigurationError, MalformedPayloadError
from reqvault.store import MemorySecretStore, VariableRecord
from reqvault.variables import (
    DECRYPTION_FAILED,
    decrypt_records,
    read_variables,
    resolve_variables,
    sanitize_variables,
    update_variables,
)


def _store_with(key, **values):
    records = [VariableRecord(k, encrypt_value(v, key)) for k, v in values.items()]
    return MemorySecretStore({"ws": records})


class TestDecryptRecords:
    def test_outcome_per_record(self, key):
        records = [
            VariableRecord("good", encrypt_value("v", key)),
            VariableRecord("bad", "garbage"),
        ]
        good, bad = decrypt_records(records, key)
        assert good.ok and good.value == "v"
        assert not bad.ok and isinstance(bad.error, MalformedPayloadError)


class TestResolveVariables:
    def test_decrypts_all_records(self, key):
        store = _store_with(key, base_url="https://api.test", token="abc")
        assert resolve_variables(store, "ws", key) == {
            "base_url": "https://api.test",
            "token": "abc",
        }

    def test_no_workspace_is_empty(self, key):
        assert resolve_variables(_store_with(key, a="1"), None, key) == {}
        assert resolve_variables(_store_with(key, a="1"), "", key) == {}

    def test_no_store_is_empty(self, key):
        assert resolve_variables(None, "ws", key) == {}

    def test_workspace_without_records_needs_no_key(self):
        # no secret configured, yet nothing to decrypt
        assert resolve_variables(MemorySecretStore(), "ws") == {}

    def test_corrupt_record_is_skipped(self, key, caplog):
        store = MemorySecretStore(
            {
                "ws": [
                    VariableRecord("broken", "not:an:envelope"),
                    VariableRecord("valid", encrypt_value("ok", key)),
                ],
            },
        )
        with caplog.at_level(logging.WARNING, logger="reqvault.variables"):
            table = resolve_variables(store, "ws", key)
        assert table == {"valid": "ok"}
        assert "broken" in caplog.text

    def test_wrong_key_record_is_skipped(self, key):
        other = derive_key("some-other-secret-value")
        store = MemorySecretStore(
            {
                "ws": [
                    VariableRecord("foreign", encrypt_value("x", other)),
                    VariableRecord("mine", encrypt_value("y", key)),
                ],
            },
        )
        assert resolve_variables(store, "ws", key) == {"mine": "y"}

    def test_plaintext_never_logged(self, key, caplog):
        store = _store_with(key, token="super-secret-token")
        store.save("ws", store.load("ws") + [VariableRecord("bad", "x:y:z")])
        with caplog.at_level(logging.DEBUG):
            resolve_variables(store, "ws", key)
        assert "super-secret-token" not in caplog.text

    def test_missing_secret_is_fatal(self, key):
        store = _store_with(key, a="1")
        with pytest.raises(ConfigurationError):
            resolve_variables(store, "ws")

    def test_not_cached_between_calls(self, key):
        store = _store_with(key, a="1")
        assert resolve_variables(store, "ws", key) == {"a": "1"}
        store.save("ws", [VariableRecord("a", encrypt_value("2", key))])
        assert resolve_variables(store, "ws", key) == {"a": "2"}


class TestReadVariables:
    def test_flags_decryption_failure(self, key):
        other = derive_key("some-other-secret-value")
        store = MemorySecretStore(
            {
                "ws": [
                    VariableRecord("ok", encrypt_value("v", key), False),
                    VariableRecord("tampered", encrypt_value("s", other), True),
                ],
            },
        )
        assert read_variables(store, "ws", key) == [
            {"key": "ok", "value": "v", "isSecret": False},
            {"key": "tampered", "value": "", "isSecret": True, "error": DECRYPTION_FAILED},
        ]

    def test_empty_workspace(self, key):
        assert read_variables(MemorySecretStore(), "ws", key) == []


class TestSanitizeVariables:
    def test_drops_invalid_entries(self):
        raw = [
            {"key": " base_url ", "value": "x"},
            {"key": "", "value": "blank key"},
            {"key": "   ", "value": "whitespace key"},
            {"key": "n", "value": 5},
            "not a dict",
            {"value": "no key"},
            {"key": "s", "value": "v", "isSecret": 1},
        ]
        assert sanitize_variables(raw) == [
            {"key": "base_url", "value": "x", "isSecret": False},
            {"key": "s", "value": "v", "isSecret": True},
        ]

    def test_non_list_is_empty(self):
        assert sanitize_variables({"key": "a"}) == []
        assert sanitize_variables(None) == []

    def test_duplicate_keys_rejected(self):
        with pytest.raises(ValueError, match="token"):
            sanitize_variables(
                [
                    {"key": "token", "value": "a"},
                    {"key": "token ", "value": "b"},
                ],
            )


class TestUpdateVariables:
    def test_encrypts_and_returns_plaintext(self, key):
        store = MemorySecretStore()
        result = update_variables(
            store,
            "ws",
            [{"key": "token", "value": "abc", "isSecret": True}],
            key,
        )
        assert result == [{"key": "token", "value": "abc", "isSecret": True}]

        stored = store.load("ws")
        assert stored[0].value != "abc"
        assert decrypt_value(stored[0].value, key) == "abc"

    def test_full_replacement(self, key):
        store = _store_with(key, a="1", b="2")
        update_variables(store, "ws", [{"key": "c", "value": "3"}], key)
        assert resolve_variables(store, "ws", key) == {"c": "3"}

    def test_duplicates_leave_store_untouched(self, key):
        store = _store_with(key, a="1")
        with pytest.raises(ValueError):
            update_variables(
                store,
                "ws",
                [{"key": "x", "value": "1"}, {"key": "x", "value": "2"}],
                key,
            )
        assert resolve_variables(store, "ws", key) == {"a": "1"}

    def test_tampered_value_raises_on_confirmation_read(self, key):
        # the confirmation read is strict, unlike resolution
        class CorruptingStore(MemorySecretStore):
            def save(self, workspace_id, records):
                return [VariableRecord(r.key, r.value[:-4] + "AAA=", r.is_secret) for r in records]

        with pytest.raises(AuthenticationError):
            update_variables(CorruptingStore(), "ws", [{"key": "a", "value": "1"}], key)
