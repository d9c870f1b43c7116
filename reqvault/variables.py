"""reqvault variables - per-workspace variable resolution and management.

Two read paths with different failure policies:

- resolve_variables (execution): a record that fails to decrypt is logged
  and left out of the table, the rest still resolve.
- read_variables (management): the same record is reported back with
  error="decryption_failed" and an empty value so an operator can see it.
"""

import logging
from dataclasses import dataclass
from typing import Any

from reqvault.crypto import decrypt_value, encrypt_value
from reqvault.errors import DecryptionError
from reqvault.store import SecretStore, VariableRecord

logger = logging.getLogger(__name__)

DECRYPTION_FAILED = "decryption_failed"


@dataclass
class DecryptOutcome:
    """Result of decrypting a single record: either value or error is set."""

    record: VariableRecord
    value: str | None = None
    error: DecryptionError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def decrypt_records(records: list[VariableRecord], key: bytes | None = None) -> list[DecryptOutcome]:
    """Decrypt every record, capturing per-record failures instead of raising."""
    outcomes = []
    for record in records:
        try:
            outcomes.append(DecryptOutcome(record, value=decrypt_value(record.value, key)))
        except DecryptionError as e:
            outcomes.append(DecryptOutcome(record, error=e))
    return outcomes


def resolve_variables(
    store: SecretStore | None,
    workspace_id: str | None,
    key: bytes | None = None,
) -> dict[str, str]:
    """Build the decrypted variable table for one execution.

    Returns an empty dict when there is no workspace or no records.
    The table is never cached; every call reloads and decrypts.
    """
    if not workspace_id or store is None:
        return {}

    records = store.load(workspace_id)
    if not records:
        return {}

    table: dict[str, str] = {}
    for outcome in decrypt_records(records, key):
        if not outcome.ok:
            logger.warning(
                "Failed to decrypt variable %r in workspace %s: %s",
                outcome.record.key,
                workspace_id,
                outcome.error,
            )
            continue
        table[outcome.record.key] = outcome.value
    return table


def read_variables(
    store: SecretStore,
    workspace_id: str,
    key: bytes | None = None,
) -> list[dict[str, Any]]:
    """Return the decrypted variable list for display, flagging broken entries."""
    variables = []
    for outcome in decrypt_records(store.load(workspace_id), key):
        entry: dict[str, Any] = {
            "key": outcome.record.key,
            "value": outcome.value if outcome.ok else "",
            "isSecret": outcome.record.is_secret,
        }
        if not outcome.ok:
            logger.error(
                "Failed to decrypt variable %r in workspace %s: %s",
                outcome.record.key,
                workspace_id,
                outcome.error,
            )
            entry["error"] = DECRYPTION_FAILED
        variables.append(entry)
    return variables


def sanitize_variables(raw: Any) -> list[dict[str, Any]]:
    """Normalize an incoming variable list.

    Entries that are not mappings, lack a string key/value or have a blank
    key are dropped. Keys are trimmed. Duplicate keys raise ValueError.
    """
    if not isinstance(raw, list):
        return []

    cleaned: list[dict[str, Any]] = []
    seen: set[str] = set()
    duplicates: list[str] = []

    for item in raw:
        if not isinstance(item, dict):
            continue
        key = item.get("key")
        value = item.get("value")
        if not isinstance(key, str) or not isinstance(value, str):
            continue
        key = key.strip()
        if not key:
            continue
        if key in seen:
            if key not in duplicates:
                duplicates.append(key)
            continue
        seen.add(key)
        cleaned.append(
            {
                "key": key,
                "value": value,
                "isSecret": bool(item.get("isSecret", item.get("is_secret", False))),
            },
        )

    if duplicates:
        raise ValueError(f"Duplicate variable keys: {', '.join(duplicates)}")
    return cleaned


def update_variables(
    store: SecretStore,
    workspace_id: str,
    raw: Any,
    key: bytes | None = None,
) -> list[dict[str, Any]]:
    """Replace a workspace's variables, encrypting every value.

    Returns the stored list decrypted again, as confirmation.
    """
    incoming = sanitize_variables(raw)
    records = [
        VariableRecord(
            key=item["key"],
            value=encrypt_value(item["value"], key),
            is_secret=item["isSecret"],
        )
        for item in incoming
    ]
    saved = store.save(workspace_id, records)
    logger.info("Updated %d variables for workspace %s", len(saved), workspace_id)
    return [
        {"key": r.key, "value": decrypt_value(r.value, key), "isSecret": r.is_secret}
        for r in saved
    ]
