"""reqvault store - persistence of encrypted workspace variables.

One record set per workspace. Values are stored exactly as handed in
(ciphertext envelopes); the store never encrypts or decrypts.
"""

import datetime
import json
import logging
import os
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_WORKSPACE_ID_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")


@dataclass(frozen=True)
class VariableRecord:
    """A stored variable: key, ciphertext envelope and secret flag."""

    key: str
    value: str
    is_secret: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "value": self.value, "isSecret": self.is_secret}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VariableRecord":
        return cls(
            key=str(data["key"]),
            value=str(data["value"]),
            is_secret=bool(data.get("isSecret", data.get("is_secret", False))),
        )


def _check_workspace_id(workspace_id: str) -> str:
    if not isinstance(workspace_id, str) or not _WORKSPACE_ID_RE.match(workspace_id):
        raise ValueError(f"Invalid workspace id: {workspace_id!r}")
    return workspace_id


class SecretStore:
    """Interface: load/save the record list of a workspace."""

    def load(self, workspace_id: str) -> list[VariableRecord]:
        raise NotImplementedError

    def save(self, workspace_id: str, records: list[VariableRecord]) -> list[VariableRecord]:
        raise NotImplementedError


class MemorySecretStore(SecretStore):
    """In-process store, handy for tests and embedding."""

    def __init__(self, initial: dict[str, list[VariableRecord]] | None = None):
        self._data: dict[str, list[VariableRecord]] = {
            k: list(v) for k, v in (initial or {}).items()
        }
        self._lock = threading.Lock()

    def load(self, workspace_id: str) -> list[VariableRecord]:
        with self._lock:
            return list(self._data.get(workspace_id, []))

    def save(self, workspace_id: str, records: list[VariableRecord]) -> list[VariableRecord]:
        with self._lock:
            self._data[workspace_id] = list(records)
            return list(records)


class FileSecretStore(SecretStore):
    """JSON-file store: <base_dir>/<workspace_id>.json per workspace.

    File layout:
        {"workspaceId": ..., "variables": [{key, value, isSecret}], "updatedAt": ...}
    """

    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir)

    def _path(self, workspace_id: str) -> Path:
        return self.base_dir / f"{_check_workspace_id(workspace_id)}.json"

    def load(self, workspace_id: str) -> list[VariableRecord]:
        path = self._path(workspace_id)
        if not path.exists():
            return []
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        records = []
        for raw in data.get("variables") or []:
            try:
                records.append(VariableRecord.from_dict(raw))
            except (KeyError, TypeError):
                logger.warning("Skipping unreadable variable record in %s", path)
        return records

    def save(self, workspace_id: str, records: list[VariableRecord]) -> list[VariableRecord]:
        path = self._path(workspace_id)
        payload = {
            "workspaceId": workspace_id,
            "variables": [r.to_dict() for r in records],
            "updatedAt": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        }
        _atomic_write(path, payload)
        logger.debug("Saved %d variables for workspace %s", len(records), workspace_id)
        return list(records)


def _atomic_write(target_path: Path, data: Any) -> None:
    target_path.parent.mkdir(parents=True, exist_ok=True)
    tmp = target_path.with_suffix(".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        f.write(json.dumps(data, indent=2))
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, target_path)
