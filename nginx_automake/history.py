"""Persistent history of finished builds."""

from __future__ import annotations

import json
import os
import re
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

MAX_ENTRIES = 200

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
_FRACTION_RE = re.compile(r"\.(\d+)")


def _format_time(value: datetime) -> str:
    text = value.isoformat()
    return text[:-6] + "Z" if text.endswith("+00:00") else text


def _parse_time(text: str) -> datetime:
    if text[-1:] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    return datetime.fromisoformat(text)


@dataclass
class HistoryEntry:
    """One finished build, successful or not."""

    id: str
    created_at: datetime = _ZERO_TIME
    version: str = ""
    modules: list[str] = field(default_factory=list)
    status: str = ""
    artifact: str = ""
    error: str = ""

    def to_dict(self) -> dict:
        """Return the JSON representation."""
        return {
            "id": self.id,
            "createdAt": _format_time(self.created_at),
            "version": self.version,
            "modules": list(self.modules),
            "status": self.status,
            "artifact": self.artifact,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HistoryEntry":
        """Build an entry from its JSON representation."""
        created = data.get("createdAt")
        return cls(
            id=data.get("id") or "",
            created_at=_parse_time(created) if created else _ZERO_TIME,
            version=data.get("version") or "",
            modules=list(data.get("modules") or []),
            status=data.get("status") or "",
            artifact=data.get("artifact") or "",
            error=data.get("error") or "",
        )


class HistoryStore:
    """Thread-safe list of entries, newest first, kept in a JSON file.

    An empty *path* keeps the history in memory only.
    """

    def __init__(self, path="") -> None:
        self._path = os.fspath(path) if path else ""
        self._lock = threading.Lock()
        self._entries: list[HistoryEntry] = []
        if not self._path:
            return
        try:
            with open(self._path, encoding="utf-8") as handle:
                text = handle.read()
        except FileNotFoundError:
            return
        items = json.loads(text) if text else None
        if items is not None and not isinstance(items, list):
            raise ValueError(f"history file {self._path} does not hold a list")
        self._entries = [HistoryEntry.from_dict(item) for item in items or []]

    def list(self) -> list[HistoryEntry]:
        """Return a copy of all entries, newest first."""
        with self._lock:
            return [replace(entry, modules=list(entry.modules)) for entry in self._entries]

    def append(self, entry: HistoryEntry) -> None:
        """Add *entry* at the front, keep at most MAX_ENTRIES and save."""
        with self._lock:
            self._entries.insert(0, entry)
            del self._entries[MAX_ENTRIES:]
            if not self._path:
                return
            directory = os.path.dirname(self._path)
            if directory:
                os.makedirs(directory, mode=0o755, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as handle:
                json.dump(
                    [item.to_dict() for item in self._entries],
                    handle,
                    indent=2,
                    ensure_ascii=False,
                )