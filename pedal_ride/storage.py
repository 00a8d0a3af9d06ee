"""Persistence for the current ride and the ride history.

The persisted shape is a JSON object::

    {"current_session": <session or null>, "session_history": [<session>, ...]}

with each session serialized by :meth:`RideSession.to_dict`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from pedal_ride.models import RideSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StoredState:
    current: RideSession | None = None
    history: tuple[RideSession, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_session": self.current.to_dict() if self.current is not None else None,
            "session_history": [s.to_dict() for s in self.history],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoredState:
        current = data.get("current_session")
        return cls(
            current=RideSession.from_dict(current) if current else None,
            history=tuple(RideSession.from_dict(s) for s in data.get("session_history") or ()),
        )


class SessionStore(Protocol):
    def load(self) -> StoredState: ...

    def save(self, state: StoredState) -> None: ...


class MemoryStore:
    """Keeps the serialized state in memory."""

    def __init__(self) -> None:
        self._blob: str | None = None

    def load(self) -> StoredState:
        if self._blob is None:
            return StoredState()
        return StoredState.from_dict(json.loads(self._blob))

    def save(self, state: StoredState) -> None:
        self._blob = json.dumps(state.to_dict())


class JsonFileStore:
    """A JSON snapshot on disk, replaced atomically on every save."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> StoredState:
        """Load state from disk (empty state if the file does not exist)."""

        if not self._path.exists():
            return StoredState()
        text = self._path.read_text(encoding="utf-8").strip()
        if not text:
            return StoredState()
        try:
            return StoredState.from_dict(json.loads(text))
        except (json.JSONDecodeError, KeyError, ValueError, TypeError, AttributeError) as exc:
            # State file corrupted: keep a backup and start fresh
            backup = self._path.with_suffix(self._path.suffix + ".broken")
            backup.write_text(text, encoding="utf-8")
            logger.warning("state file %s is unreadable (%s); moved to %s", self._path, exc, backup)
            return StoredState()

    def save(self, state: StoredState) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(state.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self._path)
