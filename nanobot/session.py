"""
Conversation history persistence.

Each conversation (keyed ``channel:chat_id``) is one JSONL file:

    <data_dir>/sessions/{safe_key}.jsonl
        line 1   {"_type": "metadata", "key", "created_at", "updated_at", "metadata"}
        line 2+  {"role", "content", "timestamp", ...}

The agent loop only uses ``get_history(limit)``, ``add_message(role, content)``
and ``SessionManager.save(session)``.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from .llm import Message
from .logging import get_logger


# Characters unsafe for filenames on Windows
_UNSAFE_CHARS = re.compile(r'[/\\:*?"<>|]')


def _safe_filename(key: str) -> str:
    """Convert a session key to a safe filename (without extension)."""
    return _UNSAFE_CHARS.sub("_", key)


class Session:
    """In-memory history of one conversation."""

    def __init__(
        self,
        key: str,
        messages: Optional[list[dict]] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
        metadata: Optional[dict] = None,
    ):
        self.key = key
        self.messages: list[dict] = messages or []
        self.created_at = created_at or datetime.now()
        self.updated_at = updated_at or self.created_at
        self.metadata: dict = metadata or {}

    def add_message(self, role: str, content: str, **extra: Any) -> None:
        self.messages.append({
            "role": role,
            "content": content,
            "timestamp": datetime.now().isoformat(),
            **extra,
        })
        self.updated_at = datetime.now()

    def get_history(self, max_messages: int = 50) -> list[Message]:
        """Return the last *max_messages* entries as canonical messages (role + content).

        The window always opens on a user message: entries cut off from
        their user turn by the limit are dropped.
        """
        recent = self.messages[-max_messages:] if max_messages > 0 else []
        while recent and recent[0].get("role") != "user":
            recent = recent[1:]
        return [Message(role=m["role"], content=m.get("content") or "") for m in recent]

    def clear(self) -> None:
        self.messages = []
        self.updated_at = datetime.now()

    def __len__(self) -> int:
        return len(self.messages)

    def __repr__(self) -> str:
        return f"Session({self.key!r}, {len(self.messages)} messages)"


class SessionManager:
    """Loads, caches and saves sessions as JSONL files."""

    def __init__(self, base_dir: Optional[Path] = None, *, logger: logging.Logger | None = None):
        if base_dir is None:
            from .config import get_data_dir
            base_dir = get_data_dir() / "sessions"
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.logger = logger or get_logger("session")
        self._cache: dict[str, Session] = {}

    def _path(self, key: str) -> Path:
        return self.base_dir / f"{_safe_filename(key)}.jsonl"

    def get_or_create(self, key: str) -> Session:
        """Return the cached session, else load it from disk, else start a new one."""
        session = self._cache.get(key)
        if session is None:
            session = self._load(key) or Session(key)
            self._cache[key] = session
        return session

    def _load(self, key: str) -> Optional[Session]:
        path = self._path(key)
        if not path.exists():
            return None
        messages: list[dict] = []
        header: dict = {}
        try:
            with open(path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    data = json.loads(line)
                    if data.get("_type") == "metadata":
                        header = data
                    else:
                        messages.append(data)
        except (json.JSONDecodeError, OSError) as e:
            self.logger.warning(f"Failed to load session {key}: {e}")
            return None

        created = header.get("created_at")
        updated = header.get("updated_at")
        return Session(
            key,
            messages=messages,
            created_at=datetime.fromisoformat(created) if created else None,
            updated_at=datetime.fromisoformat(updated) if updated else None,
            metadata=header.get("metadata") or {},
        )

    def save(self, session: Session) -> Path:
        """Write *session* to disk. Raises OSError if the file cannot be written."""
        path = self._path(session.key)
        header = {
            "_type": "metadata",
            "key": session.key,
            "created_at": session.created_at.isoformat(),
            "updated_at": session.updated_at.isoformat(),
            "metadata": session.metadata,
        }
        lines = [json.dumps(header, ensure_ascii=False)]
        lines.extend(json.dumps(m, ensure_ascii=False, default=str) for m in session.messages)
        with open(path, "w", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")
        self._cache[session.key] = session
        self.logger.debug(f"Saved session {session.key} ({len(session.messages)} messages)")
        return path

    def delete(self, key: str) -> bool:
        """Delete a session.

        Returns:
            True if a file was deleted, False if not found.
        """
        self._cache.pop(key, None)
        path = self._path(key)
        if not path.exists():
            return False
        path.unlink()
        return True

    def list_sessions(self) -> list[dict]:
        """List all sessions, sorted by updated_at descending.

        Returns:
            List of dicts with key, created_at, updated_at and path.
        """
        sessions = []
        for path in self.base_dir.glob("*.jsonl"):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    first = f.readline().strip()
                header = json.loads(first) if first else {}
            except (json.JSONDecodeError, OSError):
                continue
            if header.get("_type") != "metadata":
                continue
            sessions.append({
                "key": header.get("key") or path.stem,
                "created_at": header.get("created_at"),
                "updated_at": header.get("updated_at"),
                "path": str(path),
            })

        sessions.sort(key=lambda s: s.get("updated_at") or "", reverse=True)
        return sessions
