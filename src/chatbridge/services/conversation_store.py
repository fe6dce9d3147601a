import asyncio
import contextlib
import json
import logging
import math
import os
import time
from pathlib import Path
from typing import Any, Callable, Dict, List

from ..models import ConversationEntry, Message
from ..settings import get_settings

logger = logging.getLogger(__name__)


def _entry_to_dict(entry: ConversationEntry) -> Dict[str, Any]:
    """Serialize an entry for the store file (lastAccess in epoch milliseconds)."""
    return {
        "messages": entry.messages,
        "lastAccess": int(entry.last_access * 1000),
    }


def _dict_to_entry(key: str, data: Dict[str, Any]) -> ConversationEntry:
    """Build a ConversationEntry from its stored form."""
    messages = data["messages"]
    if not isinstance(messages, list):
        raise TypeError("messages must be a list")
    last_access_ms = float(data["lastAccess"])
    if not math.isfinite(last_access_ms):
        raise ValueError(f"lastAccess is not finite: {last_access_ms}")
    return ConversationEntry(
        key=key,
        messages=messages,
        last_access=last_access_ms / 1000,
    )


class ConversationStore:
    """Per-conversation message history with sliding TTL and a JSON file mirror.

    Every mutation rewrites the whole file before returning. Reads refresh
    the TTL window. A background task (see ``start``) sweeps idle entries
    so memory stays bounded even for keys that are never read again.
    """

    def __init__(
        self,
        path: Path,
        max_messages: int = 20,
        ttl_seconds: float = 1800,
        cleanup_interval_seconds: float = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._path = Path(path)
        self._max_messages = max_messages
        self._ttl = ttl_seconds
        self._cleanup_interval = cleanup_interval_seconds
        self._clock = clock
        self._entries: Dict[str, ConversationEntry] = {}
        self._cleanup_task: asyncio.Task[None] | None = None

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def _is_expired(self, entry: ConversationEntry, now: float) -> bool:
        return now - entry.last_access > self._ttl

    def init(self) -> int:
        """Load persisted conversations, dropping any that already expired.

        A missing or unreadable file leaves the store empty. Returns the
        number of restored conversations.
        """
        self._entries = {}
        if not self._path.exists():
            logger.info("No conversation store at %s; starting empty", self._path)
            return 0
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error("Failed to load conversations from %s: %s", self._path, e)
            return 0
        if not isinstance(data, dict):
            logger.error("Conversation store %s is not a JSON object; ignoring", self._path)
            return 0

        now = self._clock()
        for key, raw in data.items():
            try:
                entry = _dict_to_entry(key, raw)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping invalid conversation %s: %s", key, e)
                continue
            if not self._is_expired(entry, now):
                self._entries[key] = entry
        logger.info("Restored %d conversation(s) from disk", len(self._entries))
        return len(self._entries)

    def _save(self) -> None:
        """Rewrite the store file from the in-memory map. Failures are logged only."""
        payload = {key: _entry_to_dict(e) for key, e in self._entries.items()}
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(payload, default=str), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to save conversations to %s: %s", self._path, e)

    def get_history(self, key: str) -> List[Message]:
        """Return the stored messages for key, or [] when absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return []
        now = self._clock()
        if self._is_expired(entry, now):
            del self._entries[key]
            self._save()
            logger.debug("Conversation %s expired on access", key)
            return []
        entry.last_access = now
        return list(entry.messages)

    def update_history(self, key: str, messages: List[Message]) -> None:
        """Store the most recent max_messages of messages and persist."""
        trimmed = list(messages)[-self._max_messages:] if self._max_messages > 0 else []
        self._entries[key] = ConversationEntry(
            key=key,
            messages=trimmed,
            last_access=self._clock(),
        )
        self._save()

    def clear_history(self, key: str) -> None:
        """Forget the conversation for key and persist."""
        self._entries.pop(key, None)
        self._save()

    def cleanup_expired(self) -> int:
        """Drop every expired entry; write the file once if anything changed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if self._is_expired(e, now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info("Cleaned up %d expired conversation(s)", len(expired))
            self._save()
        return len(expired)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval)
            self.cleanup_expired()

    def start(self) -> None:
        """Start the periodic cleanup task on the running event loop. Idempotent."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.debug("Conversation cleanup scheduled every %ss", self._cleanup_interval)

    async def stop(self) -> None:
        """Cancel the periodic cleanup task. Idempotent."""
        task = self._cleanup_task
        self._cleanup_task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def get_stats(self) -> Dict[str, Any]:
        return {
            "conversations": len(self._entries),
            "max_messages": self._max_messages,
            "ttl_seconds": self._ttl,
            "cleanup_interval_seconds": self._cleanup_interval,
            "path": str(self._path),
            "cleanup_running": self._cleanup_task is not None,
        }


def get_conversation_store() -> ConversationStore:
    """Build a ConversationStore from settings. Call ``init()`` before use."""
    settings = get_settings()
    return ConversationStore(
        path=settings.conversation_store_path,
        max_messages=settings.conversation_max_messages,
        ttl_seconds=settings.conversation_ttl_seconds,
        cleanup_interval_seconds=settings.conversation_cleanup_interval_seconds,
    )
