"""
StripScan Client — Offline Submission Queue
==============================================

What:  A durable FIFO of submissions that could not reach the server.
Why:   A photo taken without connectivity must still be uploaded, later and in
       the order it was taken, without the user having to retry by hand.
How:   The queue lives in memory and is written to storage after every
       mutation. replay_all() sends the head item, removes it only once the
       send succeeded, and stops at the first failure.

Invariants:
    - An item leaves the queue only after its replay succeeded
    - A failed replay leaves length and order untouched
    - Replays never overlap (asyncio.Lock)

Storage format (JsonFileQueueStorage):
    [{"photo_uri": "...", "file_name": "...", "content_type": "image/jpeg",
      "payload": "<base64 JPEG bytes>"}, ...]

    The payload is opaque to the queue; only the client's upload call knows it
    becomes a multipart body.
"""

import asyncio
import base64
import binascii
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)

SAVED_TITLE = "Saved"
SAVED_MESSAGE = "Submission saved. Will retry when backend is available."

Notifier = Callable[[str, str], None]
SubmitFn = Callable[["QueuedSubmission"], Awaitable[Any]]


@dataclass(frozen=True)
class QueuedSubmission:
    """A prepared upload: the source photo reference plus the exact bytes to send."""

    photo_uri: str
    payload: bytes
    file_name: str
    content_type: str = "image/jpeg"

    def to_record(self) -> Dict[str, str]:
        return {
            "photo_uri": self.photo_uri,
            "file_name": self.file_name,
            "content_type": self.content_type,
            "payload": base64.b64encode(self.payload).decode("ascii"),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "QueuedSubmission":
        return cls(
            photo_uri=record["photo_uri"],
            payload=base64.b64decode(record["payload"], validate=True),
            file_name=record["file_name"],
            content_type=record.get("content_type", "image/jpeg"),
        )


# ══════════════════════════════════════════════════════════════════════════
# Storage
# ══════════════════════════════════════════════════════════════════════════


class QueueStorage(ABC):
    """Durable backing store for the queue's items."""

    @abstractmethod
    async def load(self) -> List[QueuedSubmission]:
        ...

    @abstractmethod
    async def save(self, items: Sequence[QueuedSubmission]) -> None:
        ...


class JsonFileQueueStorage(QueueStorage):
    """
    Stores the queue as one JSON file.

    Writes go to a sibling temp file which then replaces the real one, so a
    crash mid-write leaves the previous queue intact. A file that cannot be
    parsed is renamed to `<name>.corrupt` and the queue starts empty; the
    unreadable data is kept for inspection instead of being overwritten.
    """

    def __init__(self, path):
        self.path = Path(path)

    async def load(self) -> List[QueuedSubmission]:
        if not self.path.exists():
            return []

        async with aiofiles.open(self.path, "rb") as f:
            data = await f.read()

        try:
            raw = data.decode("utf-8")
            records = json.loads(raw) if raw.strip() else []
            if not isinstance(records, list):
                raise ValueError("queue file does not hold a list")
            return [QueuedSubmission.from_record(r) for r in records]
        except (ValueError, KeyError, TypeError, binascii.Error) as e:
            quarantine = self.path.with_name(self.path.name + ".corrupt")
            logger.error(
                "Failed to load queue from %s (%s); moved to %s",
                self.path,
                str(e),
                quarantine,
            )
            await aiofiles.os.replace(self.path, quarantine)
            return []

    async def save(self, items: Sequence[QueuedSubmission]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        data = json.dumps([item.to_record() for item in items])

        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(data)
        await aiofiles.os.replace(tmp_path, self.path)


# ══════════════════════════════════════════════════════════════════════════
# Queue
# ══════════════════════════════════════════════════════════════════════════


class OfflineQueue:
    """
    FIFO of submissions awaiting replay.

    Args:
        storage: Where the items are persisted after each change
        notify:  Called with (title, message) once per enqueued item
    """

    def __init__(self, storage: QueueStorage, notify: Optional[Notifier] = None):
        self.storage = storage
        self.notify = notify
        self._items: List[QueuedSubmission] = []
        self._replay_lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._items)

    @property
    def items(self) -> Tuple[QueuedSubmission, ...]:
        return tuple(self._items)

    def peek(self) -> Optional[QueuedSubmission]:
        return self._items[0] if self._items else None

    async def load(self) -> int:
        """Replace the in-memory items with the stored ones; returns the count."""
        self._items = list(await self.storage.load())
        if self._items:
            logger.info("Loaded %d queued submissions", len(self._items))
        return len(self._items)

    async def enqueue(self, item: QueuedSubmission) -> None:
        self._items.append(item)
        await self.storage.save(self._items)
        logger.info("Queued %s for retry (%d waiting)", item.file_name, len(self._items))
        if self.notify is not None:
            self.notify(SAVED_TITLE, SAVED_MESSAGE)

    async def replay_all(self, submit: SubmitFn) -> int:
        """
        Send queued items head first until the queue is empty or a send fails.

        Returns the number of items delivered by this call. A failing send is
        logged and ends the replay; the failed item stays at the head.
        """
        async with self._replay_lock:
            if not self._items:
                return 0

            logger.info("Processing %d queued submissions", len(self._items))
            delivered = 0
            while self._items:
                head = self._items[0]
                try:
                    await submit(head)
                except Exception as e:
                    logger.warning(
                        "Retry of %s failed, will try later: %s",
                        head.file_name,
                        str(e),
                    )
                    break

                self._items.pop(0)
                await self.storage.save(self._items)
                delivered += 1
                logger.info("Queued submission %s uploaded successfully", head.file_name)

            return delivered
