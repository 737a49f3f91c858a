"""Per-key sample buffers awaiting aggregation."""

import threading
from typing import Callable

from analytics.models import Sample


class _KeyBuffer:
    __slots__ = ("lock", "samples")

    def __init__(self):
        self.lock = threading.Lock()
        self.samples: list[Sample] = []


class SampleBuffer:
    """
    Append-only queue of samples per metric key.

    Each key has its own lock, so writers to different keys never contend.
    The registry lock is only taken the first time a key is seen.
    When a key's buffer reaches ``overflow_threshold`` the ``on_overflow``
    callback is invoked with that key; it is expected to schedule a drain,
    not to perform one inline.
    After ``close()`` every append is refused (``record`` returns -1); the
    closed flag is checked under the key lock, so a drain that follows
    ``close()`` sees every accepted sample.
    """

    def __init__(
        self,
        overflow_threshold: int = 1000,
        on_overflow: Callable[[str], None] | None = None,
    ):
        self._threshold = overflow_threshold
        self._on_overflow = on_overflow
        self._buffers: dict[str, _KeyBuffer] = {}
        self._registry_lock = threading.Lock()
        self._closed = False

    def _slot(self, key: str) -> _KeyBuffer:
        slot = self._buffers.get(key)
        if slot is None:
            with self._registry_lock:
                slot = self._buffers.setdefault(key, _KeyBuffer())
        return slot

    def record(self, key: str, sample: Sample) -> int:
        """Append a sample and return the buffer length after the append, or -1 once closed."""
        slot = self._slot(key)
        with slot.lock:
            if self._closed:
                return -1
            slot.samples.append(sample)
            size = len(slot.samples)
        if size >= self._threshold and self._on_overflow is not None:
            self._on_overflow(key)
        return size

    def drain(self, key: str) -> list[Sample]:
        """Swap the key's buffer for an empty one and hand back the drained samples."""
        slot = self._buffers.get(key)
        if slot is None:
            return []
        with slot.lock:
            drained, slot.samples = slot.samples, []
        return drained

    def pending(self, key: str) -> int:
        slot = self._buffers.get(key)
        if slot is None:
            return 0
        with slot.lock:
            return len(slot.samples)

    def keys(self) -> list[str]:
        with self._registry_lock:
            return list(self._buffers.keys())

    def non_empty_keys(self) -> list[str]:
        return [key for key in self.keys() if self.pending(key) > 0]

    def close(self):
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def overflow_threshold(self) -> int:
        return self._threshold
