"""Windowed moving averages with running sums and lazy eviction."""

import threading
from collections import deque


class MovingAverageWindow:
    """
    Time-bounded deque of (timestamp, value) pairs with a running sum.

    Entries are kept in timestamp order. Eviction happens on each update,
    relative to the newest timestamp the window has seen.
    """

    __slots__ = ("entries", "window_sec", "sum", "latest")

    def __init__(self, window_sec: float):
        self.entries: deque[tuple[float, float]] = deque()
        self.window_sec = window_sec
        self.sum = 0.0
        self.latest: float | None = None

    def add(self, value: float, timestamp: float):
        if self.latest is None or timestamp > self.latest:
            self.latest = timestamp
        if timestamp < self.latest - self.window_sec:
            return

        if not self.entries or timestamp >= self.entries[-1][0]:
            self.entries.append((timestamp, value))
        else:
            # Late sample inside the window: keep timestamp order.
            idx = len(self.entries)
            while idx > 0 and self.entries[idx - 1][0] > timestamp:
                idx -= 1
            self.entries.insert(idx, (timestamp, value))
        self.sum += value
        self._evict(self.latest)

    def _evict(self, now: float):
        cutoff = now - self.window_sec
        while self.entries and self.entries[0][0] < cutoff:
            _, value = self.entries.popleft()
            self.sum -= value
        if not self.entries:
            self.sum = 0.0

    @property
    def count(self) -> int:
        return len(self.entries)

    @property
    def average(self) -> float | None:
        """Mean of the retained values, or None when the window holds no data."""
        if not self.entries:
            return None
        return self.sum / len(self.entries)


class _KeyWindows:
    __slots__ = ("lock", "windows")

    def __init__(self, window_sizes: list[int]):
        self.lock = threading.Lock()
        self.windows = {size: MovingAverageWindow(size) for size in window_sizes}


class MovingAverageTracker:
    """Maintains one MovingAverageWindow per (metric key, window size)."""

    def __init__(self, window_sizes: list[int]):
        self.window_sizes = list(window_sizes)
        self._keys: dict[str, _KeyWindows] = {}
        self._registry_lock = threading.Lock()

    def update(self, key: str, value: float, timestamp: float):
        """Feed a value into every configured window of ``key``."""
        entry = self._keys.get(key)
        if entry is None:
            with self._registry_lock:
                entry = self._keys.setdefault(key, _KeyWindows(self.window_sizes))
        with entry.lock:
            for window in entry.windows.values():
                window.add(value, timestamp)

    def current_average(self, key: str, window_size: int) -> float | None:
        entry = self._keys.get(key)
        if entry is None or window_size not in entry.windows:
            return None
        with entry.lock:
            return entry.windows[window_size].average

    def window(self, key: str, window_size: int) -> MovingAverageWindow | None:
        entry = self._keys.get(key)
        if entry is None:
            return None
        return entry.windows.get(window_size)

    def snapshot(self) -> dict[str, dict[int, float | None]]:
        """Current in-window averages for every tracked key."""
        with self._registry_lock:
            items = list(self._keys.items())
        result: dict[str, dict[int, float | None]] = {}
        for key, entry in items:
            with entry.lock:
                result[key] = {
                    size: window.average for size, window in entry.windows.items()
                }
        return result

    @property
    def tracked_keys(self) -> list[str]:
        return list(self._keys.keys())
