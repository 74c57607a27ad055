"""
Wasm Runner Output Capture - bounded in-memory stdio buffers

One buffer per stream per request. The guest writes into it through the
capability functions; the executor snapshots it once the execution is over.
"""

import threading

DEFAULT_CAPACITY = 1024 * 1024  # 1 MiB


class OutputBuffer:
    """Append-only byte buffer with a fixed capacity.

    Writes past the capacity are dropped and flip ``truncated``. The buffer
    never holds more than ``capacity`` bytes no matter how much the guest
    writes.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 0:
            raise ValueError(f"capacity must be >= 0, got {capacity}")
        self.capacity = capacity
        self.truncated = False
        self._data = bytearray()
        self._lock = threading.Lock()

    def write(self, data: bytes) -> int:
        """Append ``data`` and return how many bytes were kept."""
        with self._lock:
            room = self.capacity - len(self._data)
            if len(data) > room:
                self.truncated = True
                data = data[:max(room, 0)]
            self._data.extend(data)
            return len(data)

    @property
    def remaining(self) -> int:
        return max(self.capacity - len(self._data), 0)

    def snapshot(self) -> bytes:
        """Bytes accumulated so far. Does not block further writes."""
        with self._lock:
            return bytes(self._data)

    def text(self) -> str:
        # Guest output is untrusted; never let it break reporting.
        return self.snapshot().decode("utf-8", errors="replace")

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"OutputBuffer(size={len(self._data)}, capacity={self.capacity}, truncated={self.truncated})"
