from __future__ import annotations

from typing import BinaryIO, Callable, Iterator, Optional

from .constants import CHUNK_SIZE


def read_upto(f: BinaryIO, n: int) -> bytes:
    """Read ``n`` bytes, retrying short reads; returns fewer only at end of input."""
    first = f.read(n)
    if len(first) == n or not first:
        return first
    buf = bytearray(first)
    while len(buf) < n:
        b = f.read(n - len(buf))
        if not b:
            break
        buf += b
    return bytes(buf)


def skip_upto(f: BinaryIO, n: int) -> int:
    """Discard up to ``n`` bytes by reading them; returns the number skipped."""
    skipped = 0
    while skipped < n:
        b = f.read(min(CHUNK_SIZE, n - skipped))
        if not b:
            break
        skipped += len(b)
    return skipped


def write_all(sink, data: bytes) -> int:
    view = memoryview(data)
    total = 0
    while total < len(view):
        n = sink.write(view[total:])
        if n is None:
            # Buffered sinks report nothing; they take the whole write
            n = len(view) - total
        if n <= 0:
            raise OSError("Output sink accepted no bytes")
        total += n
    return total


class ChunkReader:
    """File-like view over a generator of byte chunks. Single pass, not seekable."""

    def __init__(self, generate_chunks: Callable[[], Iterator[bytes]]):
        self._generate_chunks = generate_chunks
        self._chunks: Optional[Iterator[bytes]] = None
        self._buffer = b""
        self._pos = 0
        self._done = False

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def tell(self) -> int:
        return self._pos

    def _fill(self, n: int) -> None:
        if self._chunks is None:
            self._chunks = self._generate_chunks()
        while not self._done and (n < 0 or len(self._buffer) < n):
            try:
                self._buffer += next(self._chunks)
            except StopIteration:
                self._done = True

    def read(self, n: int = -1) -> bytes:
        if n is None:
            n = -1
        self._fill(n)
        contents = self._buffer if n < 0 else self._buffer[:n]
        self._buffer = self._buffer[len(contents):]
        self._pos += len(contents)
        return contents

    def readinto(self, b) -> int:
        data = self.read(len(b))
        n = len(data)
        memoryview(b).cast("B")[:n] = data
        return n
