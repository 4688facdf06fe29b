from __future__ import annotations

from typing import BinaryIO, Dict, Iterator, Optional

from .constants import BLOCK_SIZE, CHUNK_SIZE
from .errors import TruncatedInputError
from .header import TarMeta, data_size, decode_header
from .streamio import read_upto, skip_upto


class TarEntry:
    """One archive member: decoded metadata plus a bounded reader over its data.

    The entry borrows the archive's underlying stream. Reads stop at the
    declared size and never reach into the next header. Once the archive moves
    on to the next entry this one is closed and reads return ``b""``.
    """

    def __init__(self, meta: TarMeta, header: Dict[str, bytes], reader: BinaryIO):
        self.meta = meta
        self.header = header
        self._reader = reader
        self._remaining = data_size(meta)
        size = self._remaining
        self._padding = (BLOCK_SIZE - size % BLOCK_SIZE) % BLOCK_SIZE
        self._closed = False

    def __getattr__(self, name: str):
        # Metadata fields (file_name, file_size, mtime, ...) read through to meta
        if name == "meta":
            raise AttributeError(name)
        return getattr(self.meta, name)

    def __repr__(self) -> str:
        return f"TarEntry({self.meta.file_name!r}, type={self.meta.type!r}, size={self.meta.file_size})"

    # mapping protocol: dict(entry) gives the metadata and nothing else
    def keys(self):
        return self.meta.as_dict().keys()

    def __getitem__(self, key: str):
        return self.meta.as_dict()[key]

    def __iter__(self):
        return iter(self.meta.as_dict())

    def __contains__(self, key) -> bool:
        return key in self.meta.as_dict()

    def as_dict(self) -> Dict[str, object]:
        return self.meta.as_dict()

    @property
    def consumed(self) -> bool:
        return self._remaining == 0

    @property
    def closed(self) -> bool:
        return self._closed

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes (all remaining if negative); ``b""`` when drained."""
        if self._remaining == 0:
            return b""
        if size is None or size < 0:
            chunks = []
            while self._remaining:
                chunks.append(self._read_some(min(CHUNK_SIZE, self._remaining)))
            return b"".join(chunks)
        if size == 0:
            return b""
        return self._read_some(min(size, self._remaining))

    def readinto(self, b) -> int:
        """Fill ``b`` with up to ``len(b)`` bytes; returns 0 when drained."""
        view = memoryview(b).cast("B")
        if self._remaining == 0 or not len(view):
            return 0
        data = self._read_some(min(len(view), self._remaining))
        view[: len(data)] = data
        return len(data)

    def discard(self) -> None:
        """Skip whatever is left of the data and the block padding after it."""
        if self._remaining:
            skipped = skip_upto(self._reader, self._remaining)
            if skipped != self._remaining:
                self._remaining -= skipped
                raise TruncatedInputError(
                    f"Archive ended inside {self.meta.file_name!r}: {self._remaining} bytes missing"
                )
            self._remaining = 0
        if self._padding:
            # The final record of a trailer-less archive may be short
            skip_upto(self._reader, self._padding)
            self._padding = 0

    def close(self) -> None:
        self._remaining = 0
        self._padding = 0
        self._closed = True

    def _read_some(self, n: int) -> bytes:
        data = self._reader.read(n)
        if not data:
            raise TruncatedInputError(
                f"Archive ended inside {self.meta.file_name!r}: {self._remaining} bytes missing"
            )
        if len(data) > n:
            raise ValueError(f"Underlying reader returned {len(data)} bytes for a {n}-byte read")
        self._remaining -= len(data)
        return data


class ArchiveReader:
    """Pull tar entries one at a time from a byte stream.

    ``fp`` only needs ``read(n) -> bytes``; short reads are fine. The stream is
    borrowed and never closed. Entries must be used in order: asking for the
    next entry skips whatever the caller left unread in the current one.
    """

    def __init__(self, fp: BinaryIO):
        self.fp = fp
        self._current: Optional[TarEntry] = None
        self._done = False

    def __iter__(self) -> Iterator[TarEntry]:
        return self

    def __next__(self) -> TarEntry:
        entry = self.next_entry()
        if entry is None:
            raise StopIteration
        return entry

    def next_entry(self) -> Optional[TarEntry]:
        """Return the next entry, or ``None`` at the end of the archive."""
        if self._done:
            return None
        try:
            self._finish_current()
            block = read_upto(self.fp, BLOCK_SIZE)
            # No more records, or zero padding: end of archive with or without trailer
            if not block.strip(b"\x00"):
                self._done = True
                return None
            if len(block) != BLOCK_SIZE:
                raise TruncatedInputError(f"Archive ended inside a header: got {len(block)} of {BLOCK_SIZE} bytes")
            meta, fields = decode_header(block)
        except Exception:
            self._done = True
            raise
        self._current = TarEntry(meta, fields, self.fp)
        return self._current

    def _finish_current(self) -> None:
        entry = self._current
        if entry is None:
            return
        self._current = None
        try:
            entry.discard()
        finally:
            entry.close()
