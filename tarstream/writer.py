from __future__ import annotations

import io
import os
import stat
import time
from dataclasses import dataclass, replace
from typing import BinaryIO, Iterator, List, Optional

from .constants import (
    BLOCK_SIZE,
    CHUNK_SIZE,
    DATA_TYPES,
    DEFAULT_DIR_MODE,
    DEFAULT_FILE_MODE,
    DEFAULT_SYMLINK_MODE,
    END_OF_ARCHIVE_SIZE,
    LINK_TYPES,
    MAX_OCTAL_SIZE,
    TYPE_DIRECTORY,
    TYPE_FILE,
    TYPE_SYMLINK,
)
from .errors import InvalidEntryError, TruncatedInputError
from .header import TarMeta, data_size, encode_header
from .streamio import ChunkReader, write_all


@dataclass
class FileStat:
    size: int
    mtime: int
    mode: int
    uid: int
    gid: int
    is_dir: bool = False


class LocalFileSystem:
    """Filesystem collaborator backed by ``os``; follows symlinks."""

    def stat(self, path: str) -> FileStat:
        st = os.stat(path)
        is_dir = stat.S_ISDIR(st.st_mode)
        return FileStat(
            size=0 if is_dir else st.st_size,
            mtime=int(st.st_mtime),
            mode=st.st_mode & 0o7777,
            uid=st.st_uid,
            gid=st.st_gid,
            is_dir=is_dir,
        )

    def open(self, path: str) -> BinaryIO:
        return open(path, "rb")


@dataclass
class PendingEntry:
    meta: TarMeta
    reader: Optional[BinaryIO] = None
    file_path: Optional[str] = None
    infer_type: bool = False


def _default_mode(type_name: str) -> int:
    if type_name == TYPE_DIRECTORY:
        return DEFAULT_DIR_MODE
    if type_name == TYPE_SYMLINK:
        return DEFAULT_SYMLINK_MODE
    return DEFAULT_FILE_MODE


def _copy_exact(src, size: int, name: str) -> Iterator[bytes]:
    remaining = size
    while remaining:
        b = src.read(min(CHUNK_SIZE, remaining))
        if not b:
            raise TruncatedInputError(f"Data source for {name!r} ended {remaining} bytes short of {size}")
        if len(b) > remaining:
            b = b[:remaining]
        remaining -= len(b)
        yield bytes(b)


class ArchiveWriter:
    """Queue tar entries, then stream the archive out in a single pass.

    Nothing is read or written by :meth:`append`; entry data is pulled from its
    source only while the output produced by :meth:`chunks`, :meth:`reader`
    or :meth:`write_to` is being consumed.
    """

    def __init__(self, fs=None):
        self.fs = fs if fs is not None else LocalFileSystem()
        self.entries: List[PendingEntry] = []
        self._consumed = False

    def __len__(self) -> int:
        return len(self.entries)

    def append(
        self,
        name: str,
        *,
        reader=None,
        content_size: Optional[int] = None,
        file_path: Optional[str] = None,
        file_mode: Optional[int] = None,
        mtime: Optional[int] = None,
        uid: Optional[int] = None,
        gid: Optional[int] = None,
        owner: Optional[str] = None,
        group: Optional[str] = None,
        type: Optional[str] = None,
        link_name: Optional[str] = None,
    ) -> None:
        """Queue an entry named ``name``.

        Args:
            name: Path inside the archive. Names over 100 bytes are split into
                the ustar prefix field.
            reader: Byte source (``read(n) -> bytes``) or a bytes-like object.
                Borrowed; never closed.
            content_size: Number of bytes to take from ``reader``. Inferred for
                bytes-like input.
            file_path: Filesystem path whose size, mode, mtime, uid and gid are
                read when the archive is produced. A directory yields a
                ``directory`` entry.
            type: Entry type name (``"file"``, ``"directory"``, ``"symlink"``...).
            link_name: Target for ``symlink`` and ``link`` entries.

        Raises:
            InvalidEntryError: the entry cannot be encoded; nothing is queued.
        """
        if self._consumed:
            raise RuntimeError("Archive output already produced; cannot append")
        if not name:
            raise InvalidEntryError("Entry name must not be empty")
        if reader is not None and file_path is not None:
            raise InvalidEntryError(f"Give either reader or file_path for {name!r}, not both")
        if isinstance(reader, (bytes, bytearray, memoryview)):
            data = bytes(reader)
            if content_size is None:
                content_size = len(data)
            elif content_size > len(data):
                raise InvalidEntryError(
                    f"content_size {content_size} exceeds the {len(data)} bytes given for {name!r}"
                )
            reader = io.BytesIO(data)

        type_name = type or TYPE_FILE
        if reader is not None:
            if content_size is None:
                raise InvalidEntryError(f"content_size is required with a reader for {name!r}")
            if type_name not in DATA_TYPES:
                raise InvalidEntryError(f"{type_name} entry {name!r} cannot carry data")
        elif file_path is not None:
            if content_size is not None:
                raise InvalidEntryError(f"content_size is taken from the file for {name!r}")
        else:
            if type_name in DATA_TYPES and content_size is None:
                raise InvalidEntryError(f"No data source or content_size for {name!r}")
            if content_size:
                raise InvalidEntryError(f"content_size given without a reader for {name!r}")
            content_size = 0
        if content_size is not None:
            if content_size < 0:
                raise InvalidEntryError(f"content_size must be non-negative for {name!r}, got {content_size}")
            if content_size > MAX_OCTAL_SIZE:
                raise InvalidEntryError(f"{name!r} is larger than {MAX_OCTAL_SIZE} bytes")
        if type_name in LINK_TYPES and not link_name:
            raise InvalidEntryError(f"{type_name} entry {name!r} needs a link_name")

        meta = TarMeta(
            file_name=name,
            type=type_name,
            file_size=content_size,
            file_mode=file_mode,
            mtime=mtime,
            uid=uid,
            gid=gid,
            owner=owner,
            group=group,
            link_name=link_name,
        )
        if file_path is None:
            if meta.file_mode is None:
                meta.file_mode = _default_mode(type_name)
            if meta.mtime is None:
                meta.mtime = int(time.time())
            if meta.uid is None:
                meta.uid = 0
            if meta.gid is None:
                meta.gid = 0
        # Encode once up front so bad names/fields fail here, not mid-stream
        encode_header(replace(meta, file_size=meta.file_size or 0))
        self.entries.append(
            PendingEntry(meta=meta, reader=reader, file_path=file_path, infer_type=file_path is not None and type is None)
        )

    def chunks(self) -> Iterator[bytes]:
        """Return the archive as an iterator of byte chunks. Callable once."""
        if self._consumed:
            raise RuntimeError("Archive output already produced")
        self._consumed = True
        return self._generate()

    def reader(self) -> ChunkReader:
        """Return the archive as a file-like object with ``read(n)``."""
        gen = self.chunks()
        return ChunkReader(lambda: gen)

    def write_to(self, sink) -> int:
        """Write the whole archive to ``sink``; returns bytes written. ``sink`` stays open."""
        total = 0
        for chunk in self.chunks():
            total += write_all(sink, chunk)
        return total

    # internals
    def _generate(self) -> Iterator[bytes]:
        for entry in self.entries:
            yield from self._emit_entry(entry)
        yield bytes(END_OF_ARCHIVE_SIZE)

    def _emit_entry(self, entry: PendingEntry) -> Iterator[bytes]:
        if entry.file_path is None:
            meta = entry.meta
            size = data_size(meta)
            yield encode_header(meta)
            if size:
                yield from _copy_exact(entry.reader, size, meta.file_name)
        else:
            meta = self._resolve_file_meta(entry)
            size = data_size(meta)
            if size:
                with self.fs.open(entry.file_path) as src:
                    yield encode_header(meta)
                    yield from _copy_exact(src, size, meta.file_name)
            else:
                yield encode_header(meta)
        pad = (BLOCK_SIZE - size % BLOCK_SIZE) % BLOCK_SIZE
        if pad:
            yield bytes(pad)

    def _resolve_file_meta(self, entry: PendingEntry) -> TarMeta:
        st = self.fs.stat(entry.file_path)
        meta = replace(entry.meta)
        if entry.infer_type:
            meta.type = TYPE_DIRECTORY if st.is_dir else TYPE_FILE
        meta.file_size = st.size if meta.type in DATA_TYPES and not st.is_dir else 0
        if meta.file_mode is None:
            meta.file_mode = st.mode
        if meta.mtime is None:
            meta.mtime = st.mtime
        if meta.uid is None:
            meta.uid = st.uid
        if meta.gid is None:
            meta.gid = st.gid
        return meta
