"""
tarstream: streaming tar archive reader and writer.

- HeaderCodec (tarstream.header): 512-byte ustar header encode/decode with
  checksum validation; reads POSIX ustar, GNU and V7 headers
- ArchiveWriter (tarstream.writer): queue entries from memory or the filesystem
  and stream the archive out lazily, one pass
- ArchiveReader (tarstream.reader): pull entries in order from any byte stream;
  each entry is a bounded reader that never overruns into the next header
- Command line: create, list, extract and verify (tarstream.cli)

Sizes are limited to the 11-digit octal field (8 GiB - 1). Compression, PAX
records, sparse files and multi-volume archives are not handled.
"""

from .errors import (
    FormatError,
    HeaderChecksumError,
    HeaderFormatError,
    InvalidEntryError,
    TarError,
    TruncatedInputError,
)
from .header import TarMeta, decode_header, encode_header
from .reader import ArchiveReader, TarEntry
from .writer import ArchiveWriter, FileStat, LocalFileSystem

__version__ = "0.1"

__all__ = [
    "ArchiveReader",
    "ArchiveWriter",
    "FileStat",
    "FormatError",
    "HeaderChecksumError",
    "HeaderFormatError",
    "InvalidEntryError",
    "LocalFileSystem",
    "TarEntry",
    "TarError",
    "TarMeta",
    "TruncatedInputError",
    "decode_header",
    "encode_header",
]
