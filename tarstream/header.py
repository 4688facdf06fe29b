"""
Tar header codec.

A header is one 512-byte record of fixed-width ASCII fields (see
``constants.HEADER_FIELDS``). Numbers are zero-padded octal followed by NUL;
text is NUL-padded. The checksum is the unsigned byte sum of the record with
the checksum field counted as eight spaces, stored as six octal digits, NUL,
space.

Encoding always produces POSIX ustar headers. Decoding also accepts GNU
(``ustar  \\0``) and pre-POSIX V7 headers, which carry no magic at all.
"""

from __future__ import annotations

import struct
from dataclasses import asdict, dataclass
from typing import Dict, Optional, Tuple

from .constants import (
    BLOCK_SIZE,
    CHECKSUM_OFFSET,
    CHECKSUM_WIDTH,
    DATA_TYPES,
    DEVICE_TYPES,
    HEADER_FIELDS,
    LINK_NAME_MAX_BYTES,
    LINK_TYPES,
    NAME_MAX_BYTES,
    OWNER_MAX_BYTES,
    PREFIX_MAX_BYTES,
    TEXT_ENCODING,
    TEXT_ERRORS,
    TYPE_DIRECTORY,
    TYPE_FILE,
    TYPE_FLAGS,
    TYPE_NAMES,
    USTAR_MAGIC,
    USTAR_VERSION,
)
from .errors import HeaderChecksumError, HeaderFormatError, InvalidEntryError, TruncatedInputError
from .pathutil import split_name


_HEADER_STRUCT = struct.Struct("".join(f"{width}s" for _, width in HEADER_FIELDS))
_FIELD_WIDTHS = dict(HEADER_FIELDS)
_ZERO_BLOCK = bytes(BLOCK_SIZE)
_OCTAL_DIGITS = b"01234567"


@dataclass
class TarMeta:
    file_name: str
    type: str = TYPE_FILE
    file_size: Optional[int] = None
    file_mode: Optional[int] = None
    mtime: Optional[int] = None
    uid: Optional[int] = None
    gid: Optional[int] = None
    owner: Optional[str] = None
    group: Optional[str] = None
    link_name: Optional[str] = None
    device_major: Optional[int] = None
    device_minor: Optional[int] = None

    def as_dict(self) -> Dict[str, object]:
        """Only the fields that are set; unset optional fields are left out."""
        return {k: v for k, v in asdict(self).items() if v is not None}


def data_size(meta: TarMeta) -> int:
    """Number of payload bytes that follow the header of ``meta``.

    Links, directories, devices and fifos carry no payload even if their size
    field is non-zero. Regular files and unrecognized types (extension headers)
    do.
    """
    if meta.type in DATA_TYPES or meta.type not in TYPE_FLAGS:
        return meta.file_size or 0
    return 0


def checksum(block: bytes) -> int:
    end = CHECKSUM_OFFSET + CHECKSUM_WIDTH
    return sum(block[:CHECKSUM_OFFSET]) + CHECKSUM_WIDTH * 0x20 + sum(block[end:])


def format_octal(value: int, width: int, field: str = "field") -> bytes:
    value = int(value)
    if value < 0:
        raise InvalidEntryError(f"{field} must be non-negative, got {value}")
    digits = format(value, "o")
    if len(digits) > width - 1:
        raise InvalidEntryError(f"{field} value {value} does not fit in {width - 1} octal digits")
    return digits.zfill(width - 1).encode("ascii") + b"\x00"


def parse_octal(raw: bytes, field: str = "field") -> Optional[int]:
    s = raw.split(b"\x00", 1)[0].strip(b" ")
    if not s:
        return None
    if s.translate(None, _OCTAL_DIGITS):
        raise HeaderFormatError(f"Invalid octal number in {field}: {raw!r}")
    return int(s, 8)


def _encode_text(value: Optional[str], field: str, max_bytes: int) -> bytes:
    if not value:
        return b""
    data = value.encode(TEXT_ENCODING, TEXT_ERRORS)
    if len(data) > max_bytes:
        raise InvalidEntryError(f"{field} too long ({len(data)} > {max_bytes} bytes): {value!r}")
    return data


def _decode_text(raw: bytes) -> Optional[str]:
    s = raw.split(b"\x00", 1)[0]
    if not s:
        return None
    return s.decode(TEXT_ENCODING, TEXT_ERRORS)


def _encode_number(value: Optional[int], field: str) -> bytes:
    if value is None:
        return b""
    return format_octal(value, _FIELD_WIDTHS[field], field)


def _type_flag(type_name: str) -> bytes:
    flag = TYPE_FLAGS.get(type_name)
    if flag is not None:
        return flag
    # Raw single-character flags pass through (e.g. vendor extensions)
    if isinstance(type_name, str) and len(type_name) == 1 and type_name.isascii():
        return type_name.encode("ascii")
    raise InvalidEntryError(f"Unknown entry type: {type_name!r}")


def parse_fields(block: bytes) -> Dict[str, bytes]:
    """Split a 512-byte header into its raw named fields."""
    if len(block) != BLOCK_SIZE:
        raise TruncatedInputError(f"Header block must be {BLOCK_SIZE} bytes, got {len(block)}")
    return dict(zip((name for name, _ in HEADER_FIELDS), _HEADER_STRUCT.unpack(block)))


def encode_header(meta: TarMeta) -> bytes:
    """Encode ``meta`` as a 512-byte ustar header block."""
    if not meta.file_name:
        raise InvalidEntryError("Entry name must not be empty")
    name, prefix = split_name(meta.file_name)
    fields = {
        "file_name": _encode_text(name, "file_name", NAME_MAX_BYTES),
        "file_mode": _encode_number(meta.file_mode, "file_mode"),
        "uid": _encode_number(meta.uid, "uid"),
        "gid": _encode_number(meta.gid, "gid"),
        "file_size": _encode_number(meta.file_size or 0, "file_size"),
        "mtime": _encode_number(meta.mtime, "mtime"),
        "checksum": b" " * CHECKSUM_WIDTH,
        "type": _type_flag(meta.type),
        "link_name": _encode_text(meta.link_name, "link_name", LINK_NAME_MAX_BYTES),
        "ustar": USTAR_MAGIC + USTAR_VERSION,
        "owner": _encode_text(meta.owner, "owner", OWNER_MAX_BYTES),
        "group": _encode_text(meta.group, "group", OWNER_MAX_BYTES),
        "major_number": _encode_number(meta.device_major, "major_number"),
        "minor_number": _encode_number(meta.device_minor, "minor_number"),
        "file_name_prefix": _encode_text(prefix, "file_name_prefix", PREFIX_MAX_BYTES),
        "padding": b"",
    }
    block = _HEADER_STRUCT.pack(*(fields[name] for name, _ in HEADER_FIELDS))
    chk = b"%06o\x00 " % checksum(block)
    return block[:CHECKSUM_OFFSET] + chk + block[CHECKSUM_OFFSET + CHECKSUM_WIDTH:]


def decode_header(block: bytes) -> Optional[Tuple[TarMeta, Dict[str, bytes]]]:
    """Decode a header block.

    Returns ``None`` for an all-zero block (end-of-archive marker), otherwise
    ``(meta, fields)`` where ``fields`` holds the raw header bytes by name.

    Raises:
        TruncatedInputError: block is not exactly 512 bytes.
        HeaderChecksumError: stored checksum missing or wrong.
        HeaderFormatError: a numeric field is not octal, or the name is empty.
    """
    fields = parse_fields(block)
    if block == _ZERO_BLOCK:
        return None
    stored = fields["checksum"].split(b"\x00", 1)[0].strip(b" ")
    if not stored or stored.translate(None, _OCTAL_DIGITS) or int(stored, 8) != checksum(block):
        raise HeaderChecksumError(
            f"Header checksum mismatch: stored {fields['checksum']!r}, computed {checksum(block):06o}"
        )

    name = _decode_text(fields["file_name"]) or ""
    if fields["ustar"][: len(USTAR_MAGIC)] == USTAR_MAGIC:
        prefix = _decode_text(fields["file_name_prefix"])
        if prefix:
            name = prefix + "/" + name
    if not name:
        raise HeaderFormatError("Header has an empty file name")

    flag = fields["type"]
    type_name = TYPE_NAMES.get(flag) or flag.decode("latin-1")
    if flag == b"\x00" and name.endswith("/"):
        type_name = TYPE_DIRECTORY

    meta = TarMeta(
        file_name=name,
        type=type_name,
        file_size=parse_octal(fields["file_size"], "file_size") or 0,
        file_mode=parse_octal(fields["file_mode"], "file_mode"),
        mtime=parse_octal(fields["mtime"], "mtime"),
        uid=parse_octal(fields["uid"], "uid"),
        gid=parse_octal(fields["gid"], "gid"),
        owner=_decode_text(fields["owner"]),
        group=_decode_text(fields["group"]),
    )
    if type_name in LINK_TYPES:
        meta.link_name = _decode_text(fields["link_name"]) or ""
    if type_name in DEVICE_TYPES:
        meta.device_major = parse_octal(fields["major_number"], "major_number")
        meta.device_minor = parse_octal(fields["minor_number"], "minor_number")
    return meta, fields
