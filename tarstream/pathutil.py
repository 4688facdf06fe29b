from __future__ import annotations

from typing import Tuple

from .constants import NAME_MAX_BYTES, PREFIX_MAX_BYTES, TEXT_ENCODING, TEXT_ERRORS
from .errors import InvalidEntryError


def _nbytes(s: str) -> int:
    return len(s.encode(TEXT_ENCODING, TEXT_ERRORS))


def split_name(name: str) -> Tuple[str, str]:
    """Split an archive name into ustar ``(name, prefix)`` fields.

    Names that fit the 100-byte name field are returned unchanged with an empty
    prefix. Longer names are split at the ``/`` that gives the longest prefix
    still within 155 bytes, leaving a name of at most 100 bytes.
    """
    if _nbytes(name) <= NAME_MAX_BYTES:
        return name, ""
    i = len(name)
    while True:
        i = name.rfind("/", 0, i)
        if i < 0:
            break
        prefix, rest = name[:i], name[i + 1:]
        # A trailing '/' (directory) must stay with the name part
        if rest and _nbytes(prefix) <= PREFIX_MAX_BYTES:
            if _nbytes(rest) <= NAME_MAX_BYTES:
                return rest, prefix
            break
    raise InvalidEntryError(
        f"Name too long for ustar ({_nbytes(name)} bytes); "
        f"needs a '/' split into <= {PREFIX_MAX_BYTES} byte prefix and <= {NAME_MAX_BYTES} byte name: {name!r}"
    )


def norm_path(p: str) -> str:
    """Normalize archive member names to a relative forward-slash form.

    Rules:
    - Convert backslashes to slashes
    - Strip leading/trailing slashes
    - Remove empty and '.' segments
    - Reject '..' segments
    """
    p = p.replace("\\", "/").strip("/")
    parts = [q for q in p.split("/") if q not in ("", ".")]
    for q in parts:
        if q == "..":
            raise ValueError("Path may not contain '..'")
    return "/".join(parts)
