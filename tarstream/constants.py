# Record geometry
BLOCK_SIZE = 512
END_OF_ARCHIVE_SIZE = 2 * BLOCK_SIZE

# Read/write granularity for entry payloads
CHUNK_SIZE = 64 * 1024  # 64 KiB


# Header field layout: (name, width). Widths sum to BLOCK_SIZE.
HEADER_FIELDS = (
    ("file_name", 100),
    ("file_mode", 8),
    ("uid", 8),
    ("gid", 8),
    ("file_size", 12),
    ("mtime", 12),
    ("checksum", 8),
    ("type", 1),
    ("link_name", 100),
    ("ustar", 8),
    ("owner", 32),
    ("group", 32),
    ("major_number", 8),
    ("minor_number", 8),
    ("file_name_prefix", 155),
    ("padding", 12),
)

CHECKSUM_OFFSET = 148
CHECKSUM_WIDTH = 8

NAME_MAX_BYTES = 100
PREFIX_MAX_BYTES = 155
LINK_NAME_MAX_BYTES = 100
OWNER_MAX_BYTES = 31  # 32-byte field, NUL terminated

# Largest value storable in the 12-byte size field (11 octal digits)
MAX_OCTAL_SIZE = 8 ** 11 - 1  # 8 GiB - 1


# Magic and version
USTAR_MAGIC = b"ustar\x00"        # POSIX
USTAR_VERSION = b"00"
GNU_MAGIC = b"ustar  \x00"        # GNU tar, magic+version combined


# Entry types
TYPE_FILE = "file"
TYPE_LINK = "link"
TYPE_SYMLINK = "symlink"
TYPE_CHAR_DEVICE = "character-device"
TYPE_BLOCK_DEVICE = "block-device"
TYPE_DIRECTORY = "directory"
TYPE_FIFO = "fifo"
TYPE_CONTIGUOUS = "contiguous-file"

TYPE_NAMES = {
    b"0": TYPE_FILE,
    b"\x00": TYPE_FILE,  # pre-POSIX regular file
    b"1": TYPE_LINK,
    b"2": TYPE_SYMLINK,
    b"3": TYPE_CHAR_DEVICE,
    b"4": TYPE_BLOCK_DEVICE,
    b"5": TYPE_DIRECTORY,
    b"6": TYPE_FIFO,
    b"7": TYPE_CONTIGUOUS,
}

TYPE_FLAGS = {
    TYPE_FILE: b"0",
    TYPE_LINK: b"1",
    TYPE_SYMLINK: b"2",
    TYPE_CHAR_DEVICE: b"3",
    TYPE_BLOCK_DEVICE: b"4",
    TYPE_DIRECTORY: b"5",
    TYPE_FIFO: b"6",
    TYPE_CONTIGUOUS: b"7",
}

LINK_TYPES = frozenset((TYPE_LINK, TYPE_SYMLINK))
DEVICE_TYPES = frozenset((TYPE_CHAR_DEVICE, TYPE_BLOCK_DEVICE))
DATA_TYPES = frozenset((TYPE_FILE, TYPE_CONTIGUOUS))


# Defaults applied by the writer when neither caller nor filesystem supply a mode
DEFAULT_FILE_MODE = 0o644
DEFAULT_DIR_MODE = 0o755
DEFAULT_SYMLINK_MODE = 0o777

TEXT_ENCODING = "utf-8"
TEXT_ERRORS = "surrogateescape"
