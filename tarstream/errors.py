class TarError(Exception):
    """Base class for tarstream errors."""


# Malformed input
class FormatError(TarError):
    pass


class HeaderChecksumError(FormatError):
    pass


class HeaderFormatError(FormatError):
    pass


class TruncatedInputError(FormatError):
    pass


# Writer side
class InvalidEntryError(TarError, ValueError):
    pass
