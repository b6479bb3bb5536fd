"""
Exception taxonomy shared by the session and vector stores.

Every error derives from :class:`ChatkeepError` and also from the closest
built-in exception, so callers can catch either.
"""


class ChatkeepError(Exception):
    """Base class for all chatkeep errors."""


class NotFoundError(ChatkeepError, LookupError):
    """A named session or backup does not exist."""


class InvalidFormatError(ChatkeepError, ValueError):
    """A file was readable but its content has the wrong shape."""


class StorageIOError(ChatkeepError, OSError):
    """Reading, writing or creating a directory failed."""


class ValidationError(ChatkeepError, ValueError):
    """Bad argument: empty name, non-positive k, dimension mismatch..."""
