from typing import Optional


class WriteRecordError(ValueError):
    """Base class for errors raised while encoding or decoding writes."""


class InvalidWriteError(WriteRecordError):
    """A write was constructed from fields that do not form a valid record."""


class InvalidIdentifierError(InvalidWriteError):
    """An identifier field would corrupt the composite key grammar."""


class MalformedKeyError(WriteRecordError):
    """A stored key could not be split back into its components."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key
