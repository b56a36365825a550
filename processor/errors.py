"""Exceptions raised by the event booking data layer."""
from typing import List

from processor.models import FieldError


class DataLayerError(Exception):
    """Base class for data layer errors."""


class ConfigurationError(DataLayerError):
    """Required configuration is missing or malformed."""


class ValidationError(DataLayerError):
    """
    One or more record fields failed validation.

    The individual violations are kept on ``errors`` as FieldError pairs;
    the exception message joins their messages.
    """

    def __init__(self, errors: List[FieldError]):
        self.errors = list(errors)
        message = '; '.join(error.message for error in self.errors)
        super().__init__(f"Validation failed: {message}")

    @classmethod
    def single(cls, field: str, message: str) -> 'ValidationError':
        """Build a ValidationError for one field."""
        return cls([FieldError(field=field, message=message)])


class DuplicateKeyError(DataLayerError):
    """A unique index rejected the write."""

    def __init__(self, index_name: str, key: dict):
        self.index_name = index_name
        self.key = key
        super().__init__(
            f"E11000 duplicate key error index: {index_name} dup key: {key}"
        )


class NotFoundError(DataLayerError):
    """A record looked up by id does not exist."""
