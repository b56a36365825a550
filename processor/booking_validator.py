"""Validation and normalization of booking records."""
import logging
import re
import uuid
from typing import Callable, List, Optional

from processor.errors import ValidationError
from processor.models import Booking, Event, FieldError

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?)*$"
)


def normalize_email(email: str) -> str:
    """Return the canonical (trimmed, lowercase) form of an email address."""
    return email.strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email))


def canonical_record_id(value: str) -> Optional[str]:
    """
    Return the store's form of a record identifier (lowercase, hyphenated
    UUID), or None if the value is not a UUID in any accepted spelling.
    """
    try:
        return str(uuid.UUID(str(value)))
    except ValueError:
        return None


class BookingValidator:
    """
    Normalize-then-validate pipeline for Booking records.

    The referenced event is looked up through ``find_event`` only when the
    booking is new or its event_id was reassigned. Bookings whose event was
    deleted later can still be edited.
    """

    def __init__(self, find_event: Callable[[str], Optional[Event]]):
        """
        Initialize the validator.

        Args:
            find_event: Callable returning the Event for an id, or None
        """
        self.find_event = find_event

    def prepare(self, booking: Booking) -> Booking:
        """
        Normalize a booking in place and validate it before it is persisted.

        Raises:
            ValidationError: If any field is invalid or the event is missing
        """
        errors = self.validate(booking)
        if errors:
            logger.warning(
                f"Booking for event {booking.event_id} failed validation: "
                f"{[error.message for error in errors]}"
            )
            raise ValidationError(errors)
        return booking

    def validate(self, booking: Booking) -> List[FieldError]:
        """
        Run the pipeline and collect every violation.

        Args:
            booking: Booking to normalize and validate

        Returns:
            List of FieldError, empty when the booking is valid
        """
        modified = booking.modified_fields()
        errors = []

        if isinstance(booking.email, str):
            booking.email = normalize_email(booking.email)

        if not booking.event_id:
            errors.append(FieldError('event_id', 'Event ID is required'))
        else:
            event_id = canonical_record_id(booking.event_id)
            if event_id is None:
                errors.append(FieldError('event_id', 'Invalid Event ID format'))
            else:
                booking.event_id = event_id

        if not booking.email:
            errors.append(FieldError('email', 'Email is required'))
        elif not is_valid_email(booking.email):
            errors.append(FieldError('email', 'Please provide a valid email address'))

        if errors:
            return errors

        if 'event_id' in modified:
            if self.find_event(booking.event_id) is None:
                errors.append(FieldError(
                    'event_id',
                    f"Event with ID {booking.event_id} does not exist"
                ))
        else:
            logger.debug(
                f"Skipping event lookup for booking {booking.id}: "
                f"event_id unchanged"
            )

        return errors
