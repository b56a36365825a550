"""Validation and normalization of event records."""
import logging
import re
from datetime import datetime, timezone
from typing import List

from processor.errors import ValidationError
from processor.models import EVENT_MODES, Event, FieldError

logger = logging.getLogger(__name__)

_SLUG_INVALID_CHARS = re.compile(r'[^a-z0-9\s-]')
_WHITESPACE_RUN = re.compile(r'\s+')
_HYPHEN_RUN = re.compile(r'-+')
_TIME_PATTERN = re.compile(r'^(\d{1,2}):(\d{2})(?:\s*(AM|PM))?$', re.IGNORECASE)


def generate_slug(title: str) -> str:
    """
    Derive a URL-safe slug from an event title.

    Args:
        title: Event title

    Returns:
        Lowercase, hyphen separated slug (may be empty)
    """
    slug = title.strip().lower()
    slug = _SLUG_INVALID_CHARS.sub('', slug)
    slug = _WHITESPACE_RUN.sub('-', slug)
    slug = _HYPHEN_RUN.sub('-', slug)
    return slug.strip('-')


def normalize_date(date_str: str) -> str:
    """
    Normalize a date to ISO 8601 format (YYYY-MM-DD).

    Accepts YYYY-MM-DD, MM/DD/YYYY and ISO 8601 timestamps with a "T" or a
    space between date and time. Timestamps carrying an offset are
    converted to UTC before the date is taken.

    Args:
        date_str: Date string in one of the accepted formats

    Returns:
        ISO 8601 formatted date string

    Raises:
        ValueError: If the date cannot be parsed
    """
    date_str = (date_str or '').strip()

    date_formats = [
        '%Y-%m-%d',      # ISO 8601
        '%m/%d/%Y',      # US format
    ]

    for fmt in date_formats:
        try:
            return datetime.strptime(date_str, fmt).strftime('%Y-%m-%d')
        except ValueError:
            continue

    # Full timestamp, e.g. 2024-12-15T10:30:00.000Z or 2024-12-15 10:30:00
    if len(date_str) > 10:
        timestamp = date_str
        if timestamp.endswith(('Z', 'z')):
            timestamp = timestamp[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(timestamp)
        except ValueError:
            raise ValueError('Invalid date format') from None
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc)
        return parsed.strftime('%Y-%m-%d')

    raise ValueError('Invalid date format')


def normalize_time(time_str: str) -> str:
    """
    Normalize a time to 24-hour format (HH:MM).

    Accepts H:MM or HH:MM, optionally followed by a case-insensitive
    AM/PM marker.

    Args:
        time_str: Time string

    Returns:
        24-hour formatted time string

    Raises:
        ValueError: "Invalid time format" when the string does not match,
            "Invalid time values" when hour or minute is out of range
    """
    match = _TIME_PATTERN.match((time_str or '').strip())
    if not match:
        raise ValueError('Invalid time format')

    hours = int(match.group(1))
    minutes = int(match.group(2))
    period = match.group(3)

    if period:
        period = period.upper()
        if period == 'PM' and hours != 12:
            hours += 12
        elif period == 'AM' and hours == 12:
            hours = 0

    if not 0 <= hours <= 23 or not 0 <= minutes <= 59:
        raise ValueError('Invalid time values')

    return f"{hours:02d}:{minutes:02d}"


class EventValidator:
    """Normalize-then-validate pipeline for Event records."""

    MAX_TITLE_LENGTH = 100
    MAX_DESCRIPTION_LENGTH = 1000
    MAX_OVERVIEW_LENGTH = 500

    STRING_FIELDS = (
        'title', 'description', 'overview', 'image', 'venue', 'location',
        'date', 'time', 'mode', 'audience', 'organizer',
    )

    REQUIRED_MESSAGES = {
        'title': 'Title is required',
        'description': 'Description is required',
        'overview': 'Overview is required',
        'image': 'Image URL is required',
        'venue': 'Venue is required',
        'location': 'Location is required',
        'date': 'Date is required',
        'time': 'Time is required',
        'mode': 'Mode is required',
        'audience': 'Audience is required',
        'organizer': 'Organizer is required',
    }

    MAX_LENGTHS = {
        'title': (MAX_TITLE_LENGTH, 'Title'),
        'description': (MAX_DESCRIPTION_LENGTH, 'Description'),
        'overview': (MAX_OVERVIEW_LENGTH, 'Overview'),
    }

    def prepare(self, event: Event) -> Event:
        """
        Normalize an event in place and validate it before it is persisted.

        Args:
            event: Event about to be saved

        Returns:
            The same event, normalized

        Raises:
            ValidationError: If any field is invalid
        """
        errors = self.validate(event)
        if errors:
            logger.warning(
                f"Event '{event.title}' failed validation: "
                f"{[error.message for error in errors]}"
            )
            raise ValidationError(errors)
        return event

    def validate(self, event: Event) -> List[FieldError]:
        """
        Run the pipeline and collect every violation.

        Normalized values (trimmed strings, slug, date, time) are written
        back onto the event as they are computed.

        Args:
            event: Event to normalize and validate

        Returns:
            List of FieldError, empty when the event is valid
        """
        modified = event.modified_fields()
        self._trim_fields(event)

        errors = self._check_required_fields(event)
        errors.extend(self._check_lengths(event))

        if event.mode and event.mode not in EVENT_MODES:
            errors.append(FieldError(
                'mode', 'Mode must be either online, offline, or hybrid'
            ))

        if not event.agenda:
            errors.append(FieldError('agenda', 'At least one agenda item is required'))
        if not event.tags:
            errors.append(FieldError('tags', 'At least one tag is required'))

        if event.title and ('title' in modified or event.slug is None):
            event.slug = generate_slug(event.title)

        if event.date and 'date' in modified:
            try:
                event.date = normalize_date(event.date)
            except ValueError as e:
                errors.append(FieldError('date', str(e)))

        if event.time and 'time' in modified:
            try:
                event.time = normalize_time(event.time)
            except ValueError as e:
                errors.append(FieldError('time', str(e)))

        return errors

    def _trim_fields(self, event: Event) -> None:
        for name in self.STRING_FIELDS:
            value = getattr(event, name)
            if isinstance(value, str):
                setattr(event, name, value.strip())

    def _check_required_fields(self, event: Event) -> List[FieldError]:
        errors = []
        for name, message in self.REQUIRED_MESSAGES.items():
            if name == 'date' and getattr(event, name) == '':
                # Empty dates fail the date parser rather than presence
                errors.append(FieldError(name, 'Invalid date format'))
            elif not getattr(event, name):
                errors.append(FieldError(name, message))
        return errors

    def _check_lengths(self, event: Event) -> List[FieldError]:
        errors = []
        for name, (limit, label) in self.MAX_LENGTHS.items():
            value = getattr(event, name)
            if value and len(value) > limit:
                errors.append(FieldError(
                    name, f"{label} cannot exceed {limit} characters"
                ))
        return errors
