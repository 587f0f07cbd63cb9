"""
Booking record parsing, filtering and formatting.

Everything here is a pure function over raw booking dicts as returned by
the booking source, so it can be exercised directly against literal
responses.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from lib.errors import MalformedInputError
from lib.sync_state import parse_timestamp

logger = logging.getLogger(__name__)

# Top-level keys the booking list has been seen under
BOOKING_LIST_KEYS = ('data', 'bookings', 'items', 'results')

# Alternate names for the question text, in order of preference
QUESTION_TEXT_KEYS = ('question', 'label', 'text', 'name')


@dataclass
class BookingCandidate:
    """A booking that passed the time/cancellation filter for this pass."""
    id: str
    created_at: datetime
    contact_email: Optional[str]
    contact_name: Optional[str]
    starts_at: Optional[datetime]
    timezone: Optional[str] = None
    meeting_url: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    answers: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def has_usable_email(self) -> bool:
        local, sep, domain = (self.contact_email or '').partition('@')
        return bool(sep and local.strip() and domain.strip())

    @property
    def display_name(self) -> str:
        return self.contact_name or self.contact_email or ''


def extract_booking_list(payload: Any) -> List[Dict[str, Any]]:
    """
    Accept either a bare list of bookings or a dict wrapping the list under
    one of BOOKING_LIST_KEYS. Anything else is a MalformedInputError.
    """
    bookings = None
    if isinstance(payload, list):
        bookings = payload
    elif isinstance(payload, dict):
        for key in BOOKING_LIST_KEYS:
            if isinstance(payload.get(key), list):
                bookings = payload[key]
                break

    if bookings is None:
        if isinstance(payload, dict):
            shape = f"object with keys {sorted(payload.keys())}"
        else:
            shape = type(payload).__name__
        raise MalformedInputError(f"Unrecognized booking list shape: {shape}")

    for index, booking in enumerate(bookings):
        if not isinstance(booking, dict):
            raise MalformedInputError(f"Booking at index {index} is {type(booking).__name__}, expected object")
    return bookings


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _timestamp(value: Any) -> Optional[datetime]:
    text = _text(value)
    if not text:
        return None
    return parse_timestamp(text)


def extract_answers(questions: Any) -> List[Tuple[str, str]]:
    """Ordered (question, answer) pairs; list answers are comma-joined."""
    pairs = []
    for item in questions or []:
        if not isinstance(item, dict):
            continue
        question = next((_text(item.get(key)) for key in QUESTION_TEXT_KEYS if _text(item.get(key))), None)
        answer = item.get('answer')
        if isinstance(answer, list):
            answer = ', '.join(str(a).strip() for a in answer if _text(a))
        answer = _text(answer)
        if not question and not answer:
            continue
        pairs.append((question or 'Question', answer or ''))
    return pairs


def is_candidate(raw: Dict[str, Any], cutoff: datetime) -> bool:
    """
    True when the booking has an id and creation time, is not cancelled, and
    was created strictly after `cutoff`.
    """
    if not _text(raw.get('id')) or not _text(raw.get('created_at')):
        return False
    if _text(raw.get('cancelled_at')):
        return False
    try:
        created_at = _timestamp(raw.get('created_at'))
    except ValueError:
        logger.warning(f"Booking {raw.get('id')} has unparsable created_at {raw.get('created_at')!r}, ignoring")
        return False
    return created_at > cutoff


def parse_candidate(raw: Dict[str, Any]) -> BookingCandidate:
    contact = raw.get('contact') or {}
    if not isinstance(contact, dict):
        contact = {}

    try:
        starts_at = _timestamp(raw.get('starts_at'))
    except ValueError:
        logger.warning(f"Booking {raw.get('id')} has unparsable starts_at {raw.get('starts_at')!r}")
        starts_at = None

    email = _text(contact.get('email'))
    return BookingCandidate(
        id=_text(raw.get('id')),
        created_at=_timestamp(raw.get('created_at')),
        cancelled_at=None,
        contact_email=email.lower() if email else None,
        contact_name=_text(contact.get('name')),
        starts_at=starts_at,
        timezone=_text(raw.get('timezone')),
        meeting_url=_text(raw.get('meeting_url')),
        answers=extract_answers(raw.get('questions')),
    )


def filter_candidates(bookings: List[Dict[str, Any]], cutoff: datetime) -> List[BookingCandidate]:
    """Candidates in source order."""
    return [parse_candidate(raw) for raw in bookings if is_candidate(raw, cutoff)]


def resolve_timezone(name: Optional[str], default: str) -> ZoneInfo:
    for candidate in (name, default):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone {candidate!r}")
    return ZoneInfo('UTC')


def format_start_time(starts_at: Optional[datetime], tz_name: Optional[str], default_tz: str) -> str:
    """e.g. 'Tuesday, March 5, 2024 at 2:30 PM EST'"""
    if starts_at is None:
        return 'Unknown time'
    if starts_at.tzinfo is None:
        starts_at = starts_at.replace(tzinfo=timezone.utc)
    local = starts_at.astimezone(resolve_timezone(tz_name, default_tz))
    hour = local.hour % 12 or 12
    return f"{local:%A, %B} {local.day}, {local.year} at {hour}:{local:%M %p %Z}"


def build_info_block(candidate: BookingCandidate, when: str) -> str:
    lines = [
        f"Date/Time: {when}",
        f"Booking ID: {candidate.id}",
    ]
    if candidate.timezone:
        lines.append(f"Timezone: {candidate.timezone}")
    if candidate.meeting_url:
        lines.append(f"Meeting URL: {candidate.meeting_url}")
    return '\n'.join(lines)


def build_message(answers: List[Tuple[str, str]]) -> str:
    return '\n\n'.join(f"{question}\n{answer}" for question, answer in answers)
