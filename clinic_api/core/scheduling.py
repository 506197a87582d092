"""Appointment time-window arithmetic and status rules.

Nothing in here touches the database; callers pass in the current time and
whatever records they have loaded.
"""

from datetime import datetime, timedelta, timezone

from clinic_api.core.errors import (
    CancelWindowViolation,
    InvalidSlot,
    InvalidStatusTransition,
    ValidationFailed,
)

STATUS_PENDING = 'pending'
STATUS_CONFIRMED = 'confirmed'
STATUS_CANCELLED = 'cancelled'
STATUS_COMPLETED = 'completed'

APPOINTMENT_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED, STATUS_CANCELLED, STATUS_COMPLETED)
# Only these statuses occupy a doctor's calendar.
ACTIVE_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED)

ALLOWED_TRANSITIONS = {
    STATUS_PENDING: frozenset({STATUS_CONFIRMED, STATUS_CANCELLED}),
    STATUS_CONFIRMED: frozenset({STATUS_CANCELLED, STATUS_COMPLETED}),
    STATUS_CANCELLED: frozenset(),
    STATUS_COMPLETED: frozenset(),
}

MIN_DURATION_MINUTES = 5
MAX_DURATION_MINUTES = 480
MAX_REASON_LENGTH = 500


def utcnow() -> datetime:
    """Current instant as naive UTC, the form appointments are stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    try:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    except OverflowError as exc:
        raise ValidationFailed('Date is out of range', cause=exc) from exc


def compute_end_at(start_at: datetime, duration_minutes: int) -> datetime:
    if not MIN_DURATION_MINUTES <= duration_minutes <= MAX_DURATION_MINUTES:
        raise ValidationFailed(
            f'durationMinutes must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES}.'
        )
    try:
        return start_at + timedelta(minutes=duration_minutes)
    except OverflowError as exc:
        raise ValidationFailed('startAt is out of range', cause=exc) from exc


def slots_overlap(
    first_start: datetime,
    first_end: datetime,
    second_start: datetime,
    second_end: datetime,
) -> bool:
    """Half-open interval test: slots that only touch do not overlap."""
    return first_start < second_end and first_end > second_start


def ensure_future_start(start_at: datetime, now: datetime) -> None:
    if start_at <= now:
        raise InvalidSlot()


def is_active(status: str) -> bool:
    return status in ACTIVE_STATUSES


def ensure_valid_status(status: str) -> str:
    normalized = status.strip().lower()
    if normalized not in APPOINTMENT_STATUSES:
        raise ValidationFailed('Invalid status')
    return normalized


def ensure_transition_allowed(current: str, requested: str) -> None:
    # Re-sending the current status is a no-op.
    if current == requested:
        return
    if requested not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvalidStatusTransition(current, requested)


def cancel_cutoff(start_at: datetime, cutoff_minutes: int) -> datetime:
    return start_at - timedelta(minutes=cutoff_minutes)


def ensure_cancel_window(start_at: datetime, now: datetime, cutoff_minutes: int) -> None:
    """Reject patient cancellations made after the cutoff.

    Cancelling at exactly ``start_at - cutoff_minutes`` is still allowed.
    """
    if now > cancel_cutoff(start_at, cutoff_minutes):
        raise CancelWindowViolation(cutoff_minutes)
