"""Recurrence expansion into concrete appointment occurrences."""

from datetime import datetime

from dateutil import rrule

from app.core.exceptions import ValidationException
from app.schemas.recurrence import (
    Occurrence,
    RecurrenceEndType,
    RecurrenceFrequency,
    RecurrenceRule,
)

# Occurrences generated when a rule has no end condition
DEFAULT_OCCURRENCE_LIMIT = 52

# Largest series any rule may expand into
MAX_OCCURRENCE_LIMIT = 500

_FREQUENCIES = {
    RecurrenceFrequency.DAILY: rrule.DAILY,
    RecurrenceFrequency.WEEKLY: rrule.WEEKLY,
    RecurrenceFrequency.MONTHLY: rrule.MONTHLY,
    RecurrenceFrequency.CUSTOM: rrule.WEEKLY,
}

# Indexed 0=Sunday .. 6=Saturday
_WEEKDAYS = (rrule.SU, rrule.MO, rrule.TU, rrule.WE, rrule.TH, rrule.FR, rrule.SA)


class RecurrenceExpander:
    """
    Expands a recurrence rule anchored at a first occurrence.

    The anchor is always the first returned occurrence, and every occurrence
    keeps the anchor's duration. Expansion is deterministic: it never looks at
    the current time.
    """

    def __init__(
        self,
        default_count: int = DEFAULT_OCCURRENCE_LIMIT,
        max_count: int = MAX_OCCURRENCE_LIMIT,
    ):
        """
        Initialize with the occurrence ceilings.

        Args:
            default_count: Occurrences generated for never-ending rules
            max_count: Largest series a count or until rule may produce
        """
        if default_count < 1 or max_count < 1:
            raise ValueError("Occurrence limits must be positive")
        if default_count > max_count:
            raise ValueError("default_count cannot exceed max_count")
        self.default_count = default_count
        self.max_count = max_count

    def validate(self, rule: RecurrenceRule) -> None:
        """
        Reject rules that cannot be expanded.

        Raises:
            ValidationException: If the interval is not positive or the count is too large
        """
        if rule.interval <= 0:
            raise ValidationException("Recurrence interval must be a positive integer")
        if rule.count is not None and rule.count > self.max_count:
            raise ValidationException(
                f"Recurrence count cannot exceed {self.max_count} occurrences"
            )

    def expand(
        self,
        rule: RecurrenceRule,
        first_start: datetime,
        first_end: datetime,
    ) -> list[Occurrence]:
        """
        Generate the ordered occurrences of a rule.

        Args:
            rule: Recurrence rule to expand
            first_start: Start of the anchor occurrence
            first_end: End of the anchor occurrence

        Returns:
            Occurrences in ascending order, anchor first

        Raises:
            ValidationException: If the rule or the anchor interval is invalid, or
                an until-terminated rule would produce more than ``max_count``
                occurrences
        """
        self.validate(rule)
        if first_end <= first_start:
            raise ValidationException("End time must be after start time")

        duration = first_end - first_start
        occurrences = [Occurrence(start_time=first_start, end_time=first_end)]

        if rule.frequency.uses_weekdays and not rule.weekdays:
            return occurrences

        until = None
        if rule.end_type == RecurrenceEndType.COUNT:
            limit = rule.count or 1
        elif rule.end_type == RecurrenceEndType.UNTIL and rule.until is not None:
            until = _align_tz(rule.until, first_start)
            if until < first_start:
                raise ValidationException("Recurrence end date precedes the first occurrence")
            limit = None
        else:
            limit = self.default_count

        options: dict = {
            "dtstart": first_start,
            "interval": rule.interval,
            "wkst": rrule.SU,
            "until": until,
        }
        if rule.frequency.uses_weekdays:
            options["byweekday"] = [_WEEKDAYS[day] for day in rule.weekdays]

        for start in rrule.rrule(_FREQUENCIES[rule.frequency], **options):
            if limit is not None and len(occurrences) >= limit:
                break
            if start <= first_start:
                continue
            if len(occurrences) >= self.max_count:
                raise ValidationException(
                    f"Recurrence would produce more than {self.max_count} occurrences"
                )
            occurrences.append(Occurrence(start_time=start, end_time=start + duration))

        return occurrences


def _align_tz(until: datetime, anchor: datetime) -> datetime:
    """Give ``until`` the same awareness as the anchor."""
    if anchor.tzinfo is not None and until.tzinfo is None:
        return until.replace(tzinfo=anchor.tzinfo)
    if anchor.tzinfo is None and until.tzinfo is not None:
        return until.replace(tzinfo=None)
    return until
