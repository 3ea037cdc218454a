"""Recurrence rule schemas and their RRULE text form."""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.core.exceptions import ValidationException

# Weekday indices are 0=Sunday .. 6=Saturday
WEEKDAY_CODES = ("SU", "MO", "TU", "WE", "TH", "FR", "SA")

_UNTIL_UTC_FORMAT = "%Y%m%dT%H%M%SZ"
_UNTIL_FLOATING_FORMAT = "%Y%m%dT%H%M%S"
_CUSTOM_MARKER = "X-FREQ"


class RecurrenceFrequency(str, Enum):
    """Recurrence frequency enumeration."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"

    @property
    def uses_weekdays(self) -> bool:
        """Weekly and custom rules expand over a weekday set."""
        return self in (RecurrenceFrequency.WEEKLY, RecurrenceFrequency.CUSTOM)


class RecurrenceEndType(str, Enum):
    """How a recurrence terminates."""

    NEVER = "never"
    COUNT = "count"
    UNTIL = "until"


_RRULE_FREQ = {
    RecurrenceFrequency.DAILY: "DAILY",
    RecurrenceFrequency.WEEKLY: "WEEKLY",
    RecurrenceFrequency.MONTHLY: "MONTHLY",
    RecurrenceFrequency.CUSTOM: "WEEKLY",
}


class RecurrenceRule(BaseModel):
    """
    Logical recurrence rule attached to a recurrence parent.

    `interval` is deliberately unconstrained here; a non-positive interval is
    rejected by the expander before any occurrence is generated.
    """

    model_config = ConfigDict(frozen=True)

    frequency: RecurrenceFrequency
    interval: int = 1
    weekdays: tuple[int, ...] = Field(default=())
    end_type: RecurrenceEndType = RecurrenceEndType.NEVER
    count: int | None = Field(default=None, ge=1)
    until: datetime | None = None

    @field_validator("weekdays", mode="before")
    @classmethod
    def normalize_weekdays(cls, v: object) -> tuple[int, ...]:
        """Sort and de-duplicate weekday indices."""
        if v is None:
            return ()
        days = set(v)  # type: ignore[call-overload]
        for day in days:
            if not isinstance(day, int) or not 0 <= day <= 6:
                raise ValueError("Weekdays must be integers between 0 (Sunday) and 6 (Saturday)")
        return tuple(sorted(days))

    @model_validator(mode="after")
    def check_end_condition(self) -> "RecurrenceRule":
        """Exactly one end condition may be active."""
        if self.end_type == RecurrenceEndType.COUNT:
            if self.count is None or self.until is not None:
                raise ValueError("A count-terminated rule needs a count and no until date")
        elif self.end_type == RecurrenceEndType.UNTIL:
            if self.until is None or self.count is not None:
                raise ValueError("An until-terminated rule needs an until date and no count")
        elif self.count is not None or self.until is not None:
            raise ValueError("A never-ending rule takes neither count nor until")
        return self

    @model_validator(mode="after")
    def check_weekdays_apply(self) -> "RecurrenceRule":
        """Only weekly and custom rules expand over weekdays."""
        if self.weekdays and not self.frequency.uses_weekdays:
            raise ValueError(f"Weekdays cannot be set on a {self.frequency.value} rule")
        return self

    def to_rrule_string(self) -> str:
        """Serialize to an RRULE line, e.g. ``RRULE:FREQ=WEEKLY;INTERVAL=1;BYDAY=MO``."""
        parts = [f"FREQ={_RRULE_FREQ[self.frequency]}", f"INTERVAL={self.interval}"]

        if self.weekdays:
            parts.append("BYDAY=" + ",".join(WEEKDAY_CODES[day] for day in self.weekdays))

        if self.end_type == RecurrenceEndType.COUNT:
            parts.append(f"COUNT={self.count}")
        elif self.end_type == RecurrenceEndType.UNTIL and self.until is not None:
            parts.append(f"UNTIL={_format_until(self.until)}")

        if self.frequency == RecurrenceFrequency.CUSTOM:
            parts.append(f"{_CUSTOM_MARKER}=CUSTOM")

        return "RRULE:" + ";".join(parts)

    @classmethod
    def from_rrule_string(cls, value: str) -> "RecurrenceRule":
        """
        Parse an RRULE line produced by :meth:`to_rrule_string`.

        A leading ``RRULE:`` prefix is optional and a ``DTSTART`` line, if
        present, is ignored.

        Raises:
            ValidationException: If the text is not a recognised rule
        """
        line = _rule_line(value)
        fields: dict[str, str] = {}
        for part in line.split(";"):
            if not part:
                continue
            name, sep, raw = part.partition("=")
            if not sep:
                raise ValidationException(f"Malformed recurrence rule part: {part!r}")
            fields[name.strip().upper()] = raw.strip()

        freq = fields.pop("FREQ", None)
        marker = fields.pop(_CUSTOM_MARKER, None)
        if freq == "DAILY":
            frequency = RecurrenceFrequency.DAILY
        elif freq == "MONTHLY":
            frequency = RecurrenceFrequency.MONTHLY
        elif freq == "WEEKLY":
            frequency = (
                RecurrenceFrequency.CUSTOM
                if marker and marker.upper() == "CUSTOM"
                else RecurrenceFrequency.WEEKLY
            )
        else:
            raise ValidationException(f"Unsupported recurrence frequency: {freq!r}")

        try:
            interval = int(fields.pop("INTERVAL", "1"))
            weekdays = [WEEKDAY_CODES.index(code) for code in _split_codes(fields.pop("BYDAY", ""))]
            count = int(fields.pop("COUNT")) if "COUNT" in fields else None
            until = _parse_until(fields.pop("UNTIL")) if "UNTIL" in fields else None
        except ValueError as e:
            raise ValidationException(f"Malformed recurrence rule: {e}") from e

        if fields:
            raise ValidationException(
                "Unsupported recurrence rule parts: " + ", ".join(sorted(fields))
            )

        if count is not None:
            end_type = RecurrenceEndType.COUNT
        elif until is not None:
            end_type = RecurrenceEndType.UNTIL
        else:
            end_type = RecurrenceEndType.NEVER

        try:
            return cls(
                frequency=frequency,
                interval=interval,
                weekdays=tuple(weekdays),
                end_type=end_type,
                count=count,
                until=until,
            )
        except ValueError as e:
            raise ValidationException(f"Invalid recurrence rule: {e}") from e


class Occurrence(BaseModel):
    """One concrete interval generated from a recurrence rule."""

    model_config = ConfigDict(frozen=True)

    start_time: datetime
    end_time: datetime


def _rule_line(value: str) -> str:
    for line in value.strip().splitlines():
        line = line.strip()
        if line.upper().startswith("DTSTART"):
            continue
        if line.upper().startswith("RRULE:"):
            return line[len("RRULE:") :]
        if line:
            return line
    raise ValidationException("Empty recurrence rule")


def _split_codes(raw: str) -> list[str]:
    return [code.strip().upper() for code in raw.split(",") if code.strip()]


def _format_until(until: datetime) -> str:
    if until.tzinfo is None:
        return until.strftime(_UNTIL_FLOATING_FORMAT)
    return until.astimezone(UTC).strftime(_UNTIL_UTC_FORMAT)


def _parse_until(raw: str) -> datetime:
    if raw.endswith("Z"):
        return datetime.strptime(raw, _UNTIL_UTC_FORMAT).replace(tzinfo=UTC)
    if "T" in raw:
        return datetime.strptime(raw, _UNTIL_FLOATING_FORMAT)
    # Date-only UNTIL values cover the whole day
    return datetime.strptime(raw + "T235959", _UNTIL_FLOATING_FORMAT)
