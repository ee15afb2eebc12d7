"""
Recurrence engine: parses RRULE text into a structured rule and expands it
into occurrence start instants.

Supported rule parts: FREQ (DAILY, WEEKLY, MONTHLY, YEARLY; required),
INTERVAL (>= 1, default 1), COUNT (>= 0), UNTIL (instant, inclusive).
Any other part (BYDAY, BYMONTH, ...) is rejected rather than ignored.

Expansion modes:
  COUNT present    exactly COUNT occurrences, UNTIL and horizon ignored
  UNTIL present    every occurrence up to and including UNTIL
  neither          unbounded series; expanded from the template start up to a
                   forward horizon measured from *now* (default two years)

Stepping is delegated to dateutil.rrule, so MONTHLY/YEARLY follow RFC 5545:
a template on the 31st skips months without a 31st, and Feb 29 only recurs in
leap years. Nothing is clamped to the end of the month.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Union

from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta
from dateutil.rrule import DAILY, MONTHLY, WEEKLY, YEARLY, rrule

from resource_booking.core.clock import Clock, ensure_utc, utc_now
from resource_booking.core.exceptions import InvalidRecurrenceRule, InvalidTimeRange


class Frequency(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


_RRULE_FREQUENCIES = {
    Frequency.DAILY: DAILY,
    Frequency.WEEKLY: WEEKLY,
    Frequency.MONTHLY: MONTHLY,
    Frequency.YEARLY: YEARLY,
}

_SUPPORTED_PARTS = ("FREQ", "INTERVAL", "COUNT", "UNTIL")


@dataclass(frozen=True)
class RecurrenceRule:
    frequency: Frequency
    interval: int = 1
    count: Optional[int] = None
    until: Optional[datetime] = None

    def __post_init__(self):
        if not isinstance(self.frequency, Frequency):
            try:
                object.__setattr__(self, "frequency", Frequency(str(self.frequency).upper()))
            except ValueError:
                raise InvalidRecurrenceRule(f"Unsupported frequency: {self.frequency}") from None
        if self.interval < 1:
            raise InvalidRecurrenceRule("INTERVAL must be a positive integer")
        if self.count is not None and self.count < 0:
            raise InvalidRecurrenceRule("COUNT must not be negative")
        if self.until is not None:
            object.__setattr__(self, "until", ensure_utc(self.until))

    @property
    def is_unbounded(self) -> bool:
        return is_unbounded(self)

    def to_rrule_string(self) -> str:
        parts = [f"FREQ={self.frequency.value}"]
        if self.interval != 1:
            parts.append(f"INTERVAL={self.interval}")
        if self.count is not None:
            parts.append(f"COUNT={self.count}")
        if self.until is not None:
            parts.append(f"UNTIL={self.until.strftime('%Y%m%dT%H%M%SZ')}")
        return "RRULE:" + ";".join(parts)

    def __str__(self) -> str:
        return self.to_rrule_string()


RuleInput = Union[RecurrenceRule, str]


def is_unbounded(rule: RecurrenceRule) -> bool:
    """True iff the rule has neither COUNT nor UNTIL, whatever its interval."""
    return rule.count is None and rule.until is None


def parse_rule(rule_text: str) -> RecurrenceRule:
    """Parse `RRULE:FREQ=WEEKLY;COUNT=10` (prefix optional, keys case-insensitive)."""
    if rule_text is None or not str(rule_text).strip():
        raise InvalidRecurrenceRule("Recurrence rule is empty")

    body = str(rule_text).strip()
    if body.upper().startswith("RRULE:"):
        body = body[len("RRULE:"):]

    params: dict[str, str] = {}
    for part in body.split(";"):
        part = part.strip()
        if not part:
            continue
        key, sep, value = part.partition("=")
        key = key.strip().upper()
        value = value.strip()
        if not sep or not value:
            raise InvalidRecurrenceRule(f"Malformed rule part: {part!r}")
        if key not in _SUPPORTED_PARTS:
            raise InvalidRecurrenceRule(f"Unsupported rule part: {key}")
        if key in params:
            raise InvalidRecurrenceRule(f"Duplicate rule part: {key}")
        params[key] = value

    if "FREQ" not in params:
        raise InvalidRecurrenceRule("FREQ parameter is required in RRULE")

    return RecurrenceRule(
        frequency=params["FREQ"],
        interval=_parse_int(params, "INTERVAL", default=1),
        count=_parse_int(params, "COUNT", default=None),
        until=_parse_until(params.get("UNTIL")),
    )


def coerce_rule(rule: Optional[RuleInput]) -> Optional[RecurrenceRule]:
    if rule is None or isinstance(rule, RecurrenceRule):
        return rule
    return parse_rule(rule)


def _parse_int(params: dict, key: str, default):
    if key not in params:
        return default
    try:
        return int(params[key])
    except ValueError:
        raise InvalidRecurrenceRule(f"{key} must be an integer, got {params[key]!r}") from None


def _parse_until(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return ensure_utc(isoparse(value))
    except (ValueError, OverflowError):
        raise InvalidRecurrenceRule(f"UNTIL is not a valid date-time: {value!r}") from None


class RecurrenceEngine:
    """
    Expands structured rules into occurrence starts.

    `horizon` bounds unbounded series relative to the clock; it is a
    finiteness cap, not a domain limit. Callers that need occurrences
    beyond it expand again later, or use `occurrences_between` for a
    bounded window.
    """

    def __init__(self, horizon: Optional[relativedelta] = None, clock: Clock = utc_now):
        self.horizon = horizon if horizon is not None else relativedelta(years=2)
        self.clock = clock

    def horizon_end(self) -> datetime:
        return self.clock() + self.horizon

    def expand(
        self,
        rule: RuleInput,
        template_start: datetime,
        template_end: Optional[datetime] = None,
        horizon_end: Optional[datetime] = None,
    ) -> list[datetime]:
        rule = coerce_rule(rule)
        start = ensure_utc(template_start)
        if template_end is not None and ensure_utc(template_end) <= start:
            raise InvalidTimeRange("Template end must be after template start")
        if rule.count == 0:
            return []

        recurrence, shift = self._build(rule, start)
        if not is_unbounded(rule):
            return [occurrence + shift for occurrence in recurrence]

        limit = ensure_utc(horizon_end) if horizon_end is not None else self.horizon_end()
        if limit < start:
            return []
        return [
            occurrence + shift
            for occurrence in recurrence.between(start - shift, limit - shift, inc=True)
        ]

    def occurrences_between(
        self,
        rule: RuleInput,
        template_start: datetime,
        window_start: datetime,
        window_end: datetime,
    ) -> list[datetime]:
        """Occurrence starts in [window_start, window_end); COUNT/UNTIL apply, the horizon does not."""
        rule = coerce_rule(rule)
        start = ensure_utc(template_start)
        window_start = max(ensure_utc(window_start), start)
        window_end = ensure_utc(window_end)
        if rule.count == 0 or window_end <= window_start:
            return []

        recurrence, shift = self._build(rule, start)
        found = recurrence.between(window_start - shift, window_end - shift, inc=True)
        return [occurrence + shift for occurrence in found if occurrence + shift < window_end]

    @staticmethod
    def _build(rule: RecurrenceRule, start: datetime) -> tuple[rrule, timedelta]:
        # rrule truncates dtstart to whole seconds; carry the sub-second part separately
        base = start.replace(microsecond=0)
        shift = start - base
        options = {
            "freq": _RRULE_FREQUENCIES[rule.frequency],
            "dtstart": base,
            "interval": rule.interval,
        }
        if rule.count is not None:
            options["count"] = rule.count
        elif rule.until is not None:
            options["until"] = rule.until - shift
        return rrule(**options), shift
