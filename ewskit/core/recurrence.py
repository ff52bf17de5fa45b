"""Recurrence patterns and ranges of calendar items."""

from enum import Enum

from ..exceptions import ValidationError
from .complex_property import ChoiceField, ElementField, ElementRegistry, NodeKind
from .xml import parse_date


class DayOfTheWeek(Enum):
    SUNDAY = "Sunday"
    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"
    SATURDAY = "Saturday"


class Month(Enum):
    JANUARY = "January"
    FEBRUARY = "February"
    MARCH = "March"
    APRIL = "April"
    MAY = "May"
    JUNE = "June"
    JULY = "July"
    AUGUST = "August"
    SEPTEMBER = "September"
    OCTOBER = "October"
    NOVEMBER = "November"
    DECEMBER = "December"


def _parse_days(text):
    return tuple(DayOfTheWeek(day) for day in text.split())


def _format_days(days):
    return " ".join(day.value for day in days)


def _check_interval(node):
    if node.interval is None or node.interval < 1:
        raise ValidationError("The interval must be greater than or equal to 1.")


def _check_day_of_month(node):
    if node.day_of_month is None or not 1 <= node.day_of_month <= 31:
        raise ValidationError("DayOfMonth must be between 1 and 31.")


def _interval_field():
    return ElementField("interval", "Interval", converter=int, required=True)


RECURRENCE_PATTERNS = ElementRegistry("recurrence patterns")

DAILY_PATTERN = RECURRENCE_PATTERNS.register_kind(NodeKind(
    "DailyRecurrence",
    fields=(_interval_field(),),
    validate=_check_interval,
))


def _validate_weekly(node):
    _check_interval(node)
    if not node.days_of_week:
        raise ValidationError("The recurrence pattern's DaysOfWeek property must contain at least one day of the week.")


WEEKLY_PATTERN = RECURRENCE_PATTERNS.register_kind(NodeKind(
    "WeeklyRecurrence",
    fields=(
        _interval_field(),
        ElementField("days_of_week", "DaysOfWeek", converter=_parse_days, formatter=_format_days),
        ElementField("first_day_of_week", "FirstDayOfWeek", converter=DayOfTheWeek),
    ),
    validate=_validate_weekly,
))


def _validate_absolute_monthly(node):
    _check_interval(node)
    _check_day_of_month(node)


ABSOLUTE_MONTHLY_PATTERN = RECURRENCE_PATTERNS.register_kind(NodeKind(
    "AbsoluteMonthlyRecurrence",
    fields=(
        _interval_field(),
        ElementField("day_of_month", "DayOfMonth", converter=int, required=True),
    ),
    validate=_validate_absolute_monthly,
))

ABSOLUTE_YEARLY_PATTERN = RECURRENCE_PATTERNS.register_kind(NodeKind(
    "AbsoluteYearlyRecurrence",
    fields=(
        ElementField("day_of_month", "DayOfMonth", converter=int, required=True),
        ElementField("month", "Month", converter=Month, required=True),
    ),
    validate=_check_day_of_month,
))


RECURRENCE_RANGES = ElementRegistry("recurrence ranges")


def _start_date_field():
    return ElementField("start_date", "StartDate", converter=parse_date, required=True)


NO_END_RANGE = RECURRENCE_RANGES.register_kind(NodeKind("NoEndRecurrence", fields=(_start_date_field(),)))


def _validate_end_date(node):
    if node.end_date < node.start_date:
        raise ValidationError("The recurrence end date cannot be earlier than its start date.")


END_DATE_RANGE = RECURRENCE_RANGES.register_kind(NodeKind(
    "EndDateRecurrence",
    fields=(
        _start_date_field(),
        ElementField("end_date", "EndDate", converter=parse_date, required=True),
    ),
    validate=_validate_end_date,
))


def _validate_numbered(node):
    if node.number_of_occurrences < 1:
        raise ValidationError("NumberOfOccurrences must be greater than 0.")


NUMBERED_RANGE = RECURRENCE_RANGES.register_kind(NodeKind(
    "NumberedRecurrence",
    fields=(
        _start_date_field(),
        ElementField("number_of_occurrences", "NumberOfOccurrences", converter=int, required=True),
    ),
    validate=_validate_numbered,
))


RECURRENCE = NodeKind(
    "Recurrence",
    fields=(
        ChoiceField("pattern", registry=RECURRENCE_PATTERNS, required=True),
        ChoiceField("range", registry=RECURRENCE_RANGES, required=True),
    ),
)
