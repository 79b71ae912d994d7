"""
Operator engine: turns one (operator, value) pair into a SQL predicate.

Builders return None when a rule puts no constraint on the book (null
value, unparseable literal, operator without meaning for the field's
shape); the public entry points turn that into the constant true
predicate. Negated operators always negate a NULL-safe form of their
positive predicate, so a NULL column can never make a row disappear from
both a rule and its negation.
"""

import calendar
import logging
from datetime import date, datetime, time, timedelta
from typing import Any, List, Optional

from sqlalchemy import and_, case, false, func, not_, or_, true
from sqlalchemy.sql.elements import False_, True_

from ..db.models import UNSET
from .ast import Rule, RuleOperator
from .fields import ValueShape

logger = logging.getLogger(__name__)

LIKE_ESCAPE = '\\'

TIME_UNITS = {
    'day': 'days', 'days': 'days',
    'week': 'weeks', 'weeks': 'weeks',
    'month': 'months', 'months': 'months',
    'year': 'years', 'years': 'years',
}

PERIODS = ('day', 'week', 'month', 'year')

WEEKDAYS = {name: index for index, name in enumerate(
    ['monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday']
)}

ORDERING = {
    RuleOperator.GREATER_THAN: lambda expr, lit: expr > lit,
    RuleOperator.GREATER_THAN_EQUAL_TO: lambda expr, lit: expr >= lit,
    RuleOperator.LESS_THAN: lambda expr, lit: expr < lit,
    RuleOperator.LESS_THAN_EQUAL_TO: lambda expr, lit: expr <= lit,
}

SUBSTRING = (
    RuleOperator.CONTAINS,
    RuleOperator.DOES_NOT_CONTAIN,
    RuleOperator.STARTS_WITH,
    RuleOperator.ENDS_WITH,
)


def negate(expression):
    """NOT over a predicate that may evaluate to NULL; NULL counts as false."""
    if isinstance(expression, True_):
        return false()
    if isinstance(expression, False_):
        return true()
    return not_(case((expression, true()), else_=false()))


def escape_like(text: str) -> str:
    return (
        text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace('%', LIKE_ESCAPE + '%')
        .replace('_', LIKE_ESCAPE + '_')
    )


def as_list(value: Any) -> List[Any]:
    """Rule value as a list of candidates, dropping nulls."""
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [item for item in value if item is not None]
    return [value]


# Literal parsing. Every parser returns None when the literal is unusable.

def parse_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return None


def parse_count(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def parse_boolean(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ('true', '1', 'yes'):
        return True
    if text in ('false', '0', 'no'):
        return False
    return None


def parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    text = str(value).strip()
    if text.endswith('Z'):
        text = text[:-1]
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    # Catalog timestamps are naive local times
    return parsed.replace(tzinfo=None)


def parse_date(value: Any) -> Optional[date]:
    parsed = parse_datetime(value)
    return parsed.date() if parsed else None


def is_date_only(value: Any) -> bool:
    if isinstance(value, datetime):
        return False
    if isinstance(value, date):
        return True
    text = str(value).strip()
    return len(text) == 10 and parse_date(text) is not None


# Relative dates

def subtract_months(moment: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping the day to the target month's end."""
    index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def shift_back(now: datetime, count: int, unit: Optional[str]) -> datetime:
    """
    Return now minus count units; unknown or missing units mean days.

    Shifts reaching before year 1 clamp to datetime.min.
    """
    unit = TIME_UNITS.get(str(unit).strip().lower(), 'days') if unit else 'days'
    try:
        if unit == 'weeks':
            return now - timedelta(weeks=count)
        if unit == 'months':
            return subtract_months(now, count)
        if unit == 'years':
            return subtract_months(now, count * 12)
        return now - timedelta(days=count)
    except (OverflowError, ValueError):
        return datetime.min


def next_midnight(moment: datetime) -> Optional[datetime]:
    """Start of the day after moment, or None past datetime.max."""
    try:
        return datetime.combine(moment.date(), time.min) + timedelta(days=1)
    except OverflowError:
        return None


def period_start(now: datetime, period: Optional[str], week_start: str = 'monday') -> datetime:
    """Midnight at the start of the current day, week, month or year."""
    period = str(period).strip().lower() if period else 'year'
    midnight = datetime.combine(now.date(), time.min)
    if period == 'day':
        return midnight
    if period == 'week':
        first_weekday = WEEKDAYS.get(str(week_start).lower(), 0)
        return midnight - timedelta(days=(now.weekday() - first_weekday) % 7)
    if period == 'month':
        return midnight.replace(day=1)
    return midnight.replace(month=1, day=1)


class OperatorEngine:
    """
    Builds predicates for scalar and collection fields.

    Args:
        now: Reference time for relative date operators
        week_start: First day of the week for THIS_PERIOD = week
    """

    def __init__(self, now: datetime, week_start: str = 'monday'):
        self.now = now
        self.week_start = week_start

    # Public entry points

    def scalar(self, rule: Rule, expression, shape: ValueShape, normalize=None):
        predicate = self._scalar(rule, expression, shape, normalize)
        return true() if predicate is None else predicate

    def collection(self, rule: Rule, relationship, member, shape: ValueShape):
        predicate = self._collection(rule, relationship, member, shape)
        return true() if predicate is None else predicate

    # Literals

    def _literal(self, raw: Any, shape: ValueShape, normalize=None):
        if shape == ValueShape.STRING:
            text = str(raw).strip()
            if normalize:
                text = normalize(text)
            return text.lower()
        if shape == ValueShape.ENUM:
            return str(raw).strip().upper()
        if shape == ValueShape.NUMBER:
            return parse_number(raw)
        if shape == ValueShape.ID:
            return parse_count(raw)
        if shape == ValueShape.BOOLEAN:
            return parse_boolean(raw)
        if shape == ValueShape.DATE:
            return parse_date(raw)
        return parse_datetime(raw)

    def _literals(self, value: Any, shape: ValueShape, normalize=None) -> list:
        literals = [self._literal(raw, shape, normalize) for raw in as_list(value)]
        return [literal for literal in literals if literal is not None]

    def _unsupported(self, rule: Rule, shape: ValueShape):
        logger.debug(
            f"Operator '{rule.operator.value}' has no meaning for {shape.value} "
            f"field '{rule.field.value}', rule ignored"
        )
        return None

    # Scalars

    def _equals_one(self, expression, shape: ValueShape, literal):
        if shape == ValueShape.STRING:
            return func.lower(expression) == literal
        if shape == ValueShape.ENUM:
            if literal == UNSET:
                return expression.is_(None)
            return func.upper(expression) == literal
        if shape == ValueShape.DATETIME:
            day = datetime.combine(literal.date(), time.min)
            end = next_midnight(literal)
            if end is None:
                return expression >= day
            return and_(expression >= day, expression < end)
        return expression == literal

    def _equals_any(self, rule, expression, shape, normalize):
        literals = self._literals(rule.value, shape, normalize)
        if not literals:
            return None
        return or_(*[self._equals_one(expression, shape, lit) for lit in literals])

    def _is_empty(self, expression, shape):
        if shape == ValueShape.STRING:
            return or_(expression.is_(None), func.trim(expression) == '')
        return expression.is_(None)

    def _substring(self, rule, expression, shape):
        if shape not in (ValueShape.STRING, ValueShape.ENUM):
            return self._unsupported(rule, shape)
        patterns = [self._pattern(rule.operator, raw) for raw in as_list(rule.value)]
        if not patterns:
            return None
        lowered = func.lower(expression)
        matches = or_(*[lowered.like(p, escape=LIKE_ESCAPE) for p in patterns])
        if rule.operator == RuleOperator.DOES_NOT_CONTAIN:
            return negate(matches)
        return matches

    def _pattern(self, operator: RuleOperator, raw: Any) -> str:
        text = escape_like(str(raw).lower())
        if operator == RuleOperator.STARTS_WITH:
            return f"{text}%"
        if operator == RuleOperator.ENDS_WITH:
            return f"%{text}"
        return f"%{text}%"

    def _ordered_literal(self, raw, shape):
        if raw is None:
            return None
        if shape == ValueShape.NUMBER:
            return parse_number(raw)
        if shape == ValueShape.DATE:
            return parse_date(raw)
        return parse_datetime(raw)

    def _compare(self, rule, expression, shape):
        if shape not in (ValueShape.NUMBER, ValueShape.DATE, ValueShape.DATETIME):
            return self._unsupported(rule, shape)
        literal = self._ordered_literal(rule.value, shape)
        if literal is None:
            return None
        if shape == ValueShape.DATETIME and is_date_only(rule.value):
            # A bare date on a timestamp covers that whole day
            end = next_midnight(literal)
            if rule.operator == RuleOperator.GREATER_THAN:
                return false() if end is None else expression >= end
            if rule.operator == RuleOperator.LESS_THAN_EQUAL_TO:
                return expression.isnot(None) if end is None else expression < end
        return ORDERING[rule.operator](expression, literal)

    def _between(self, rule, expression, shape):
        if shape not in (ValueShape.NUMBER, ValueShape.DATE, ValueShape.DATETIME):
            return self._unsupported(rule, shape)
        low = self._ordered_literal(rule.value_start, shape)
        high = self._ordered_literal(rule.value_end, shape)
        if low is None or high is None:
            return None
        if shape == ValueShape.DATETIME and is_date_only(rule.value_end):
            end = next_midnight(high)
            if end is None:
                return expression >= low
            return and_(expression >= low, expression < end)
        return and_(expression >= low, expression <= high)

    def _relative(self, rule, expression, shape):
        if shape not in (ValueShape.DATE, ValueShape.DATETIME):
            return self._unsupported(rule, shape)
        count = parse_count(rule.value)
        if count is None:
            return None
        threshold = shift_back(self.now, count, rule.value_end)
        if shape == ValueShape.DATE:
            threshold = threshold.date()
        if rule.operator == RuleOperator.WITHIN_LAST:
            return expression >= threshold
        return expression < threshold

    def _this_period(self, rule, expression, shape):
        if shape not in (ValueShape.DATE, ValueShape.DATETIME):
            return self._unsupported(rule, shape)
        start = period_start(self.now, rule.value, self.week_start)
        end = self.now
        if shape == ValueShape.DATE:
            start, end = start.date(), end.date()
        return and_(expression >= start, expression <= end)

    def _scalar(self, rule: Rule, expression, shape: ValueShape, normalize=None):
        op = rule.operator

        if op in (RuleOperator.EQUALS, RuleOperator.INCLUDES_ANY):
            return self._equals_any(rule, expression, shape, normalize)

        if op in (RuleOperator.NOT_EQUALS, RuleOperator.EXCLUDES_ALL):
            matches = self._equals_any(rule, expression, shape, normalize)
            return None if matches is None else negate(matches)

        if op == RuleOperator.INCLUDES_ALL:
            literals = self._literals(rule.value, shape, normalize)
            if not literals:
                return None
            return and_(*[self._equals_one(expression, shape, lit) for lit in literals])

        if op in SUBSTRING:
            return self._substring(rule, expression, shape)

        if op == RuleOperator.IS_EMPTY:
            return self._is_empty(expression, shape)

        if op == RuleOperator.IS_NOT_EMPTY:
            return not_(self._is_empty(expression, shape))

        if op in ORDERING:
            return self._compare(rule, expression, shape)

        if op == RuleOperator.IN_BETWEEN:
            return self._between(rule, expression, shape)

        if op in (RuleOperator.WITHIN_LAST, RuleOperator.OLDER_THAN):
            return self._relative(rule, expression, shape)

        if op == RuleOperator.THIS_PERIOD:
            return self._this_period(rule, expression, shape)

        return self._unsupported(rule, shape)

    # Collections

    def _member_in(self, member, shape, literals):
        if shape == ValueShape.STRING:
            return func.lower(member).in_(literals)
        return member.in_(literals)

    def _member_equals(self, member, shape, literal):
        if shape == ValueShape.STRING:
            return func.lower(member) == literal
        return member == literal

    def _collection(self, rule: Rule, relationship, member, shape: ValueShape):
        op = rule.operator

        if op == RuleOperator.IS_EMPTY:
            return ~relationship.any()

        if op == RuleOperator.IS_NOT_EMPTY:
            return relationship.any()

        if op in SUBSTRING:
            if shape != ValueShape.STRING:
                return self._unsupported(rule, shape)
            patterns = [self._pattern(op, raw) for raw in as_list(rule.value)]
            if not patterns:
                return None
            lowered = func.lower(member)
            some_member = relationship.any(
                or_(*[lowered.like(p, escape=LIKE_ESCAPE) for p in patterns])
            )
            return ~some_member if op == RuleOperator.DOES_NOT_CONTAIN else some_member

        if op in (RuleOperator.EQUALS, RuleOperator.NOT_EQUALS,
                  RuleOperator.INCLUDES_ANY, RuleOperator.EXCLUDES_ALL,
                  RuleOperator.INCLUDES_ALL):
            literals = self._literals(rule.value, shape)
            if not literals:
                return None
            if op == RuleOperator.INCLUDES_ALL:
                return and_(*[
                    relationship.any(self._member_equals(member, shape, lit))
                    for lit in literals
                ])
            some_member = relationship.any(self._member_in(member, shape, literals))
            if op in (RuleOperator.NOT_EQUALS, RuleOperator.EXCLUDES_ALL):
                return ~some_member
            return some_member

        return self._unsupported(rule, shape)
