"""
Series aggregate engine.

Series facts are derived from the sibling set: every book sharing the root
book's exact, non-blank series name. Each classification is a correlated
subquery over an aliased Book, evaluated inside the same statement as the
rest of the filter, so no sibling set is materialized or cached.

A book that is not in a series never matches a series rule, whether the
rule asks for a category or for its absence. Position rules additionally
require the book itself to carry a series number.
"""

import logging

from sqlalchemy import Integer, and_, cast, distinct, func, select, true
from sqlalchemy.orm import aliased

from ..db.models import Book, ReadStatus
from .ast import Rule, RuleField, RuleOperator
from .operators import negate
from .progress import read_status, series_read_status

logger = logging.getLogger(__name__)

SERIES_STATUS_VALUES = ('fully_read', 'not_started', 'reading', 'completed', 'ongoing')
SERIES_GAPS_VALUES = ('any_gap', 'missing_first', 'missing_latest', 'duplicate_number')
SERIES_POSITION_VALUES = ('first_in_series', 'last_in_series', 'next_unread')

CATEGORIES = {
    RuleField.SERIES_STATUS: SERIES_STATUS_VALUES,
    RuleField.SERIES_GAPS: SERIES_GAPS_VALUES,
    RuleField.SERIES_POSITION: SERIES_POSITION_VALUES,
}


def has_series(book=Book):
    return and_(book.series_name.isnot(None), func.trim(book.series_name) != '')


class SeriesEngine:
    """Builds series classification predicates for one acting user."""

    def __init__(self, user_id):
        self.user_id = user_id

    def predicate(self, rule: Rule):
        if rule.operator not in (RuleOperator.EQUALS, RuleOperator.NOT_EQUALS):
            logger.debug(f"Series field '{rule.field.value}' only supports equals/not_equals")
            return true()
        if rule.value is None:
            return true()

        category = str(rule.value).strip().lower()
        if category not in CATEGORIES[rule.field]:
            logger.debug(f"Unknown {rule.field.value} category '{rule.value}', rule ignored")
            return true()

        condition = getattr(self, f"_{category}")()
        guard = has_series()
        if rule.field == RuleField.SERIES_POSITION:
            guard = and_(guard, Book.series_number.isnot(None))

        if rule.operator == RuleOperator.NOT_EQUALS:
            return and_(guard, negate(condition))
        return and_(guard, condition)

    # Sibling helpers

    def _siblings(self):
        return aliased(Book)

    def _same_series(self, sibling):
        return sibling.series_name == Book.series_name

    def _any_sibling(self, *criteria):
        sibling = self._siblings()
        return self._exists(sibling, *criteria)

    def _exists(self, sibling, *criteria):
        conditions = [self._same_series(sibling)]
        conditions.extend(criterion(sibling) for criterion in criteria)
        return select(sibling.id).where(*conditions).exists()

    def _aggregate(self, function, column_name):
        sibling = self._siblings()
        return (
            select(function(getattr(sibling, column_name)))
            .where(self._same_series(sibling))
            .scalar_subquery()
        )

    def _status_of(self, sibling):
        return series_read_status(self.user_id, sibling)

    def _number_of(self, sibling):
        return cast(sibling.series_number, Integer)

    # SERIES_STATUS

    def _fully_read(self):
        return ~self._any_sibling(
            lambda s: self._status_of(s) != ReadStatus.READ.value
        )

    def _not_started(self):
        return ~self._any_sibling(
            lambda s: self._status_of(s) != ReadStatus.UNREAD.value
        )

    def _reading(self):
        return self._any_sibling(
            lambda s: read_status(self.user_id, s).in_(
                [ReadStatus.READING.value, ReadStatus.RE_READING.value]
            )
        )

    def _series_total(self):
        return self._aggregate(func.max, 'series_total')

    def _completed(self):
        total = self._series_total()
        return self._any_sibling(lambda s: self._number_of(s) == total)

    def _ongoing(self):
        return and_(self._series_total().isnot(None), ~self._completed())

    # SERIES_GAPS

    def _grouped_numbers(self, having):
        sibling = self._siblings()
        number = self._number_of(sibling)
        return (
            select(sibling.series_name)
            .where(self._same_series(sibling), sibling.series_number.isnot(None))
            .group_by(sibling.series_name)
            .having(having(sibling, number))
            .exists()
        )

    def _any_gap(self):
        return self._grouped_numbers(
            lambda s, n: func.count(distinct(n)) < func.max(n) - func.min(n) + 1
        )

    def _missing_first(self):
        return and_(
            ~self._any_sibling(lambda s: self._number_of(s) == 1),
            self._any_sibling(lambda s: s.series_number > 1),
        )

    def _missing_latest(self):
        return self._ongoing()

    def _duplicate_number(self):
        return self._grouped_numbers(
            lambda s, n: func.count(s.series_number) > func.count(distinct(s.series_number))
        )

    # SERIES_POSITION

    def _first_in_series(self):
        return Book.series_number == self._aggregate(func.min, 'series_number')

    def _last_in_series(self):
        return Book.series_number == self._aggregate(func.max, 'series_number')

    def _next_unread(self):
        unread = ReadStatus.UNREAD.value

        def lower(sibling):
            return sibling.series_number < Book.series_number

        return and_(
            series_read_status(self.user_id) == unread,
            ~self._any_sibling(lower, lambda s: self._status_of(s) == unread),
            self._any_sibling(lower, lambda s: self._status_of(s) != unread),
        )
