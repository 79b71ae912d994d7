"""
Rule compiler: folds a rule tree into one SQLAlchemy predicate over Book.

The compiler never touches a session. It builds a WHERE clause in which
every derived fact (series aggregates, resolved reading progress, file
attributes) is a correlated subquery, and hands it back wrapped in a
BookSpecification for the caller to paginate, sort and execute.
"""

import logging
from datetime import datetime
from typing import Any, Mapping, Optional, Union

from sqlalchemy import and_, or_, select, true

from ..db.models import Book
from .ast import Group, JoinType, Rule, parse_group, validate_tree
from .fields import FieldKind, collection_source, field_spec, scalar_expression
from .operators import OperatorEngine
from .presence import presence_predicate
from .progress import progress_expression
from .series import SeriesEngine

logger = logging.getLogger(__name__)


class BookSpecification:
    """
    A compiled filter over Book.

    Example:
        >>> spec = to_specification(rules, user_id=1)
        >>> books = spec.apply(session.query(Book)).order_by(Book.title).all()
    """

    def __init__(self, predicate):
        self.predicate = predicate

    def apply(self, statement):
        """Restrict a Query or Select whose root entity is Book."""
        return statement.filter(self.predicate)

    def select(self):
        return select(Book).where(self.predicate)

    def __and__(self, other: 'BookSpecification') -> 'BookSpecification':
        return BookSpecification(and_(self.predicate, other.predicate))

    def __or__(self, other: 'BookSpecification') -> 'BookSpecification':
        return BookSpecification(or_(self.predicate, other.predicate))

    def __repr__(self):
        return f"<BookSpecification({self.predicate})>"


class RuleCompiler:
    """
    Compiles rule trees for one acting user.

    Args:
        user_id: The user whose reading progress and ratings rules refer to
        now: Reference time for relative date rules (defaults to now)
        week_start: First day of the week ('monday' or 'sunday')
    """

    def __init__(self, user_id: int, now: Optional[datetime] = None, week_start: str = 'monday'):
        self.user_id = user_id
        self.now = now or datetime.now()
        self.operators = OperatorEngine(self.now, week_start)
        self.series = SeriesEngine(user_id)

    def compile(self, group: Union[Group, Mapping[str, Any]]):
        """Compile a Group (or its JSON form) into a WHERE predicate."""
        if not isinstance(group, Group):
            group = parse_group(group)
        validate_tree(group)
        return self._group(group)

    def _group(self, group: Group):
        if group.is_empty:
            return true()

        predicates = [
            self._group(child) if isinstance(child, Group) else self.compile_rule(child)
            for child in group.rules
        ]
        if group.join == JoinType.AND:
            return and_(*predicates)
        return or_(*predicates)

    def compile_rule(self, rule: Rule):
        """Compile a single leaf rule."""
        spec = field_spec(rule.field)

        if spec.kind == FieldKind.SCALAR:
            return self.operators.scalar(
                rule, scalar_expression(rule.field), spec.shape, spec.normalize
            )
        if spec.kind == FieldKind.COLLECTION:
            relationship, member = collection_source(rule.field)
            return self.operators.collection(rule, relationship, member, spec.shape)
        if spec.kind == FieldKind.PROGRESS:
            expression = progress_expression(spec.attribute, self.user_id)
            return self.operators.scalar(rule, expression, spec.shape)
        if spec.kind == FieldKind.SERIES:
            return self.series.predicate(rule)
        if spec.kind == FieldKind.PRESENCE:
            return presence_predicate(rule, self.user_id)

        logger.debug(f"Rule on unrecognized field matches every book: {rule}")
        return true()


def to_specification(
    group: Union[Group, Mapping[str, Any]],
    user_id: int,
    now: Optional[datetime] = None,
    week_start: str = 'monday',
) -> BookSpecification:
    """
    Compile a rule tree into a BookSpecification.

    Args:
        group: Root Group, or its JSON form
        user_id: Acting user id
        now: Reference time for relative date rules
        week_start: First day of the week for 'this week'

    Returns:
        BookSpecification wrapping the predicate

    Raises:
        RuleValidationError: If the tree is structurally invalid
    """
    compiler = RuleCompiler(user_id, now=now, week_start=week_start)
    return BookSpecification(compiler.compile(group))
