"""
Declarative book filter rules.

Rule trees are parsed into immutable Group/Rule nodes and compiled into a
single SQLAlchemy predicate over Book for one acting user.
"""

from .ast import (
    Group, Rule, JoinType, RuleField, RuleOperator, RuleValidationError,
    parse_group, parse_rule, validate_tree
)
from .compiler import BookSpecification, RuleCompiler, to_specification
from .fields import FieldKind, ValueShape, FIELD_CATALOG, field_spec
from .presence import presence_keys

__all__ = [
    'Group',
    'Rule',
    'JoinType',
    'RuleField',
    'RuleOperator',
    'RuleValidationError',
    'parse_group',
    'parse_rule',
    'validate_tree',
    'BookSpecification',
    'RuleCompiler',
    'to_specification',
    'FieldKind',
    'ValueShape',
    'FIELD_CATALOG',
    'field_spec',
    'presence_keys',
]
