"""
Rule tree for magic-shelf filters.

A filter is a tree of Group nodes (AND/OR over children) whose leaves are
Rule nodes (field, operator, value, optional value range). The tree is
built once per request from its JSON form and never mutated:

    group := {type: 'group', join: 'and' | 'or', rules: [group | rule, ...]}
    rule  := {field: str, operator: str, value?: any,
              valueStart?: any, valueEnd?: any}

Field identifiers come from a closed enumeration; names outside it parse to
RuleField.UNRECOGNIZED so that stale or hand-written trees still evaluate.
Operators, joins and the presence of field/operator are structural and are
validated here, before any predicate is built.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
import logging

logger = logging.getLogger(__name__)


class RuleValidationError(ValueError):
    """Raised for a structurally invalid rule tree."""


class JoinType(str, Enum):
    AND = 'and'
    OR = 'or'


class RuleOperator(str, Enum):
    EQUALS = 'equals'
    NOT_EQUALS = 'not_equals'
    CONTAINS = 'contains'
    DOES_NOT_CONTAIN = 'does_not_contain'
    STARTS_WITH = 'starts_with'
    ENDS_WITH = 'ends_with'
    GREATER_THAN = 'greater_than'
    GREATER_THAN_EQUAL_TO = 'greater_than_equal_to'
    LESS_THAN = 'less_than'
    LESS_THAN_EQUAL_TO = 'less_than_equal_to'
    IN_BETWEEN = 'in_between'
    IS_EMPTY = 'is_empty'
    IS_NOT_EMPTY = 'is_not_empty'
    INCLUDES_ANY = 'includes_any'
    EXCLUDES_ALL = 'excludes_all'
    INCLUDES_ALL = 'includes_all'
    WITHIN_LAST = 'within_last'
    OLDER_THAN = 'older_than'
    THIS_PERIOD = 'this_period'


class RuleField(str, Enum):
    LIBRARY = 'library'
    SHELF = 'shelf'
    TITLE = 'title'
    SUBTITLE = 'subtitle'
    AUTHORS = 'authors'
    CATEGORIES = 'categories'
    GENRE = 'genre'
    MOODS = 'moods'
    TAGS = 'tags'
    PUBLISHER = 'publisher'
    PUBLISHED_DATE = 'publishedDate'
    SERIES_NAME = 'seriesName'
    SERIES_NUMBER = 'seriesNumber'
    SERIES_TOTAL = 'seriesTotal'
    PAGE_COUNT = 'pageCount'
    LANGUAGE = 'language'
    ISBN13 = 'isbn13'
    ISBN10 = 'isbn10'
    DESCRIPTION = 'description'
    NARRATOR = 'narrator'
    AGE_RATING = 'ageRating'
    CONTENT_RATING = 'contentRating'
    ABRIDGED = 'abridged'
    IS_PHYSICAL = 'isPhysical'
    AMAZON_RATING = 'amazonRating'
    AMAZON_REVIEW_COUNT = 'amazonReviewCount'
    GOODREADS_RATING = 'goodreadsRating'
    GOODREADS_REVIEW_COUNT = 'goodreadsReviewCount'
    HARDCOVER_RATING = 'hardcoverRating'
    HARDCOVER_REVIEW_COUNT = 'hardcoverReviewCount'
    RANOBEDB_RATING = 'ranobedbRating'
    LUBIMYCZYTAC_RATING = 'lubimyczytacRating'
    AUDIBLE_RATING = 'audibleRating'
    AUDIBLE_REVIEW_COUNT = 'audibleReviewCount'
    METADATA_SCORE = 'metadataScore'
    ADDED_ON = 'addedOn'
    FILE_TYPE = 'fileType'
    FILE_SIZE = 'fileSize'
    AUDIOBOOK_DURATION = 'audiobookDuration'
    READ_STATUS = 'readStatus'
    READING_PROGRESS = 'readingProgress'
    PERSONAL_RATING = 'personalRating'
    DATE_FINISHED = 'dateFinished'
    LAST_READ_TIME = 'lastReadTime'
    SERIES_STATUS = 'seriesStatus'
    SERIES_GAPS = 'seriesGaps'
    SERIES_POSITION = 'seriesPosition'
    METADATA_PRESENCE = 'metadataPresence'
    UNRECOGNIZED = '__unrecognized__'


def _lookup(enum_cls, raw: str):
    """Match a wire identifier by value or by member name, ignoring case."""
    key = raw.strip()
    for member in enum_cls:
        if key == member.value or key.upper() == member.name:
            return member
    lowered = key.lower()
    for member in enum_cls:
        if lowered == member.value.lower():
            return member
    return None


@dataclass(frozen=True)
class Rule:
    """A single leaf condition."""
    field: RuleField
    operator: RuleOperator
    value: Any = None
    value_start: Any = None
    value_end: Any = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'field': self.field.value,
            'operator': self.operator.value,
            'value': list(self.value) if isinstance(self.value, tuple) else self.value,
        }
        if self.value_start is not None:
            data['valueStart'] = self.value_start
        if self.value_end is not None:
            data['valueEnd'] = self.value_end
        return data


@dataclass(frozen=True)
class Group:
    """AND/OR over an ordered tuple of child Rules and Groups."""
    join: JoinType
    rules: Tuple[Union['Group', Rule], ...] = ()
    name: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.rules

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'type': 'group',
            'join': self.join.value,
            'rules': [child.to_dict() for child in self.rules],
        }
        if self.name:
            data['name'] = self.name
        return data


Node = Union[Group, Rule]


def _freeze(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(value)
    return value


def parse_rule(data: Mapping[str, Any]) -> Rule:
    """
    Build a Rule from its JSON form.

    Raises:
        RuleValidationError: If field or operator is missing, or the
            operator is not a known identifier.
    """
    if not isinstance(data, Mapping):
        raise RuleValidationError(f"Rule must be a mapping, got {type(data).__name__}")

    raw_field = data.get('field')
    if raw_field is None or (isinstance(raw_field, str) and not raw_field.strip()):
        raise RuleValidationError(f"Rule is missing a field identifier: {dict(data)}")

    raw_operator = data.get('operator')
    if raw_operator is None or (isinstance(raw_operator, str) and not raw_operator.strip()):
        raise RuleValidationError(f"Rule is missing an operator: {dict(data)}")

    if isinstance(raw_field, RuleField):
        field = raw_field
    else:
        field = _lookup(RuleField, str(raw_field))
        if field is None:
            logger.warning(f"Unrecognized rule field '{raw_field}', it will match every book")
            field = RuleField.UNRECOGNIZED

    if isinstance(raw_operator, RuleOperator):
        operator = raw_operator
    else:
        operator = _lookup(RuleOperator, str(raw_operator))
        if operator is None:
            raise RuleValidationError(f"Unknown rule operator '{raw_operator}'")

    return Rule(
        field=field,
        operator=operator,
        value=_freeze(data.get('value')),
        value_start=_freeze(data.get('valueStart', data.get('value_start'))),
        value_end=_freeze(data.get('valueEnd', data.get('value_end'))),
    )


def _is_group(data: Mapping[str, Any]) -> bool:
    kind = data.get('type')
    if kind is not None:
        return str(kind).lower() == 'group'
    return 'rules' in data or 'join' in data


def parse_group(data: Mapping[str, Any]) -> Group:
    """
    Build a Group (recursively) from its JSON form.

    Args:
        data: Mapping with 'join' and 'rules'

    Returns:
        Immutable Group tree

    Raises:
        RuleValidationError: If the tree is structurally invalid
    """
    if isinstance(data, Group):
        return data
    if not isinstance(data, Mapping):
        raise RuleValidationError(f"Group must be a mapping, got {type(data).__name__}")

    raw_join = data.get('join')
    join = _lookup(JoinType, str(raw_join)) if raw_join is not None else None
    if join is None:
        raise RuleValidationError(f"Group join must be 'and' or 'or', got {raw_join!r}")

    raw_rules = data.get('rules')
    if raw_rules is None:
        raw_rules = []
    if not isinstance(raw_rules, (list, tuple)):
        raise RuleValidationError(f"Group rules must be a list, got {type(raw_rules).__name__}")

    children: List[Node] = []
    for child in raw_rules:
        if child is None:
            continue
        if isinstance(child, (Group, Rule)):
            children.append(child)
        elif not isinstance(child, Mapping):
            raise RuleValidationError(f"Rule tree node must be a mapping, got {type(child).__name__}")
        elif _is_group(child):
            children.append(parse_group(child))
        else:
            children.append(parse_rule(child))

    return Group(join=join, rules=tuple(children), name=data.get('name'))


def validate_tree(node: Node) -> None:
    """Re-check a programmatically built tree before compiling it."""
    if isinstance(node, Rule):
        if not isinstance(node.field, RuleField):
            raise RuleValidationError(f"Rule field must be a RuleField, got {node.field!r}")
        if not isinstance(node.operator, RuleOperator):
            raise RuleValidationError(f"Rule operator must be a RuleOperator, got {node.operator!r}")
        return
    if not isinstance(node, Group):
        raise RuleValidationError(f"Unexpected rule tree node {node!r}")
    if not isinstance(node.join, JoinType):
        raise RuleValidationError(f"Group join must be a JoinType, got {node.join!r}")
    for child in node.rules:
        validate_tree(child)
