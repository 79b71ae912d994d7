"""
Field catalog for the rule compiler.

Every RuleField maps to exactly one resolution strategy (FieldKind) and one
value shape. Scalar and collection fields also name where their values
live; series, progress and presence fields are resolved by their own
engines.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy import func, select

from ..db.models import Author, Book, BookFile, Category, Mood, Shelf, Tag
from .ast import RuleField


class FieldKind(Enum):
    SCALAR = 'scalar'
    COLLECTION = 'collection'
    PRESENCE = 'presence'
    SERIES = 'series'
    PROGRESS = 'progress'
    UNRECOGNIZED = 'unrecognized'


class ValueShape(Enum):
    STRING = 'string'
    NUMBER = 'number'
    DATE = 'date'
    DATETIME = 'datetime'
    BOOLEAN = 'boolean'
    ENUM = 'enum'
    ID = 'id'


# Archive and format aliases the UI exposes but files never carry
FILE_TYPE_ALIASES = {
    'cbr': 'cbx',
    'cbz': 'cbx',
    'cb7': 'cbx',
    'azw': 'azw3',
}


def normalize_file_type(token: str) -> str:
    token = str(token).strip().lower().lstrip('.')
    return FILE_TYPE_ALIASES.get(token, token)


@dataclass(frozen=True)
class FieldSpec:
    kind: FieldKind
    shape: ValueShape
    attribute: Optional[str] = None
    normalize: Optional[Callable[[str], str]] = None


def _scalar(attribute, shape=ValueShape.STRING, normalize=None):
    return FieldSpec(FieldKind.SCALAR, shape, attribute, normalize)


def _collection(attribute, shape=ValueShape.STRING):
    return FieldSpec(FieldKind.COLLECTION, shape, attribute)


FIELD_CATALOG: Dict[RuleField, FieldSpec] = {
    RuleField.LIBRARY: _scalar('library_id', ValueShape.ID),
    RuleField.SHELF: _collection('shelves', ValueShape.ID),
    RuleField.TITLE: _scalar('title'),
    RuleField.SUBTITLE: _scalar('subtitle'),
    RuleField.AUTHORS: _collection('authors'),
    RuleField.CATEGORIES: _collection('categories'),
    RuleField.GENRE: _collection('categories'),
    RuleField.MOODS: _collection('moods'),
    RuleField.TAGS: _collection('tags'),
    RuleField.PUBLISHER: _scalar('publisher'),
    RuleField.PUBLISHED_DATE: _scalar('published_date', ValueShape.DATE),
    RuleField.SERIES_NAME: _scalar('series_name'),
    RuleField.SERIES_NUMBER: _scalar('series_number', ValueShape.NUMBER),
    RuleField.SERIES_TOTAL: _scalar('series_total', ValueShape.NUMBER),
    RuleField.PAGE_COUNT: _scalar('page_count', ValueShape.NUMBER),
    RuleField.LANGUAGE: _scalar('language'),
    RuleField.ISBN13: _scalar('isbn13'),
    RuleField.ISBN10: _scalar('isbn10'),
    RuleField.DESCRIPTION: _scalar('description'),
    RuleField.NARRATOR: _scalar('narrator'),
    RuleField.AGE_RATING: _scalar('age_rating', ValueShape.NUMBER),
    RuleField.CONTENT_RATING: _scalar('content_rating'),
    RuleField.ABRIDGED: _scalar('abridged', ValueShape.BOOLEAN),
    RuleField.IS_PHYSICAL: _scalar('is_physical', ValueShape.BOOLEAN),
    RuleField.AMAZON_RATING: _scalar('amazon_rating', ValueShape.NUMBER),
    RuleField.AMAZON_REVIEW_COUNT: _scalar('amazon_review_count', ValueShape.NUMBER),
    RuleField.GOODREADS_RATING: _scalar('goodreads_rating', ValueShape.NUMBER),
    RuleField.GOODREADS_REVIEW_COUNT: _scalar('goodreads_review_count', ValueShape.NUMBER),
    RuleField.HARDCOVER_RATING: _scalar('hardcover_rating', ValueShape.NUMBER),
    RuleField.HARDCOVER_REVIEW_COUNT: _scalar('hardcover_review_count', ValueShape.NUMBER),
    RuleField.RANOBEDB_RATING: _scalar('ranobedb_rating', ValueShape.NUMBER),
    RuleField.LUBIMYCZYTAC_RATING: _scalar('lubimyczytac_rating', ValueShape.NUMBER),
    RuleField.AUDIBLE_RATING: _scalar('audible_rating', ValueShape.NUMBER),
    RuleField.AUDIBLE_REVIEW_COUNT: _scalar('audible_review_count', ValueShape.NUMBER),
    RuleField.METADATA_SCORE: _scalar('metadata_match_score', ValueShape.NUMBER),
    RuleField.ADDED_ON: _scalar('added_on', ValueShape.DATETIME),
    # Resolved from the book's files rather than the book row
    RuleField.FILE_TYPE: _scalar('file_type', normalize=normalize_file_type),
    RuleField.FILE_SIZE: _scalar('file_size_kb', ValueShape.NUMBER),
    RuleField.AUDIOBOOK_DURATION: _scalar('duration_seconds', ValueShape.NUMBER),
    RuleField.READ_STATUS: FieldSpec(FieldKind.PROGRESS, ValueShape.ENUM, 'read_status'),
    RuleField.READING_PROGRESS: FieldSpec(FieldKind.PROGRESS, ValueShape.NUMBER, 'progress_percent'),
    RuleField.PERSONAL_RATING: FieldSpec(FieldKind.PROGRESS, ValueShape.NUMBER, 'personal_rating'),
    RuleField.DATE_FINISHED: FieldSpec(FieldKind.PROGRESS, ValueShape.DATETIME, 'date_finished'),
    RuleField.LAST_READ_TIME: FieldSpec(FieldKind.PROGRESS, ValueShape.DATETIME, 'last_read_time'),
    RuleField.SERIES_STATUS: FieldSpec(FieldKind.SERIES, ValueShape.ENUM),
    RuleField.SERIES_GAPS: FieldSpec(FieldKind.SERIES, ValueShape.ENUM),
    RuleField.SERIES_POSITION: FieldSpec(FieldKind.SERIES, ValueShape.ENUM),
    RuleField.METADATA_PRESENCE: FieldSpec(FieldKind.PRESENCE, ValueShape.STRING),
    RuleField.UNRECOGNIZED: FieldSpec(FieldKind.UNRECOGNIZED, ValueShape.STRING),
}

_COLLECTION_MEMBERS = {
    'authors': Author.name,
    'categories': Category.name,
    'moods': Mood.name,
    'tags': Tag.name,
    'shelves': Shelf.id,
}


def field_spec(field: RuleField) -> FieldSpec:
    """Look up the catalog entry for a field."""
    return FIELD_CATALOG[field]


def _primary_file_value(column):
    # Primary file first, then the oldest file record
    return (
        select(column)
        .where(BookFile.book_id == Book.id)
        .order_by(BookFile.is_primary.desc(), BookFile.id)
        .limit(1)
        .scalar_subquery()
    )


def scalar_expression(field: RuleField):
    """SQL expression holding the value of a SCALAR field for the root Book."""
    spec = FIELD_CATALOG[field]
    if field in (RuleField.FILE_TYPE, RuleField.FILE_SIZE):
        return _primary_file_value(getattr(BookFile, spec.attribute))
    if field == RuleField.AUDIOBOOK_DURATION:
        return (
            select(func.max(BookFile.duration_seconds))
            .where(BookFile.book_id == Book.id)
            .scalar_subquery()
        )
    return getattr(Book, spec.attribute)


def collection_source(field: RuleField) -> Tuple[object, object]:
    """Return (relationship on Book, member column) for a COLLECTION field."""
    spec = FIELD_CATALOG[field]
    return getattr(Book, spec.attribute), _COLLECTION_MEMBERS[spec.attribute]
