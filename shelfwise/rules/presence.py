"""
Metadata presence resolver.

Maps a presence key (the value of a metadataPresence rule) to a predicate
that holds when the book carries that piece of metadata. Strings must be
non-blank after trimming, collections non-empty; a boolean False still
counts as present.
"""

import logging

from sqlalchemy import and_, func, select, true

from ..db.models import Book, BookFile, ComicCreatorMapping, ComicCreatorRole, ComicMetadata, UserBookProgress
from .ast import Rule, RuleOperator
from .operators import negate

logger = logging.getLogger(__name__)

STRING_KEYS = {
    'title': 'title',
    'subtitle': 'subtitle',
    'description': 'description',
    'publisher': 'publisher',
    'language': 'language',
    'seriesName': 'series_name',
    'isbn13': 'isbn13',
    'isbn10': 'isbn10',
    'asin': 'asin',
    'contentRating': 'content_rating',
    'narrator': 'narrator',
    'goodreadsId': 'goodreads_id',
    'hardcoverId': 'hardcover_id',
    'googleId': 'google_id',
    'audibleId': 'audible_id',
    'lubimyczytacId': 'lubimyczytac_id',
    'ranobedbId': 'ranobedb_id',
    'comicvineId': 'comicvine_id',
    'thumbnailUrl': 'cover_hash',
}

VALUE_KEYS = {
    'pageCount': 'page_count',
    'seriesNumber': 'series_number',
    'seriesTotal': 'series_total',
    'ageRating': 'age_rating',
    'publishedDate': 'published_date',
    'abridged': 'abridged',
    'amazonRating': 'amazon_rating',
    'amazonReviewCount': 'amazon_review_count',
    'goodreadsRating': 'goodreads_rating',
    'goodreadsReviewCount': 'goodreads_review_count',
    'hardcoverRating': 'hardcover_rating',
    'hardcoverReviewCount': 'hardcover_review_count',
    'ranobedbRating': 'ranobedb_rating',
    'lubimyczytacRating': 'lubimyczytac_rating',
    'audibleRating': 'audible_rating',
    'audibleReviewCount': 'audible_review_count',
}

COLLECTION_KEYS = {
    'authors': 'authors',
    'categories': 'categories',
    'moods': 'moods',
    'tags': 'tags',
}

COMIC_COLLECTION_KEYS = {
    'comicCharacters': 'characters',
    'comicTeams': 'teams',
    'comicLocations': 'locations',
}

COMIC_CREATOR_KEYS = {
    'comicPencillers': ComicCreatorRole.PENCILLER,
    'comicInkers': ComicCreatorRole.INKER,
    'comicColorists': ComicCreatorRole.COLORIST,
    'comicLetterers': ComicCreatorRole.LETTERER,
    'comicCoverArtists': ComicCreatorRole.COVER_ARTIST,
    'comicEditors': ComicCreatorRole.EDITOR,
}


def presence_keys():
    """All keys the resolver understands."""
    keys = set(STRING_KEYS) | set(VALUE_KEYS) | set(COLLECTION_KEYS)
    keys |= set(COMIC_COLLECTION_KEYS) | set(COMIC_CREATOR_KEYS)
    keys |= {'personalRating', 'audiobookDuration'}
    return sorted(keys)


def is_present(key: str, user_id):
    """Predicate for 'the book has <key>'; unknown keys give constant true."""
    if key in STRING_KEYS:
        column = getattr(Book, STRING_KEYS[key])
        return and_(column.isnot(None), func.trim(column) != '')
    if key in VALUE_KEYS:
        return getattr(Book, VALUE_KEYS[key]).isnot(None)
    if key in COLLECTION_KEYS:
        return getattr(Book, COLLECTION_KEYS[key]).any()
    if key in COMIC_COLLECTION_KEYS:
        members = getattr(ComicMetadata, COMIC_COLLECTION_KEYS[key])
        return Book.comic.has(members.any())
    if key in COMIC_CREATOR_KEYS:
        role = COMIC_CREATOR_KEYS[key].value
        return Book.comic.has(ComicMetadata.creators.any(ComicCreatorMapping.role == role))
    if key == 'personalRating':
        return (
            select(UserBookProgress.id)
            .where(
                UserBookProgress.book_id == Book.id,
                UserBookProgress.user_id == user_id,
                UserBookProgress.personal_rating.isnot(None),
            )
            .exists()
        )
    if key == 'audiobookDuration':
        return Book.files.any(BookFile.duration_seconds.isnot(None))

    logger.debug(f"Unknown metadata presence key '{key}', treated as present")
    return true()


def presence_predicate(rule: Rule, user_id):
    """EQUALS means the key is present, NOT_EQUALS that it is absent."""
    if rule.operator not in (RuleOperator.EQUALS, RuleOperator.NOT_EQUALS):
        logger.debug(f"metadataPresence only supports equals/not_equals, got '{rule.operator.value}'")
        return true()

    present = true() if rule.value is None else is_present(str(rule.value).strip(), user_id)
    if rule.operator == RuleOperator.NOT_EQUALS:
        return negate(present)
    return present
