"""
Per-user reading facts as correlated scalar subqueries.

Every expression here is keyed by the acting user's id and correlated to a
book entity (the root Book, or a sibling alias inside series subqueries).
Rows belonging to other users never reach the result, and the root query
is never joined against the progress table, so it cannot drop or
duplicate books.
"""

from sqlalchemy import func, select

from ..db.functions import greatest
from ..db.models import Book, ReadStatus, UserBookProgress

# Every per-source percentage that sync collaborators record
PROGRESS_SOURCES = (
    UserBookProgress.koreader_progress_percent,
    UserBookProgress.kobo_progress_percent,
    UserBookProgress.pdf_progress_percent,
    UserBookProgress.epub_progress_percent,
    UserBookProgress.cbx_progress_percent,
)


def _for_user(column, user_id, book):
    return (
        select(column)
        .where(
            UserBookProgress.book_id == book.id,
            UserBookProgress.user_id == user_id,
        )
        .limit(1)
        .scalar_subquery()
    )


def read_status(user_id, book=Book):
    """Status string of the user's row, NULL when there is no row."""
    return _for_user(UserBookProgress.read_status, user_id, book)


def series_read_status(user_id, book=Book):
    """Status for series facts: a missing row or status counts as UNREAD."""
    return func.coalesce(read_status(user_id, book), ReadStatus.UNREAD.value)


def resolved_progress(user_id, book=Book):
    """
    Greatest recorded percentage across all sources, 0 without a row.

    Null sources are read as 0, so recording a higher percentage on any
    source can only raise the result.
    """
    best = greatest(*[func.coalesce(source, 0.0) for source in PROGRESS_SOURCES])
    return func.coalesce(_for_user(best, user_id, book), 0.0)


def progress_expression(attribute: str, user_id, book=Book):
    """Resolve a PROGRESS field attribute to its per-user expression."""
    if attribute == 'progress_percent':
        return resolved_progress(user_id, book)
    if attribute == 'read_status':
        return read_status(user_id, book)
    return _for_user(getattr(UserBookProgress, attribute), user_id, book)
