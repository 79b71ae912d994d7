"""
Database module for shelfwise.

Catalog models and per-library database handles.
"""

from .models import (
    Base, Library, User, Book, Author, Category, Mood, Tag, Shelf, BookFile,
    ComicMetadata, ComicCharacter, ComicTeam, ComicLocation, ComicCreator,
    ComicCreatorMapping, UserBookProgress, MagicShelf, ReadStatus,
    ComicCreatorRole, UNSET
)
from .session import LibraryDatabase, get_or_create, transaction

__all__ = [
    'Base',
    'Library',
    'User',
    'Book',
    'Author',
    'Category',
    'Mood',
    'Tag',
    'Shelf',
    'BookFile',
    'ComicMetadata',
    'ComicCharacter',
    'ComicTeam',
    'ComicLocation',
    'ComicCreator',
    'ComicCreatorMapping',
    'UserBookProgress',
    'MagicShelf',
    'ReadStatus',
    'ComicCreatorRole',
    'UNSET',
    'LibraryDatabase',
    'get_or_create',
    'transaction',
]
