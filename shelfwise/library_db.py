"""
Database-backed Library class for shelfwise.

Provides a small API over the catalog: writers used by ingestion and sync
collaborators (and tests), simple readers, and rule-tree filtering.
"""

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union
from datetime import datetime
import logging

from sqlalchemy import func, inspect
from sqlalchemy.orm import Query, Session

from .db.models import (
    Author, Book, BookFile, Category, ComicCharacter, ComicCreator,
    ComicCreatorMapping, ComicCreatorRole, ComicLocation, ComicMetadata,
    ComicTeam, Library as LibraryRow, MagicShelf, Mood, ReadStatus, Shelf, Tag,
    User, UserBookProgress
)
from .db.session import LibraryDatabase, get_or_create, transaction
from .rules import Group, to_specification

logger = logging.getLogger(__name__)

_COLLECTIONS = {
    'authors': Author,
    'categories': Category,
    'moods': Mood,
    'tags': Tag,
}

_COMIC_COLLECTIONS = {
    'characters': ComicCharacter,
    'teams': ComicTeam,
    'locations': ComicLocation,
}

_PROGRESS_FIELDS = {
    'koreader_progress_percent', 'kobo_progress_percent', 'pdf_progress_percent',
    'epub_progress_percent', 'cbx_progress_percent', 'personal_rating',
    'date_finished', 'last_read_time',
}


class Library:
    """
    Database-backed book catalog.

    Usage:
        lib = Library.open("/path/to/library")
        reader = lib.add_user("alice")
        lib.add_book({"title": "Dune", "authors": ["Frank Herbert"]})
        books = lib.filter(rules, user_id=reader.id)
        lib.close()
    """

    def __init__(self, database: LibraryDatabase):
        self.database = database
        self.library_path = database.library_path
        self.session: Session = database.session()

    @classmethod
    def open(cls, library_path: Path, echo: bool = False) -> 'Library':
        """
        Open or create a library.

        Args:
            library_path: Path to library directory
            echo: If True, log all SQL statements

        Returns:
            Library instance
        """
        lib = cls(LibraryDatabase(library_path, echo=echo))
        logger.debug(f"Opened library at {lib.library_path}")
        return lib

    def close(self):
        """Close the session and dispose of this library's engine."""
        if self.database.disposed:
            return
        self.session.close()
        self.database.dispose()
        logger.debug(f"Closed library at {self.library_path}")

    # Catalog writers

    def add_library(self, name: str) -> LibraryRow:
        with transaction(self.session):
            row, created = get_or_create(self.session, LibraryRow, name=name)
        if created:
            logger.info(f"Added library '{name}'")
        return row

    def add_user(self, username: str, name: Optional[str] = None, is_admin: bool = False) -> User:
        """
        Create a user.

        Raises:
            ValueError: If the username is taken
        """
        if self.get_user_by_name(username):
            raise ValueError(f"User '{username}' already exists")
        user = User(username=username, name=name or username, is_admin=is_admin)
        with transaction(self.session):
            self.session.add(user)
        logger.info(f"Added user '{username}'")
        return user

    def add_book(self, metadata: Mapping[str, Any]) -> Book:
        """
        Add a book from a metadata dictionary.

        Scalar keys are Book column names. Collections ('authors',
        'categories', 'moods', 'tags') are lists of names, 'library' is a
        library name, 'files' a list of BookFile field dicts and 'comic' a
        dict with 'issue_number', 'volume_name', 'characters', 'teams',
        'locations' and 'creators' (role -> list of names).

        Returns:
            The persisted Book

        Raises:
            ValueError: If a comic creator role is unknown; nothing is saved
        """
        columns = {attr.key for attr in inspect(Book).column_attrs}
        book = Book(**{k: v for k, v in metadata.items() if k in columns and k != 'id'})

        with transaction(self.session):
            for key, model in _COLLECTIONS.items():
                for name in metadata.get(key) or []:
                    member, _ = get_or_create(self.session, model, name=name)
                    getattr(book, key).append(member)

            if metadata.get('library'):
                book.library, _ = get_or_create(self.session, LibraryRow, name=metadata['library'])

            for index, file_data in enumerate(metadata.get('files') or []):
                file_data = dict(file_data)
                file_data.setdefault('is_primary', index == 0)
                file_data.setdefault('file_name', f"{book.title or 'book'}.{file_data.get('file_type', 'bin')}")
                book.files.append(BookFile(**file_data))

            if metadata.get('comic'):
                book.comic = self._build_comic(metadata['comic'])

            self.session.add(book)
        logger.info(f"Added book: {book.title}")
        return book

    def _build_comic(self, data: Mapping[str, Any]) -> ComicMetadata:
        comic = ComicMetadata(
            issue_number=data.get('issue_number'),
            volume_name=data.get('volume_name'),
        )
        for key, model in _COMIC_COLLECTIONS.items():
            for name in data.get(key) or []:
                member, _ = get_or_create(self.session, model, name=name)
                getattr(comic, key).append(member)
        for role, names in (data.get('creators') or {}).items():
            role = ComicCreatorRole(str(role).upper())
            for name in names:
                creator, _ = get_or_create(self.session, ComicCreator, name=name)
                comic.creators.append(ComicCreatorMapping(creator=creator, role=role.value))
        return comic

    def set_progress(self, user_id: int, book_id: int,
                     read_status: Optional[Union[str, ReadStatus]] = None,
                     **fields) -> UserBookProgress:
        """
        Create or update a user's progress row for a book.

        Args:
            user_id: Reader
            book_id: Book
            read_status: ReadStatus (or its name)
            **fields: Per-source percentages, personal_rating,
                date_finished, last_read_time

        Raises:
            ValueError: If an unknown field is passed
        """
        unknown = set(fields) - _PROGRESS_FIELDS
        if unknown:
            raise ValueError(f"Unknown progress fields: {', '.join(sorted(unknown))}")

        with transaction(self.session):
            progress, _ = get_or_create(self.session, UserBookProgress, user_id=user_id, book_id=book_id)
            if read_status is not None:
                progress.read_status = ReadStatus(str(getattr(read_status, 'value', read_status)).upper()).value
            for key, value in fields.items():
                setattr(progress, key, value)
        logger.info(f"Updated progress for book {book_id} (user {user_id}): {progress.read_status}")
        return progress

    def add_to_shelf(self, user_id: int, shelf_name: str, book_id: int) -> Shelf:
        """Add a book to a user's manual shelf, creating the shelf if needed."""
        book = self.get_book(book_id)
        if not book:
            raise ValueError(f"Book {book_id} not found")

        with transaction(self.session):
            shelf, _ = get_or_create(self.session, Shelf, user_id=user_id, name=shelf_name)
            if book not in shelf.books:
                shelf.books.append(book)
        logger.info(f"Added book {book_id} to shelf '{shelf_name}'")
        return shelf

    # Readers

    def get_book(self, book_id: int) -> Optional[Book]:
        """Get book by ID."""
        return self.session.get(Book, book_id)

    def get_user_by_name(self, username: str) -> Optional[User]:
        return self.session.query(User).filter_by(username=username).first()

    def list_users(self) -> List[User]:
        return self.session.query(User).order_by(User.username).all()

    def get_all_books(self, limit: Optional[int] = None, offset: int = 0) -> List[Book]:
        """
        Get all books with optional pagination.

        Args:
            limit: Maximum number of books
            offset: Starting offset

        Returns:
            List of books
        """
        query = self.session.query(Book).order_by(Book.title)

        if limit:
            query = query.limit(limit).offset(offset)

        return query.all()

    def stats(self) -> Dict[str, Any]:
        """Catalog counts."""
        return {
            'total_books': self.session.query(func.count(Book.id)).scalar(),
            'total_series': self.session.query(
                func.count(func.distinct(Book.series_name))
            ).filter(func.trim(Book.series_name) != '').scalar(),
            'total_users': self.session.query(func.count(User.id)).scalar(),
            'total_magic_shelves': self.session.query(func.count(MagicShelf.id)).scalar(),
        }

    # Rule filtering

    def rule_query(self, rules: Union[Group, Mapping[str, Any]], user_id: int,
                   now: Optional[datetime] = None, week_start: str = 'monday') -> Query:
        """
        Build (without executing) a Book query restricted by a rule tree.

        Raises:
            RuleValidationError: If the tree is structurally invalid
        """
        spec = to_specification(rules, user_id, now=now, week_start=week_start)
        return spec.apply(self.session.query(Book))

    def filter(self, rules: Union[Group, Mapping[str, Any]], user_id: int,
               now: Optional[datetime] = None, week_start: str = 'monday') -> List[Book]:
        """
        Books matching a rule tree for the acting user, ordered by title.

        Args:
            rules: Root Group, or its JSON form
            user_id: Acting user id
            now: Reference time for relative date rules

        Returns:
            Matching books
        """
        query = self.rule_query(rules, user_id, now=now, week_start=week_start)
        return query.order_by(Book.title, Book.id).all()
