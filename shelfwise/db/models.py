"""
SQLAlchemy models for the shelfwise catalog.

Normalized schema for books, their owned collections, files, comic
sub-metadata and per-user reading progress. The rule compiler only reads
these tables; they are written by ingestion and sync collaborators.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Column, Integer, String, Text, Boolean, Float, Date,
    DateTime, ForeignKey, Table, UniqueConstraint, Index, JSON
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.ext.hybrid import hybrid_property

Base = declarative_base()


class ReadStatus(str, Enum):
    """Per-user read status stored on UserBookProgress."""
    UNREAD = 'UNREAD'
    READING = 'READING'
    RE_READING = 'RE_READING'
    READ = 'READ'
    PARTIALLY_READ = 'PARTIALLY_READ'
    PAUSED = 'PAUSED'
    WONT_READ = 'WONT_READ'
    ABANDONED = 'ABANDONED'


# Rule-only sentinel: no progress row for the (user, book) pair
UNSET = 'UNSET'


class ComicCreatorRole(str, Enum):
    PENCILLER = 'PENCILLER'
    INKER = 'INKER'
    COLORIST = 'COLORIST'
    LETTERER = 'LETTERER'
    COVER_ARTIST = 'COVER_ARTIST'
    EDITOR = 'EDITOR'


# Association tables for many-to-many relationships
book_authors = Table(
    'book_authors',
    Base.metadata,
    Column('book_id', Integer, ForeignKey('books.id', ondelete='CASCADE'), primary_key=True),
    Column('author_id', Integer, ForeignKey('authors.id', ondelete='CASCADE'), primary_key=True),
    Column('position', Integer, default=0)  # For ordering
)

book_categories = Table(
    'book_categories',
    Base.metadata,
    Column('book_id', Integer, ForeignKey('books.id', ondelete='CASCADE'), primary_key=True),
    Column('category_id', Integer, ForeignKey('categories.id', ondelete='CASCADE'), primary_key=True)
)

book_moods = Table(
    'book_moods',
    Base.metadata,
    Column('book_id', Integer, ForeignKey('books.id', ondelete='CASCADE'), primary_key=True),
    Column('mood_id', Integer, ForeignKey('moods.id', ondelete='CASCADE'), primary_key=True)
)

book_tags = Table(
    'book_tags',
    Base.metadata,
    Column('book_id', Integer, ForeignKey('books.id', ondelete='CASCADE'), primary_key=True),
    Column('tag_id', Integer, ForeignKey('tags.id', ondelete='CASCADE'), primary_key=True),
    Column('created_at', DateTime, default=datetime.now)  # When tag was added
)

book_shelves = Table(
    'book_shelves',
    Base.metadata,
    Column('book_id', Integer, ForeignKey('books.id', ondelete='CASCADE'), primary_key=True),
    Column('shelf_id', Integer, ForeignKey('shelves.id', ondelete='CASCADE'), primary_key=True)
)

comic_characters = Table(
    'comic_metadata_characters',
    Base.metadata,
    Column('book_id', Integer, ForeignKey('comic_metadata.book_id', ondelete='CASCADE'), primary_key=True),
    Column('character_id', Integer, ForeignKey('comic_characters.id', ondelete='CASCADE'), primary_key=True)
)

comic_teams = Table(
    'comic_metadata_teams',
    Base.metadata,
    Column('book_id', Integer, ForeignKey('comic_metadata.book_id', ondelete='CASCADE'), primary_key=True),
    Column('team_id', Integer, ForeignKey('comic_teams.id', ondelete='CASCADE'), primary_key=True)
)

comic_locations = Table(
    'comic_metadata_locations',
    Base.metadata,
    Column('book_id', Integer, ForeignKey('comic_metadata.book_id', ondelete='CASCADE'), primary_key=True),
    Column('location_id', Integer, ForeignKey('comic_locations.id', ondelete='CASCADE'), primary_key=True)
)


class Library(Base):
    """A top-level library a book was scanned into."""
    __tablename__ = 'libraries'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False, unique=True)

    books = relationship('Book', back_populates='library')

    def __repr__(self):
        return f"<Library(id={self.id}, name='{self.name}')>"


class User(Base):
    """A reader. Progress, shelves and magic shelves are scoped per user."""
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    username = Column(String(100), nullable=False, unique=True, index=True)
    name = Column(String(200))
    is_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.now, nullable=False)

    progress = relationship('UserBookProgress', back_populates='user', cascade='all, delete-orphan')
    magic_shelves = relationship('MagicShelf', back_populates='user', cascade='all, delete-orphan')

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}')>"


class Book(Base):
    """Core book entity with its resolved metadata."""
    __tablename__ = 'books'

    id = Column(Integer, primary_key=True)
    library_id = Column(Integer, ForeignKey('libraries.id', ondelete='SET NULL'), index=True)

    # Core metadata
    title = Column(String(500), index=True)
    subtitle = Column(String(500))
    publisher = Column(String(200), index=True)
    published_date = Column(Date)
    language = Column(String(10), index=True)  # ISO 639-1 code
    page_count = Column(Integer)
    description = Column(Text)
    narrator = Column(String(200))
    content_rating = Column(String(50))
    age_rating = Column(Integer)
    abridged = Column(Boolean)
    is_physical = Column(Boolean, default=False, nullable=False)

    # Identifiers
    isbn13 = Column(String(13), index=True)
    isbn10 = Column(String(10))
    asin = Column(String(20))
    goodreads_id = Column(String(50))
    hardcover_id = Column(String(50))
    google_id = Column(String(50))
    audible_id = Column(String(50))
    lubimyczytac_id = Column(String(50))
    ranobedb_id = Column(String(50))
    comicvine_id = Column(String(50))

    # Provider ratings
    amazon_rating = Column(Float)
    amazon_review_count = Column(Integer)
    goodreads_rating = Column(Float)
    goodreads_review_count = Column(Integer)
    hardcover_rating = Column(Float)
    hardcover_review_count = Column(Integer)
    ranobedb_rating = Column(Float)
    lubimyczytac_rating = Column(Float)
    audible_rating = Column(Float)
    audible_review_count = Column(Integer)

    # Series triple; a blank series_name means "not in a series"
    series_name = Column(String(200), index=True)
    series_number = Column(Float)  # Position in series (e.g., 2.5)
    series_total = Column(Integer)

    metadata_match_score = Column(Float)
    cover_hash = Column(String(64))

    added_on = Column(DateTime, default=datetime.now, nullable=False)

    # Relationships
    library = relationship('Library', back_populates='books')
    authors = relationship('Author', secondary=book_authors, back_populates='books', lazy='selectin')
    categories = relationship('Category', secondary=book_categories, back_populates='books', lazy='selectin')
    moods = relationship('Mood', secondary=book_moods, back_populates='books', lazy='selectin')
    tags = relationship('Tag', secondary=book_tags, back_populates='books', lazy='selectin')
    shelves = relationship('Shelf', secondary=book_shelves, back_populates='books')
    files = relationship('BookFile', back_populates='book', cascade='all, delete-orphan')
    comic = relationship('ComicMetadata', back_populates='book', uselist=False, cascade='all, delete-orphan')
    progress = relationship('UserBookProgress', back_populates='book', cascade='all, delete-orphan')

    __table_args__ = (
        Index('idx_book_series', 'series_name', 'series_number'),
        Index('idx_book_added', 'added_on'),
    )

    @hybrid_property
    def primary_file(self) -> Optional['BookFile']:
        """Get the file marked primary, falling back to the first file."""
        for book_file in self.files:
            if book_file.is_primary:
                return book_file
        return self.files[0] if self.files else None

    @property
    def in_series(self) -> bool:
        return bool(self.series_name and self.series_name.strip())

    def __repr__(self):
        title = (self.title or '')[:50]
        return f"<Book(id={self.id}, title='{title}')>"


class Author(Base):
    """Author/creator entity."""
    __tablename__ = 'authors'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False, unique=True, index=True)

    books = relationship('Book', secondary=book_authors, back_populates='authors')

    def __repr__(self):
        return f"<Author(id={self.id}, name='{self.name}')>"


class Category(Base):
    """Genre/category. The `genre` rule field is an alias for these."""
    __tablename__ = 'categories'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False, unique=True, index=True)

    books = relationship('Book', secondary=book_categories, back_populates='categories')

    def __repr__(self):
        return f"<Category(id={self.id}, name='{self.name}')>"


class Mood(Base):
    __tablename__ = 'moods'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False, unique=True, index=True)

    books = relationship('Book', secondary=book_moods, back_populates='moods')

    def __repr__(self):
        return f"<Mood(id={self.id}, name='{self.name}')>"


class Tag(Base):
    """Free-form tag attached to books by metadata providers or users."""
    __tablename__ = 'tags'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False, unique=True, index=True)

    books = relationship('Book', secondary=book_tags, back_populates='tags')

    def __repr__(self):
        return f"<Tag(id={self.id}, name='{self.name}')>"


class Shelf(Base):
    """Manually curated shelf. Membership is explicit, unlike MagicShelf."""
    __tablename__ = 'shelves'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'))
    name = Column(String(200), nullable=False)

    books = relationship('Book', secondary=book_shelves, back_populates='shelves')

    __table_args__ = (
        UniqueConstraint('user_id', 'name', name='uix_shelf_user_name'),
    )

    def __repr__(self):
        return f"<Shelf(id={self.id}, name='{self.name}')>"


class BookFile(Base):
    """A file record of a book (ebook, comic archive or audiobook)."""
    __tablename__ = 'book_files'

    id = Column(Integer, primary_key=True)
    book_id = Column(Integer, ForeignKey('books.id', ondelete='CASCADE'), nullable=False, index=True)

    file_name = Column(String(500), nullable=False)
    file_type = Column(String(20), index=True)  # epub, pdf, cbx, m4b, ...
    is_primary = Column(Boolean, default=False, nullable=False)
    file_size_kb = Column(Integer)
    duration_seconds = Column(Integer)  # Audiobooks only

    book = relationship('Book', back_populates='files')

    def __repr__(self):
        return f"<BookFile(id={self.id}, type='{self.file_type}', name='{self.file_name}')>"


class ComicMetadata(Base):
    """Comic-specific sub-metadata, keyed by the owning book."""
    __tablename__ = 'comic_metadata'

    book_id = Column(Integer, ForeignKey('books.id', ondelete='CASCADE'), primary_key=True)
    issue_number = Column(String(20))
    volume_name = Column(String(200))

    book = relationship('Book', back_populates='comic')
    characters = relationship('ComicCharacter', secondary=comic_characters)
    teams = relationship('ComicTeam', secondary=comic_teams)
    locations = relationship('ComicLocation', secondary=comic_locations)
    creators = relationship('ComicCreatorMapping', back_populates='comic', cascade='all, delete-orphan')


class ComicCharacter(Base):
    __tablename__ = 'comic_characters'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False, unique=True)


class ComicTeam(Base):
    __tablename__ = 'comic_teams'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False, unique=True)


class ComicLocation(Base):
    __tablename__ = 'comic_locations'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False, unique=True)


class ComicCreator(Base):
    __tablename__ = 'comic_creators'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False, unique=True)


class ComicCreatorMapping(Base):
    """A creator credited on a comic in a given role."""
    __tablename__ = 'comic_creator_mappings'

    id = Column(Integer, primary_key=True)
    book_id = Column(Integer, ForeignKey('comic_metadata.book_id', ondelete='CASCADE'), nullable=False)
    creator_id = Column(Integer, ForeignKey('comic_creators.id', ondelete='CASCADE'), nullable=False)
    role = Column(String(20), nullable=False)  # ComicCreatorRole value

    comic = relationship('ComicMetadata', back_populates='creators')
    creator = relationship('ComicCreator')

    __table_args__ = (
        UniqueConstraint('book_id', 'creator_id', 'role', name='uix_comic_creator_role'),
        Index('idx_comic_creator_role', 'book_id', 'role'),
    )


class UserBookProgress(Base):
    """Reading state of one user for one book.

    Each sync source records its own percentage; the rule compiler resolves
    them to the greatest one.
    """
    __tablename__ = 'user_book_progress'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    book_id = Column(Integer, ForeignKey('books.id', ondelete='CASCADE'), nullable=False)

    read_status = Column(String(20))  # ReadStatus value

    koreader_progress_percent = Column(Float)
    kobo_progress_percent = Column(Float)
    pdf_progress_percent = Column(Float)
    epub_progress_percent = Column(Float)
    cbx_progress_percent = Column(Float)

    personal_rating = Column(Float)
    date_finished = Column(DateTime)
    last_read_time = Column(DateTime)

    user = relationship('User', back_populates='progress')
    book = relationship('Book', back_populates='progress')

    __table_args__ = (
        UniqueConstraint('user_id', 'book_id', name='uix_user_book_progress'),
        Index('idx_progress_status', 'user_id', 'read_status'),
    )

    def __repr__(self):
        return f"<UserBookProgress(user_id={self.user_id}, book_id={self.book_id}, status='{self.read_status}')>"


class MagicShelf(Base):
    """A named rule tree whose members are computed at query time."""
    __tablename__ = 'magic_shelves'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)

    name = Column(String(200), nullable=False)
    icon = Column(String(100))
    icon_type = Column(String(20))  # PRIME_NG, CUSTOM_SVG
    filter_json = Column(JSON, nullable=False)  # Serialized Group
    is_public = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    user = relationship('User', back_populates='magic_shelves')

    __table_args__ = (
        UniqueConstraint('user_id', 'name', name='uix_magic_shelf_user_name'),
    )

    def __repr__(self):
        return f"<MagicShelf(id={self.id}, name='{self.name}', public={self.is_public})>"
