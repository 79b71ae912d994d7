"""
Per-library database handles.

Each library directory holds a single SQLite file. A LibraryDatabase owns
the engine and session factory for one such file, so two libraries opened
in the same process never share connections and disposing one leaves the
other usable.
"""

from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session

from .models import Base

DB_FILENAME = 'library.db'


def _enable_foreign_keys(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class LibraryDatabase:
    """
    Engine and session factory for one library directory.

    Creating the handle creates the directory, the database file and any
    missing tables.

    Args:
        library_path: Path to library directory
        echo: If True, log all SQL statements (debug mode)
    """

    def __init__(self, library_path: Path, echo: bool = False):
        self.library_path = Path(library_path)
        self.library_path.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(f'sqlite:///{self.db_path}', echo=echo)
        event.listen(self.engine, 'connect', _enable_foreign_keys)
        Base.metadata.create_all(self.engine)

        self._factory = sessionmaker(bind=self.engine)

    @property
    def db_path(self) -> Path:
        return self.library_path / DB_FILENAME

    def session(self) -> Session:
        """Get a new session bound to this library."""
        if self._factory is None:
            raise RuntimeError(f"Database at {self.db_path} has been disposed")
        return self._factory()

    def dispose(self):
        """Release pooled connections; sessions can no longer be opened."""
        if self._factory is not None:
            self.engine.dispose()
            self._factory = None

    @property
    def disposed(self) -> bool:
        return self._factory is None


@contextmanager
def transaction(session: Session):
    """
    Commit the session's pending changes, or roll all of them back.

    Usage:
        with transaction(session):
            session.add(book)
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise


def get_or_create(session: Session, model, **kwargs):
    """
    Get existing instance or create new one.

    Args:
        session: Database session
        model: SQLAlchemy model class
        **kwargs: Filter criteria and/or values to set

    Returns:
        Tuple of (instance, created: bool)
    """
    instance = session.query(model).filter_by(**kwargs).first()
    if instance:
        return instance, False
    instance = model(**kwargs)
    session.add(instance)
    return instance, True
