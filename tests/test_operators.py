"""
Tests for operator semantics on scalar and collection fields.

Covers:
- String comparisons (case-insensitive, LIKE escaping, NULL-safe negation)
- Equality with null and list values
- Emptiness of scalars and collections
- Multi-value operators on collections
- Numeric, boolean and date comparisons
- File-derived fields
"""

import pytest
import tempfile
import shutil
from pathlib import Path
from datetime import date, datetime

from shelfwise.library_db import Library
from shelfwise.rules.operators import escape_like, parse_boolean, parse_count, parse_datetime

NOW = datetime(2024, 6, 15, 12, 0, 0)


def rule(field, operator, value=None, **extra):
    data = {"field": field, "operator": operator, "value": value}
    data.update(extra)
    return data


def group(*rules, join="and"):
    return {"type": "group", "join": join, "rules": list(rules)}


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def temp_library():
    """Create a temporary library for testing."""
    temp_dir = tempfile.mkdtemp()
    lib = Library.open(Path(temp_dir))

    yield lib

    lib.close()
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def catalog(temp_library):
    """Library with five books covering null, blank and populated metadata."""
    lib = temp_library
    reader = lib.add_user("reader")

    dune = lib.add_book({
        "title": "Dune",
        "authors": ["Frank Herbert"],
        "categories": ["Science Fiction", "Classic"],
        "tags": ["space"],
        "description": "Desert planet",
        "page_count": 412,
        "language": "en",
        "publisher": "Chilton Books",
        "published_date": date(1965, 8, 1),
        "abridged": False,
        "metadata_match_score": 90,
        "amazon_rating": 4.5,
        "added_on": datetime(2024, 6, 14, 10, 0),
        "files": [{"file_type": "epub", "file_size_kb": 1200}],
    })
    lib.add_book({
        "title": "The Hobbit",
        "authors": ["J.R.R. Tolkien"],
        "categories": ["Fantasy", "Classic"],
        "description": "There and back again",
        "page_count": 310,
        "language": "en",
        "publisher": "Allen & Unwin",
        "published_date": date(1937, 9, 21),
        "is_physical": True,
        "metadata_match_score": 75,
        "added_on": datetime(2024, 1, 10, 8, 30),
        "files": [
            {"file_type": "pdf", "file_size_kb": 5000, "is_primary": True},
            {"file_type": "epub", "file_size_kb": 800, "is_primary": False},
        ],
    })
    lib.add_book({
        "title": "Cien años de soledad",
        "authors": ["Gabriel García Márquez"],
        "categories": ["Literary Fiction"],
        "description": "   ",
        "page_count": 417,
        "language": "es",
        "published_date": date(1967, 5, 30),
        "abridged": True,
        "metadata_match_score": 30,
        "added_on": datetime(2023, 3, 1, 18, 0),
    })
    lib.add_book({
        "title": "Untitled Draft",
        "added_on": datetime(2024, 6, 1, 9, 0),
        "files": [{"file_type": "m4b", "duration_seconds": 36000}],
    })
    lib.add_book({
        "title": "Watchmen #1",
        "authors": ["Alan Moore"],
        "categories": ["Comics"],
        "description": "Who watches the watchmen",
        "page_count": 32,
        "language": "en",
        "published_date": date(1986, 9, 1),
        "added_on": datetime(2024, 5, 20, 20, 0),
        "files": [{"file_type": "cbx", "file_size_kb": 900}],
    })

    lib.add_to_shelf(reader.id, "Favorites", dune.id)
    return lib, reader


@pytest.fixture
def titles(catalog):
    """Run a single rule (or group) and return the matching titles."""
    lib, reader = catalog

    def run(*rules, join="and"):
        books = lib.filter(group(*rules, join=join), reader.id, now=NOW)
        return {b.title for b in books}

    return run


ALL = {"Dune", "The Hobbit", "Cien años de soledad", "Untitled Draft", "Watchmen #1"}


# =============================================================================
# Strings
# =============================================================================


class TestStringOperators:
    """Substring and equality tests on string columns."""

    def test_contains_is_case_insensitive(self, titles):
        assert titles(rule("title", "contains", "HOB")) == {"The Hobbit"}

    def test_starts_with(self, titles):
        assert titles(rule("title", "starts_with", "the")) == {"The Hobbit"}

    def test_ends_with(self, titles):
        assert titles(rule("title", "ends_with", "DRAFT")) == {"Untitled Draft"}

    def test_does_not_contain(self, titles):
        assert titles(rule("title", "does_not_contain", "the")) == ALL - {"The Hobbit"}

    def test_does_not_contain_keeps_null_columns(self, titles):
        """Given books without a publisher, when negating a substring test, then they still match."""
        assert titles(rule("publisher", "does_not_contain", "chilton")) == ALL - {"Dune"}

    def test_like_wildcards_are_literal(self, titles):
        """Given a value with LIKE wildcards, when matched, then they are treated literally."""
        assert titles(rule("title", "contains", "_")) == set()
        assert titles(rule("title", "contains", "%")) == set()
        assert titles(rule("title", "contains", "#1")) == {"Watchmen #1"}

    def test_escape_like(self):
        assert escape_like("100%_\\") == "100\\%\\_\\\\"

    def test_equals_is_case_insensitive(self, titles):
        assert titles(rule("language", "equals", "EN")) == {"Dune", "The Hobbit", "Watchmen #1"}

    def test_not_equals_keeps_null_columns(self, titles):
        """Given a book with no language, when filtering language != en, then it matches."""
        assert titles(rule("language", "not_equals", "en")) == {"Cien años de soledad", "Untitled Draft"}

    def test_equals_list_means_any_of(self, titles):
        assert titles(rule("language", "equals", ["es", "xx"])) == {"Cien años de soledad"}

    def test_numbers_on_string_ordering_put_no_constraint(self, titles):
        assert titles(rule("title", "greater_than", "m")) == ALL


class TestNullValues:
    """A rule whose value is null constrains nothing."""

    @pytest.mark.parametrize("operator", ["equals", "not_equals", "contains", "does_not_contain"])
    def test_null_value_matches_every_book(self, titles, operator):
        assert titles(rule("title", operator, None)) == ALL

    def test_null_value_on_collection(self, titles):
        assert titles(rule("authors", "equals", None)) == ALL
        assert titles(rule("authors", "not_equals", None)) == ALL


class TestEmptiness:

    def test_blank_string_is_empty(self, titles):
        """Given a whitespace-only and a null description, when testing is_empty, then both match."""
        assert titles(rule("description", "is_empty")) == {"Cien años de soledad", "Untitled Draft"}

    def test_is_not_empty(self, titles):
        assert titles(rule("description", "is_not_empty")) == {"Dune", "The Hobbit", "Watchmen #1"}

    def test_empty_collection(self, titles):
        assert titles(rule("authors", "is_empty")) == {"Untitled Draft"}

    def test_non_empty_collection(self, titles):
        assert titles(rule("tags", "is_not_empty")) == {"Dune"}


# =============================================================================
# Collections
# =============================================================================


class TestCollectionOperators:
    """Membership tests on authors, categories, tags and shelves."""

    def test_equals_member_case_insensitive(self, titles):
        assert titles(rule("authors", "equals", "frank herbert")) == {"Dune"}

    def test_not_equals_includes_books_without_members(self, titles):
        assert titles(rule("authors", "not_equals", "Frank Herbert")) == ALL - {"Dune"}

    def test_contains_matches_any_member(self, titles):
        assert titles(rule("categories", "contains", "fic")) == {"Dune", "Cien años de soledad"}

    def test_includes_any(self, titles):
        assert titles(rule("categories", "includes_any", ["Fantasy", "Comics"])) == {"The Hobbit", "Watchmen #1"}

    def test_includes_all(self, titles):
        assert titles(rule("categories", "includes_all", ["classic", "fantasy"])) == {"The Hobbit"}

    def test_excludes_all(self, titles):
        assert titles(rule("categories", "excludes_all", ["Classic"])) == {
            "Cien años de soledad", "Untitled Draft", "Watchmen #1"
        }

    def test_genre_is_an_alias_for_categories(self, titles):
        assert titles(rule("genre", "includes_any", ["classic"])) == {"Dune", "The Hobbit"}

    def test_empty_candidate_list_puts_no_constraint(self, titles):
        assert titles(rule("categories", "includes_any", [])) == ALL
        assert titles(rule("categories", "excludes_all", [])) == ALL

    def test_shelf_membership_by_id(self, catalog, titles):
        lib, reader = catalog
        dune = next(b for b in lib.get_all_books() if b.title == "Dune")
        shelf_id = dune.shelves[0].id

        assert titles(rule("shelf", "equals", str(shelf_id))) == {"Dune"}
        assert titles(rule("shelf", "excludes_all", [shelf_id])) == ALL - {"Dune"}

    def test_ordering_on_collection_puts_no_constraint(self, titles):
        assert titles(rule("authors", "greater_than", "a")) == ALL


# =============================================================================
# Numbers and booleans
# =============================================================================


class TestNumericOperators:

    def test_greater_than(self, titles):
        assert titles(rule("pageCount", "greater_than", 400)) == {"Dune", "Cien años de soledad"}

    def test_less_than_equal_to(self, titles):
        assert titles(rule("pageCount", "less_than_equal_to", "310")) == {"The Hobbit", "Watchmen #1"}

    def test_in_between_is_inclusive(self, titles):
        assert titles(rule("pageCount", "in_between", valueStart=310, valueEnd=412)) == {"Dune", "The Hobbit"}

    def test_in_between_missing_bound_puts_no_constraint(self, titles):
        assert titles(rule("pageCount", "in_between", valueStart=310)) == ALL

    def test_unparseable_literal_puts_no_constraint(self, titles):
        assert titles(rule("pageCount", "greater_than", "lots")) == ALL

    def test_greater_than_equal_to_on_float(self, titles):
        assert titles(rule("metadataScore", "greater_than_equal_to", 75)) == {"Dune", "The Hobbit"}

    def test_equals_number(self, titles):
        assert titles(rule("amazonRating", "equals", "4.5")) == {"Dune"}


class TestBooleanOperators:

    def test_equals_true_string(self, titles):
        assert titles(rule("abridged", "equals", "true")) == {"Cien años de soledad"}

    def test_equals_false(self, titles):
        assert titles(rule("abridged", "equals", False)) == {"Dune"}

    def test_not_equals_keeps_null(self, titles):
        assert titles(rule("abridged", "not_equals", "true")) == ALL - {"Cien años de soledad"}

    def test_is_physical(self, titles):
        assert titles(rule("isPhysical", "equals", True)) == {"The Hobbit"}

    def test_parse_boolean(self):
        assert parse_boolean("TRUE") is True
        assert parse_boolean("no") is False
        assert parse_boolean("maybe") is None


# =============================================================================
# Dates
# =============================================================================


class TestDateOperators:

    def test_date_less_than(self, titles):
        assert titles(rule("publishedDate", "less_than", "1950-01-01")) == {"The Hobbit"}

    def test_date_in_between(self, titles):
        assert titles(rule("publishedDate", "in_between", valueStart="1960-01-01", valueEnd="1970-12-31")) == {
            "Dune", "Cien años de soledad"
        }

    def test_date_equals(self, titles):
        assert titles(rule("publishedDate", "equals", "1965-08-01")) == {"Dune"}

    def test_timestamp_equals_matches_whole_day(self, titles):
        assert titles(rule("addedOn", "equals", "2024-06-14")) == {"Dune"}

    def test_timestamp_greater_than_bare_date_skips_that_day(self, titles):
        assert titles(rule("addedOn", "greater_than", "2024-06-01")) == {"Dune"}

    def test_timestamp_less_than_equal_to_bare_date_includes_that_day(self, titles):
        assert titles(rule("addedOn", "less_than_equal_to", "2024-06-01")) == ALL - {"Dune"}

    def test_timestamp_in_between_includes_end_day(self, titles):
        assert titles(rule("addedOn", "in_between", valueStart="2024-05-20", valueEnd="2024-06-01")) == {
            "Untitled Draft", "Watchmen #1"
        }

    def test_open_ended_bare_dates_at_the_calendar_limit(self, titles):
        """Given 9999-12-31 as an open upper bound, when comparing timestamps, then nothing overflows."""
        assert titles(rule("addedOn", "less_than_equal_to", "9999-12-31")) == ALL
        assert titles(rule("addedOn", "in_between", valueStart="2024-01-01", valueEnd="9999-12-31")) == {
            "Dune", "The Hobbit", "Untitled Draft", "Watchmen #1"
        }
        assert titles(rule("addedOn", "greater_than", "9999-12-31")) == set()
        assert titles(rule("addedOn", "equals", "9999-12-31")) == set()
        assert titles(rule("addedOn", "not_equals", "9999-12-31")) == ALL

    def test_unparseable_date_puts_no_constraint(self, titles):
        assert titles(rule("publishedDate", "less_than", "last tuesday")) == ALL

    def test_parse_datetime_accepts_utc_suffix(self):
        assert parse_datetime("2024-06-14T10:00:00Z") == datetime(2024, 6, 14, 10, 0)

    def test_parse_count(self):
        assert parse_count("7") == 7
        assert parse_count(3.9) == 3
        assert parse_count("7.5") is None
        assert parse_count(True) is None


# =============================================================================
# File-derived fields
# =============================================================================


class TestFileFields:

    def test_file_type_uses_primary_file(self, titles):
        """Given a book whose secondary file is an epub, when filtering epub, then only primary files count."""
        assert titles(rule("fileType", "equals", "epub")) == {"Dune"}
        assert titles(rule("fileType", "equals", "PDF")) == {"The Hobbit"}

    def test_comic_archive_aliases(self, titles):
        assert titles(rule("fileType", "equals", "cbz")) == {"Watchmen #1"}
        assert titles(rule("fileType", "includes_any", ["cbr", "m4b"])) == {"Watchmen #1", "Untitled Draft"}

    def test_file_size(self, titles):
        assert titles(rule("fileSize", "greater_than", 2000)) == {"The Hobbit"}

    def test_books_without_files(self, titles):
        assert titles(rule("fileType", "is_empty")) == {"Cien años de soledad"}

    def test_audiobook_duration(self, titles):
        assert titles(rule("audiobookDuration", "greater_than", 3600)) == {"Untitled Draft"}
