"""
Tests for MagicShelfService: CRUD, sharing, per-user evaluation and YAML
import/export.
"""

import pytest
import tempfile
import shutil
import yaml
from pathlib import Path
from datetime import datetime

from shelfwise.library_db import Library
from shelfwise.rules import RuleValidationError
from shelfwise.shelves import BUILTIN_SHELVES, MagicShelfService, is_builtin_shelf

NOW = datetime(2024, 6, 15, 12, 0, 0)

SCI_FI = {
    "type": "group",
    "join": "and",
    "rules": [
        {"field": "categories", "operator": "includes_any", "value": ["Science Fiction"]},
    ],
}

STARTED = {
    "type": "group",
    "join": "and",
    "rules": [
        {"field": "readingProgress", "operator": "greater_than", "value": 0},
    ],
}


@pytest.fixture
def temp_library():
    """Create a temporary library for testing."""
    temp_dir = tempfile.mkdtemp()
    lib = Library.open(Path(temp_dir))

    yield lib

    lib.close()
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def setup(temp_library):
    """Library with two readers, an admin and a handful of books."""
    lib = temp_library
    alice = lib.add_user("alice")
    bob = lib.add_user("bob")
    admin = lib.add_user("root", is_admin=True)

    dune = lib.add_book({"title": "Dune", "categories": ["Science Fiction"],
                         "series_name": "Dune", "series_number": 1, "series_total": 6})
    messiah = lib.add_book({"title": "Dune Messiah", "categories": ["Science Fiction"],
                            "series_name": "Dune", "series_number": 2, "series_total": 6})
    lib.add_book({"title": "Emma", "categories": ["Classic"]})
    neuromancer = lib.add_book({"title": "Neuromancer", "categories": ["Science Fiction"]})

    lib.set_progress(alice.id, dune.id, "READ", kobo_progress_percent=100.0,
                     date_finished=datetime(2024, 2, 1))
    lib.set_progress(bob.id, neuromancer.id, "READING", kobo_progress_percent=30.0)

    service = MagicShelfService(lib.session, now=NOW)
    return service, lib, alice, bob, admin, {"dune": dune, "messiah": messiah, "neuromancer": neuromancer}


def titles(books):
    return [b.title for b in books]


class TestShelfCRUD:

    def test_create_and_evaluate(self, setup):
        service, _, alice, _, _, _ = setup
        shelf = service.create(alice.id, "Sci-Fi", SCI_FI, icon="pi-star")

        assert shelf.id is not None
        assert shelf.filter_json["rules"][0]["value"] == ["Science Fiction"]
        assert titles(service.books("Sci-Fi", alice.id)) == ["Dune", "Dune Messiah", "Neuromancer"]
        assert service.count(shelf.id, alice.id) == 3

    def test_duplicate_name_rejected(self, setup):
        service, _, alice, bob, _, _ = setup
        service.create(alice.id, "Sci-Fi", SCI_FI)

        with pytest.raises(ValueError, match="already exists"):
            service.create(alice.id, "Sci-Fi", SCI_FI)

        # Names are unique per user, not globally
        assert service.create(bob.id, "Sci-Fi", SCI_FI).user_id == bob.id

    def test_reserved_name_rejected(self, setup):
        service, _, alice, _, _, _ = setup
        with pytest.raises(ValueError, match="reserved"):
            service.create(alice.id, "unread", SCI_FI)

    def test_invalid_rules_rejected(self, setup):
        service, _, alice, _, _, _ = setup
        with pytest.raises(RuleValidationError):
            service.create(alice.id, "Broken", {"join": "maybe", "rules": []})

    def test_update_rules_and_name(self, setup):
        service, _, alice, _, _, _ = setup
        shelf = service.create(alice.id, "Sci-Fi", SCI_FI)

        service.update(shelf.id, alice.id, name="Started", rules=STARTED)

        assert service.get(shelf.id).name == "Started"
        assert titles(service.books(shelf.id, alice.id)) == ["Dune"]

    def test_rejected_update_leaves_shelf_untouched(self, setup):
        """Given a rename with an invalid rule tree, when a later shelf is saved, then the rename never lands."""
        service, _, alice, _, _, _ = setup
        shelf = service.create(alice.id, "Original", SCI_FI)

        with pytest.raises(RuleValidationError):
            service.update(shelf.id, alice.id, name="Renamed", rules={"join": "xor", "rules": []})
        service.create(alice.id, "Later", STARTED)

        assert service.get(shelf.id).name == "Original"
        assert set(titles(service.books(shelf.id, alice.id))) == {"Dune", "Dune Messiah", "Neuromancer"}

    def test_update_requires_owner(self, setup):
        service, _, alice, bob, _, _ = setup
        shelf = service.create(alice.id, "Sci-Fi", SCI_FI)

        with pytest.raises(PermissionError):
            service.update(shelf.id, bob.id, name="Mine now")

    def test_public_shelf_update_requires_admin(self, setup):
        service, _, alice, _, admin, _ = setup
        shared = service.create(alice.id, "Shared", SCI_FI, is_public=True)
        with pytest.raises(PermissionError):
            service.update(shared.id, alice.id, icon="pi-book")

        official = service.create(admin.id, "Official", SCI_FI, is_public=True)
        assert service.update(official.id, admin.id, icon="pi-book").icon == "pi-book"

    def test_delete(self, setup):
        service, _, alice, bob, _, _ = setup
        shelf = service.create(alice.id, "Sci-Fi", SCI_FI)

        with pytest.raises(PermissionError):
            service.delete(shelf.id, bob.id)

        service.delete(shelf.id, alice.id)
        assert service.get(shelf.id) is None

    def test_delete_missing(self, setup):
        service, _, alice, _, _, _ = setup
        with pytest.raises(ValueError, match="not found"):
            service.delete(9999, alice.id)

    def test_validate(self, setup):
        service, _, _, _, _, _ = setup
        assert service.validate(SCI_FI) == (True, None)

        ok, error = service.validate({"join": "and", "rules": [{"field": "title"}]})
        assert ok is False
        assert "operator" in error


class TestVisibilityAndEvaluation:

    def test_shelf_is_evaluated_for_the_viewer(self, setup):
        """Given a public progress shelf, when each user reads it, then each sees their own books."""
        service, _, alice, bob, _, books = setup
        shelf = service.create(alice.id, "Started", STARTED, is_public=True)

        assert titles(service.books(shelf.id, alice.id)) == ["Dune"]
        assert titles(service.books(shelf.id, bob.id)) == ["Neuromancer"]

    def test_public_shelf_found_by_name(self, setup):
        service, _, alice, bob, _, _ = setup
        service.create(alice.id, "Started", STARTED, is_public=True)
        assert titles(service.books("Started", bob.id)) == ["Neuromancer"]

    def test_private_shelf_is_hidden(self, setup):
        service, _, alice, bob, _, _ = setup
        shelf = service.create(alice.id, "Secret", SCI_FI)

        with pytest.raises(PermissionError):
            service.books(shelf.id, bob.id)
        with pytest.raises(ValueError, match="not found"):
            service.books("Secret", bob.id)

    def test_list_for_user(self, setup):
        service, _, alice, bob, _, _ = setup
        service.create(alice.id, "Public One", SCI_FI, is_public=True)
        service.create(alice.id, "Private One", SCI_FI)
        service.create(bob.id, "Bob's", SCI_FI)

        listed = service.list_for_user(bob.id)
        names = [s["name"] for s in listed]

        assert names[:len(BUILTIN_SHELVES)] == list(BUILTIN_SHELVES)
        assert names[len(BUILTIN_SHELVES):] == ["Bob's", "Public One"]
        assert "Private One" not in names

        own = next(s for s in listed if s["name"] == "Bob's")
        shared = next(s for s in listed if s["name"] == "Public One")
        assert own["owned"] is True
        assert shared["owned"] is False

    def test_list_without_builtins(self, setup):
        service, _, alice, _, _, _ = setup
        assert service.list_for_user(alice.id, include_builtin=False) == []

    def test_pagination(self, setup):
        service, _, alice, _, _, _ = setup
        service.create(alice.id, "Sci-Fi", SCI_FI)
        assert titles(service.books("Sci-Fi", alice.id, limit=2, offset=1)) == ["Dune Messiah", "Neuromancer"]


class TestBuiltinShelves:

    def test_reserved_names(self):
        assert is_builtin_shelf("continue-series")
        assert not is_builtin_shelf("Sci-Fi")

    def test_currently_reading(self, setup):
        service, _, alice, bob, _, _ = setup
        assert titles(service.books("currently-reading", bob.id)) == ["Neuromancer"]
        assert service.books("currently-reading", alice.id) == []

    def test_unread_includes_books_without_progress(self, setup):
        service, _, alice, _, _, _ = setup
        assert titles(service.books("unread", alice.id)) == ["Dune Messiah", "Emma", "Neuromancer"]

    def test_continue_series(self, setup):
        service, _, alice, bob, _, _ = setup
        assert titles(service.books("continue-series", alice.id)) == ["Dune Messiah"]
        assert service.books("continue-series", bob.id) == []

    def test_incomplete_series(self, setup):
        service, _, alice, _, _, _ = setup
        assert titles(service.books("incomplete-series", alice.id)) == ["Dune", "Dune Messiah"]

    def test_finished_this_year(self, setup):
        service, _, alice, _, _, _ = setup
        assert titles(service.books("finished-this-year", alice.id)) == ["Dune"]

    @pytest.mark.parametrize("name", list(BUILTIN_SHELVES))
    def test_every_builtin_compiles(self, setup, name):
        service, _, alice, _, _, _ = setup
        assert service.count(name, alice.id) >= 0


class TestYamlRoundTrip:

    def test_export_yaml(self, setup):
        service, _, alice, _, _, _ = setup
        service.create(alice.id, "Sci-Fi", SCI_FI, icon="pi-star")

        data = yaml.safe_load(service.export_yaml("Sci-Fi", alice.id))

        assert data["name"] == "Sci-Fi"
        assert data["icon"] == "pi-star"
        assert data["public"] is False
        assert data["rules"]["join"] == "and"

    def test_export_builtin(self, setup):
        service, _, alice, _, _, _ = setup
        data = yaml.safe_load(service.export_yaml("unread", alice.id))
        assert data["builtin"] is True
        assert data["rules"] == BUILTIN_SHELVES["unread"]["rules"]

    def test_import_to_another_user(self, setup):
        """Given an exported shelf, when bob imports it, then it evaluates with bob's progress."""
        service, _, alice, bob, _, _ = setup
        service.create(alice.id, "Started", STARTED)
        content = service.export_yaml("Started", alice.id)

        imported = service.import_yaml(content, bob.id)

        assert imported.user_id == bob.id
        assert titles(service.books(imported.id, bob.id)) == ["Neuromancer"]

    def test_import_duplicate_requires_overwrite(self, setup):
        service, _, alice, _, _, _ = setup
        service.create(alice.id, "Started", SCI_FI)
        content = yaml.dump({"name": "Started", "rules": STARTED})

        with pytest.raises(ValueError, match="already exists"):
            service.import_yaml(content, alice.id)

        updated = service.import_yaml(content, alice.id, overwrite=True)
        assert titles(service.books(updated.id, alice.id)) == ["Dune"]

    @pytest.mark.parametrize("content,message", [
        ("- just\n- a list\n", "mapping"),
        ("rules: {}\n", "name"),
        ("name: Orphan\n", "rules"),
    ])
    def test_import_rejects_incomplete_yaml(self, setup, content, message):
        service, _, alice, _, _, _ = setup
        with pytest.raises(ValueError, match=message):
            service.import_yaml(content, alice.id)

    def test_file_round_trip(self, setup, tmp_path):
        service, _, alice, bob, _, _ = setup
        service.create(alice.id, "Sci-Fi", SCI_FI)
        path = tmp_path / "scifi.yaml"

        service.export_file("Sci-Fi", alice.id, path)
        imported = service.import_file(path, bob.id)

        assert imported.name == "Sci-Fi"
        assert service.count(imported.id, bob.id) == 3
