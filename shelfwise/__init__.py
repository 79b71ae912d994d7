"""
shelfwise - declarative book filters and magic shelves over a SQLAlchemy + SQLite catalog.

Main API:
    from shelfwise import Library

    lib = Library.open("/path/to/library")
    alice = lib.add_user("alice")

    # Books in an unfinished series that alice has started
    rules = {
        "type": "group",
        "join": "and",
        "rules": [
            {"field": "seriesStatus", "operator": "equals", "value": "reading"},
            {"field": "seriesGaps", "operator": "not_equals", "value": "any_gap"},
        ],
    }
    books = lib.filter(rules, user_id=alice.id)

    # Or compile once and paginate yourself
    query = lib.rule_query(rules, user_id=alice.id).limit(20)

    lib.close()
"""

from .library_db import Library

__version__ = "0.1.0"
__all__ = ["Library"]
