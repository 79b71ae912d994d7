"""
Built-in magic shelves.

These are rule trees evaluated exactly like user shelves, but they are not
stored and cannot be created, renamed or deleted.
"""

from typing import Any, Dict, Optional


BUILTIN_SHELVES: Dict[str, Dict[str, Any]] = {
    'currently-reading': {
        'description': 'Books you are reading or re-reading',
        'rules': {
            'type': 'group',
            'join': 'or',
            'rules': [
                {'field': 'readStatus', 'operator': 'includes_any', 'value': ['READING', 'RE_READING']},
            ],
        },
    },
    'unread': {
        'description': 'Books you have not started',
        'rules': {
            'type': 'group',
            'join': 'and',
            'rules': [
                {'field': 'readStatus', 'operator': 'includes_any', 'value': ['UNREAD', 'UNSET']},
            ],
        },
    },
    'continue-series': {
        'description': 'The next unread book of every series you have started',
        'rules': {
            'type': 'group',
            'join': 'and',
            'rules': [
                {'field': 'seriesPosition', 'operator': 'equals', 'value': 'next_unread'},
            ],
        },
    },
    'incomplete-series': {
        'description': 'Series with gaps or a missing latest volume',
        'rules': {
            'type': 'group',
            'join': 'or',
            'rules': [
                {'field': 'seriesGaps', 'operator': 'equals', 'value': 'any_gap'},
                {'field': 'seriesGaps', 'operator': 'equals', 'value': 'missing_latest'},
            ],
        },
    },
    'finished-this-year': {
        'description': 'Books you finished this calendar year',
        'rules': {
            'type': 'group',
            'join': 'and',
            'rules': [
                {'field': 'readStatus', 'operator': 'equals', 'value': 'READ'},
                {'field': 'dateFinished', 'operator': 'this_period', 'value': 'year'},
            ],
        },
    },
}


def get_builtin_shelf(name: str) -> Optional[Dict[str, Any]]:
    """Get a built-in shelf definition."""
    return BUILTIN_SHELVES.get(name)


def is_builtin_shelf(name: str) -> bool:
    """Check if a shelf name is reserved for a built-in."""
    return name in BUILTIN_SHELVES
