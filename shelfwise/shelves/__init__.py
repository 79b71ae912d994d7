"""
Magic shelves: named rule trees evaluated per viewing user.
"""

from .builtin import BUILTIN_SHELVES, get_builtin_shelf, is_builtin_shelf
from .service import MagicShelfService

__all__ = [
    'MagicShelfService',
    'BUILTIN_SHELVES',
    'get_builtin_shelf',
    'is_builtin_shelf',
]
