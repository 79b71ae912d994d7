"""
Portable SQL functions used by compiled rule predicates.
"""

from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql.functions import ReturnTypeFromArgs


class greatest(ReturnTypeFromArgs):
    """GREATEST(a, b, ...). SQLite spells the multi-argument form MAX()."""
    name = 'greatest'
    inherit_cache = True


@compiles(greatest)
def _compile_greatest(element, compiler, **kw):
    return f"greatest({compiler.process(element.clauses, **kw)})"


@compiles(greatest, 'sqlite')
def _compile_greatest_sqlite(element, compiler, **kw):
    return f"max({compiler.process(element.clauses, **kw)})"
