"""
PolyDB - Cross-Backend Persistence with Declarative Validation

One adapter contract over SQLite, PostgreSQL, MySQL, MongoDB and an
in-memory store, named connections behind a DatabaseManager, and schema
validation that runs through the active session before any write.
"""

__version__ = "0.1.0"

from .persistence import *  # noqa: F401,F403
from .persistence import __all__ as _persistence_all
from .entities import *  # noqa: F401,F403
from .entities import __all__ as _entities_all

__all__ = ['__version__'] + list(_persistence_all) + list(_entities_all)
