"""Database connection management for AltoCRM."""

from altocrm.db.connection import close_pool, get_connection, get_cursor, get_pool

__all__ = ["close_pool", "get_connection", "get_cursor", "get_pool"]
