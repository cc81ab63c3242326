"""Database connection management for Secret Keeper."""

from keeper.db.connection import close_pool, get_connection, get_pool

__all__ = ["close_pool", "get_connection", "get_pool"]
