"""Persistence layer: the Store contract and its SQL and in-memory implementations."""

from studio.storage.base import Store
from studio.storage.errors import ConstraintViolation
from studio.storage.memory import MemoryStore
from studio.storage.sql import SQLStore, sql_store_provider

__all__ = ["ConstraintViolation", "MemoryStore", "SQLStore", "Store", "sql_store_provider"]
