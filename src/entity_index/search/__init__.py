"""
Row storage and predicate package.

This package provides the storage side of the index:
- predicates: validated conjunctive search predicates
- row_store: the abstract transactional row store
- sqlite_storage: SQLite backend (default)
- sqlalchemy_storage: SQLAlchemy Core backend for server databases
- memory_storage: in-memory backend
- storage_factory: backend selection from settings
"""
