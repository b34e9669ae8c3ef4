"""
Database package initialization.

Provides the declarative base, async connection management and ORM models.
Submodules are imported explicitly where needed to avoid circular imports.
"""
