"""
Database package initialization.

The package follows a modular structure:
- base: declarative base and model mixins
- connection: async engine and session management
- unit_of_work: atomic multi-statement commits
- models: ORM models for users, addresses, products and orders

Import submodules explicitly when needed to avoid circular dependencies.
"""

__all__ = []
