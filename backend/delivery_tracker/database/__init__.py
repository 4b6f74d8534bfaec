"""
Database package.

- base: declarative base, mixins and JSON column type
- connection: async engine, session factory and health check
- models: ORM models registered on ``Base.metadata``
"""

__all__: list[str] = []
