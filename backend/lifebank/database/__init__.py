"""
Database package initialization.

The package follows a modular structure:
- base: declarative base and shared column mixins
- connection: async engine, session factory and provisioning helpers
- models: ORM models for orders, order events and inventory stock
"""

__all__ = []
