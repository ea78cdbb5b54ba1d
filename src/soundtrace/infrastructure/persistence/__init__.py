"""Persistence layer (SQLAlchemy async)."""
