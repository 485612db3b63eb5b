"""Persistence: async SQLAlchemy models and the repository."""
