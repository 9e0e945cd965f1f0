"""Core business logic: reading models, classification and reconciliation.

This package is framework-agnostic. It has no dependency on MCP, SQLAlchemy
or the database layer; the store and the engine feed it already-fetched
readings.
"""
