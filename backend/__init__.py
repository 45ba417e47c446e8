"""
Backend package for the REST fallback.

This package provides a FastAPI application over a SQL (or in-memory)
database so tasks and lists stay usable without Firestore.
"""
