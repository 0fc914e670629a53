# src/walkin_queue/db/__init__.py
"""Database configuration and utilities."""

from .session import Base, SessionLocal

__all__ = ["Base", "SessionLocal"]
