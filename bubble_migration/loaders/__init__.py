"""Destination store loaders."""

from .base import BaseLoader
from .sql_loader import SQLLoader

__all__ = [
    "BaseLoader",
    "SQLLoader",
]
