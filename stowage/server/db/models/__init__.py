"""Module for database models."""

from . import item, user  # noqa: F401

__all__ = [
    "item",
    "user",
]
