"""Data transfer objects returned by the item service."""
