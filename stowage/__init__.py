"""Multi-tenant hierarchical file storage."""
