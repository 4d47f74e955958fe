"""Storage services for the item hierarchy."""
