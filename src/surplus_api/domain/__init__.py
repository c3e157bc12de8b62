"""Domain helpers."""
