"""Series management and schedule presentation."""
