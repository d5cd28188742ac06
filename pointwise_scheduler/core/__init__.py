"""Core utilities: calendar math, settings and operation context."""
