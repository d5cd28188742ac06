"""Recurrence rule expansion and occurrence keys."""
