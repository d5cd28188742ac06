"""Persistence collaborators for templates and task instances."""

from .json_store import JsonFileSeriesStore
from .series_store import InMemorySeriesStore, SeriesStore

__all__ = ["InMemorySeriesStore", "JsonFileSeriesStore", "SeriesStore"]
