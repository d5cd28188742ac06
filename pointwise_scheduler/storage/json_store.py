"""JSON-file backed series store with atomic writes."""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Union

from pydantic import ValidationError

from ..exceptions import StorageError
from ..models import RecurringTemplate, TaskInstance
from .series_store import InMemorySeriesStore

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


class JsonFileSeriesStore(InMemorySeriesStore):
    """Series store persisted to a single JSON document.

    The on-disk format is::

        {"format": 1, "templates": {id: template}, "instances": {id: instance}}

    Every committed write rewrites the document through a temporary file in
    the same directory followed by ``os.replace``, so readers never observe
    a half-written file. A failed write rolls the in-memory state back.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        """Open (or create) a store at ``path``.

        Raises:
            StorageError: If an existing file cannot be read or parsed
        """
        super().__init__()
        self._path = Path(path)

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create store directory {self._path.parent}: {e}") from e

        self.load()

    @property
    def path(self) -> Path:
        """Location of the JSON document."""
        return self._path

    def load(self) -> None:
        """(Re)load state from disk. A missing file means an empty store."""
        with self._lock:
            if not self._path.exists():
                logger.debug("Series store file not found; starting empty: %s", self._path)
                self._templates, self._instances = {}, {}
                return

            try:
                with self._path.open("r", encoding="utf-8") as fh:
                    data = json.load(fh)
                if not isinstance(data, dict):
                    raise StorageError(f"Series store {self._path} root must be a JSON object")

                templates = {
                    k: RecurringTemplate.model_validate(v)
                    for k, v in data.get("templates", {}).items()
                }
                instances = {
                    k: TaskInstance.model_validate(v) for k, v in data.get("instances", {}).items()
                }
            except (OSError, json.JSONDecodeError, ValidationError, AttributeError) as e:
                raise StorageError(f"Failed to read series store {self._path}: {e}") from e

            self._templates, self._instances = templates, instances
            logger.debug(
                "Loaded series store %s (%d templates, %d instances)",
                self._path,
                len(self._templates),
                len(self._instances),
            )

    def _commit(self) -> None:
        self._persist()

    def _persist(self) -> None:
        """Write the current state to disk atomically.

        Raises:
            StorageError: If the document cannot be written
        """
        data = {
            "format": FORMAT_VERSION,
            "templates": {
                k: v.model_dump(mode="json") for k, v in sorted(self._templates.items())
            },
            "instances": {
                k: v.model_dump(mode="json") for k, v in sorted(self._instances.items())
            },
        }

        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                "w", dir=self._path.parent, delete=False, encoding="utf-8", suffix=".tmp"
            ) as tf:
                tmp_path = Path(tf.name)
                json.dump(data, tf, ensure_ascii=False, indent=2)
                tf.flush()
                os.fsync(tf.fileno())

            tmp_path.replace(self._path)
        except OSError as e:
            if tmp_path is not None:
                with contextlib.suppress(OSError):
                    tmp_path.unlink()
            raise StorageError(f"Failed to write series store {self._path}: {e}") from e

        logger.debug("Persisted series store %s", self._path)
