"""Operation ID tracking for log correlation.

Every public mutating call on the series manager runs inside an operation
scope. The scope's ID is attached to all log records emitted while it is
active (see ``OperationIdFilter`` in scheduler_logging), so the reads and
writes belonging to one "edit this occurrence" request can be grepped
together.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Optional

# Context variable for storing the current operation ID.
# contextvars keeps the value isolated per thread and per asyncio task.
operation_id_var: ContextVar[str] = ContextVar("operation_id", default="")


@contextmanager
def operation_scope(operation_id: Optional[str] = None) -> Iterator[str]:
    """Run a block under an operation ID.

    Nested scopes reuse the outer ID so that an operation composed of other
    operations (convert_to_one_time calling delete_series) logs under one ID.

    Args:
        operation_id: Explicit ID to use, e.g. a request ID from an API layer

    Yields:
        The active operation ID
    """
    current = operation_id_var.get()
    if current and operation_id is None:
        yield current
        return

    token = operation_id_var.set(operation_id or uuid.uuid4().hex[:12])
    try:
        yield operation_id_var.get()
    finally:
        operation_id_var.reset(token)


def get_operation_id() -> str:
    """Get the current operation ID.

    Returns:
        Current operation ID, or "no-operation-id" outside any scope
    """
    operation_id = operation_id_var.get()
    return operation_id if operation_id else "no-operation-id"
