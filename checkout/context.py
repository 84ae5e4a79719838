"""Correlation id propagation for a single unit of work.

Every orchestrator call runs inside a request scope so log records and
outgoing HTTP calls made on its behalf carry the same identifier. The id is
taken from the caller when provided, or generated otherwise, and is stored
in a ContextVar so library code can read it without passing it around.
"""

import uuid
import contextvars
from contextlib import contextmanager
from typing import Iterator, Optional

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")


def current_request_id() -> str:
    return REQUEST_ID_CTX.get()


@contextmanager
def request_scope(request_id: Optional[str] = None) -> Iterator[str]:
    """Bind a request id to the current context for the enclosed block.

    If a scope is already active and no explicit id is given, the active id
    is reused so nested calls keep the outer correlation id.

    Args:
        request_id: Optional caller-provided id (e.g. an ``X-Request-ID``
            header value).

    Yields:
        str: The id in effect inside the block.
    """
    rid = request_id or (current_request_id() if current_request_id() != "-" else str(uuid.uuid4()))
    token = REQUEST_ID_CTX.set(rid)
    try:
        yield rid
    finally:
        REQUEST_ID_CTX.reset(token)
