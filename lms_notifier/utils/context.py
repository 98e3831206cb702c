import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

request_id_context: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return request_id_context.get()


def new_request_id() -> str:
    return str(uuid.uuid4())


@contextmanager
def request_scope(request_id: Optional[str] = None) -> Iterator[str]:
    """
    Bind a request ID for the duration of a block.

    Celery tasks and the periodic dispatcher run outside any HTTP request,
    so they open a scope of their own to keep log lines correlated.
    """
    token = request_id_context.set(request_id or new_request_id())
    try:
        yield request_id_context.get()
    finally:
        request_id_context.reset(token)
