"""
Context for tracking request_id and build_id across async calls.
Detached build tasks copy the context at creation, so log lines from a
webhook-triggered build keep the id of the request that started it.
"""
import uuid
from contextvars import ContextVar
from typing import Optional

request_id_var: ContextVar[str] = ContextVar("request_id", default="")
build_id_var: ContextVar[Optional[int]] = ContextVar("build_id", default=None)


def get_request_id() -> str:
    """Get the current request ID."""
    return request_id_var.get()


def set_request_id(request_id: str | None = None) -> str:
    """Set the request ID (generates new one if not provided)."""
    rid = request_id or str(uuid.uuid4())
    request_id_var.set(rid)
    return rid


def get_build_id() -> Optional[int]:
    """Get the build record id of the running pipeline, if any."""
    return build_id_var.get()


def set_build_id(build_id: Optional[int]) -> None:
    build_id_var.set(build_id)
