from __future__ import annotations

import uuid
from contextvars import ContextVar
from typing import Optional

REQUEST_ID_HEADER = "X-Request-ID"

_request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)


def generate_request_id() -> str:
    return uuid.uuid4().hex


def set_request_id(request_id: str | None) -> None:
    """Store request id in context (None to clear)."""
    _request_id_ctx.set(request_id)


def get_request_id() -> Optional[str]:
    return _request_id_ctx.get()


def resolve_request_id(incoming: str | None) -> str:
    """Keep a client-supplied id when it is usable, otherwise mint a new one."""
    if incoming:
        candidate = incoming.strip()
        if 0 < len(candidate) <= 128:
            return candidate
    return generate_request_id()
